"""
Shared fixtures for the SOS test-suite.

Notifier fakes stand in for the SMS transport; everything else runs on
the real in-memory store and directory.
"""

from __future__ import annotations

import asyncio
from typing import Dict, List, Optional, Set, Tuple

import pytest

from backend.app.sos.directory import InMemoryUserDirectory
from backend.app.sos.fanout import FanOutEngine
from backend.app.sos.lifecycle import AlertLifecycleManager
from backend.app.sos.models import UserRef
from backend.app.sos.notifier import Notifier, SendResult, UnconfiguredNotifier
from backend.app.sos.store import InMemoryAlertStore


# Bengaluru (12.9°N, 77.6°E)
BLR_LAT = 12.9
BLR_LON = 77.6


class FakeNotifier(Notifier):
    """
    Configured notifier that records every call.

    Phones in fail_for get a FAILED result with `failure`; phones in
    raise_for make send() raise; everything else is SENT.
    """

    is_configured = True

    def __init__(
        self,
        *,
        fail_for: Optional[Set[str]] = None,
        raise_for: Optional[Set[str]] = None,
        failure: str = "Invalid 'To' Phone Number",
        delay: float = 0.0,
    ):
        self.fail_for = fail_for or set()
        self.raise_for = raise_for or set()
        self.failure = failure
        self.delay = delay
        self.calls: List[Tuple[str, str]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    async def send(self, to_phone: str, body: str) -> SendResult:
        self.calls.append((to_phone, body))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if to_phone in self.raise_for:
                raise RuntimeError("transport exploded")
            if to_phone in self.fail_for:
                return SendResult.failed(self.failure)
            return SendResult.sent(sid=f"SM{len(self.calls):04d}", status="queued")
        finally:
            self.in_flight -= 1

    async def close(self) -> None:
        self.closed = True


class BrokenDirectory(InMemoryUserDirectory):
    """Directory whose broadcast lookup always fails."""

    async def list_active_users_except(self, user_id: str):
        raise ConnectionError("directory unavailable")


def seed_users(directory: InMemoryUserDirectory, users: List[UserRef]) -> None:
    async def _seed():
        for user in users:
            await directory.add_user(user)
    asyncio.run(_seed())


ALICE = UserRef(id="u-alice", name="Alice", phone="9876543210", aadhar="123412341234")
BHAVNA = UserRef(id="u-bhavna", name="Bhavna", phone="9123456780", aadhar="234523452345")
CHITRA = UserRef(id="u-chitra", name="Chitra", phone="08123456789", aadhar="345634563456")
DEEPA = UserRef(id="u-deepa", name="Deepa", phone="+14155550100", aadhar="456745674567")
ELLA = UserRef(id="u-ella", name="Ella", phone="7000000001", is_active=False)


@pytest.fixture
def store() -> InMemoryAlertStore:
    return InMemoryAlertStore()


@pytest.fixture
def directory() -> InMemoryUserDirectory:
    d = InMemoryUserDirectory()
    seed_users(d, [ALICE, BHAVNA, CHITRA, DEEPA, ELLA])
    return d


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def manager(store, directory, notifier) -> AlertLifecycleManager:
    return AlertLifecycleManager(store, directory, FanOutEngine(notifier, timeout_seconds=2.0))


@pytest.fixture
def unconfigured_manager(store, directory) -> AlertLifecycleManager:
    return AlertLifecycleManager(
        store, directory, FanOutEngine(UnconfiguredNotifier(), timeout_seconds=2.0),
    )


@pytest.fixture
def users() -> Dict[str, UserRef]:
    return {u.id: u for u in (ALICE, BHAVNA, CHITRA, DEEPA, ELLA)}
