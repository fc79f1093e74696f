"""
fanout.py — Best-effort notification fan-out for an SOS alert.

Given an alert and a recipient list, drives the notifier once per
recipient and classifies every attempt:

    Notifier outcome      Ledger status    Ledger error
    ────────────────      ─────────────    ─────────────────────────────────
    SENT                  sent             ""
    UNCONFIGURED          logged           NOT_CONFIGURED_MESSAGE
    FAILED(detail)        failed           "SMS failed: " + detail

═══════════════════════════════════════════════════════════════════════════
GUARANTEES
═══════════════════════════════════════════════════════════════════════════

    • Every recipient gets a result; a failure for recipient N never
      affects recipients N+1..end.
    • No retries. A failed send is final for this invocation.
    • Each notifier call is bounded by a per-call timeout.
    • Up to max_concurrency sends run at once (1 = sequential). Results
      are always returned in recipient order.
    • The engine never writes to the store; the caller persists the
      ledger once, after fan_out() returns.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import List, Sequence

from backend.app.sos.models import (
    Alert,
    NotificationResult,
    NotificationStatus,
    NotifiedContact,
    Recipient,
)
from backend.app.sos.notifier import (
    DeliveryOutcome,
    Notifier,
    SendResult,
    format_emergency_message,
    maps_link,
)
from backend.app.sos.phone import normalize_phone

logger = logging.getLogger(__name__)

NOT_CONFIGURED_MESSAGE = "SMS not configured - emergency logged for manual notification"
FAILED_PREFIX = "SMS failed: "


def classify(result: SendResult) -> tuple[NotificationStatus, str]:
    """Map a notifier outcome to a (status, error) ledger pair."""
    if result.outcome == DeliveryOutcome.SENT:
        return NotificationStatus.SENT, ""
    if result.outcome == DeliveryOutcome.UNCONFIGURED:
        return NotificationStatus.LOGGED, NOT_CONFIGURED_MESSAGE
    return NotificationStatus.FAILED, FAILED_PREFIX + result.detail


def build_ledger(results: Sequence[NotificationResult]) -> List[NotifiedContact]:
    """Turn fan-out results into fresh pending ledger entries."""
    return [
        NotifiedContact(phone=r.phone, status=r.status, error=r.error)
        for r in results
    ]


class FanOutEngine:
    """
    Drive a notifier over a recipient list.

    Usage:
        engine = FanOutEngine(notifier, timeout_seconds=15, max_concurrency=10)
        results = await engine.fan_out(alert, recipients)
    """

    def __init__(
        self,
        notifier: Notifier,
        *,
        timeout_seconds: float = 15.0,
        max_concurrency: int = 10,
    ):
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}")
        self.notifier = notifier
        self.timeout_seconds = timeout_seconds
        self.max_concurrency = max_concurrency

    async def _send(self, phone: str, body: str) -> SendResult:
        try:
            return await asyncio.wait_for(
                self.notifier.send(phone, body), timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            return SendResult.failed(f"timed out after {self.timeout_seconds}s")
        except Exception as exc:
            # Notifiers must not raise; a misbehaving one still only
            # costs this recipient.
            logger.exception("Notifier raised for %s", phone)
            return SendResult.failed(str(exc) or type(exc).__name__)

    async def _notify_one(
        self,
        alert: Alert,
        recipient: Recipient,
        body: str,
        semaphore: asyncio.Semaphore,
    ) -> NotificationResult:
        phone = normalize_phone(recipient.phone)
        async with semaphore:
            result = await self._send(phone, body)

        status, error = classify(result)
        if status != NotificationStatus.SENT:
            logger.warning(
                "🚨 EMERGENCY ALERT - Manual notification required: "
                "recipient=%s (%s) user_in_danger=%s (%s) location=%s alert=%s reason=%s",
                recipient.name, phone,
                alert.user_name or "Unknown", alert.user_phone,
                maps_link(alert.location.latitude, alert.location.longitude),
                alert.id, error,
                extra={"alert_id": alert.id, "phone": phone, "notification_status": status.value},
            )

        return NotificationResult(
            name=recipient.name,
            phone=phone,
            relationship=recipient.relationship,
            status=status,
            error=error,
        )

    async def fan_out(
        self,
        alert: Alert,
        recipients: Sequence[Recipient],
    ) -> List[NotificationResult]:
        """Notify every recipient; returns one result per recipient, in order."""
        started = time.perf_counter()
        logger.info(
            "Fanning out alert %s to %d recipients (configured=%s)",
            alert.id, len(recipients), self.notifier.is_configured,
            extra={"alert_id": alert.id, "recipient_count": len(recipients)},
        )

        body = format_emergency_message(
            alert.user_name, alert.user_phone,
            alert.location.latitude, alert.location.longitude,
        )
        semaphore = asyncio.Semaphore(self.max_concurrency)
        results = await asyncio.gather(*(
            self._notify_one(alert, recipient, body, semaphore)
            for recipient in recipients
        ))

        sent = sum(1 for r in results if r.status == NotificationStatus.SENT)
        logger.info(
            "Alert %s fan-out complete: %d/%d sent, %.1fms",
            alert.id, sent, len(results),
            (time.perf_counter() - started) * 1000,
            extra={"alert_id": alert.id, "recipient_count": len(results)},
        )
        return list(results)
