"""
store.py — Persistence for SOS alerts and their notification ledgers.

Two implementations share one async interface:

    InMemoryAlertStore   dict-backed, used by tests and local runs
    SqlAlertStore        SQLAlchemy async sessions (PostgreSQL in production)

Both hand out copies: mutating an Alert has no effect until save().
"""

from __future__ import annotations

import copy
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.sos.db_models import AlertRecord
from backend.app.sos.models import (
    Alert,
    AlertPriority,
    AlertStatus,
    EmergencyType,
    Location,
    NotifiedContact,
)
from backend.app.spatial.radius_utils import (
    METERS_PER_KM,
    Coordinate,
    bounding_box,
    crosses_antimeridian,
    filter_within_radius,
)

logger = logging.getLogger(__name__)


def _alert_coordinate(alert: Alert) -> Coordinate:
    return Coordinate(alert.location.latitude, alert.location.longitude)


class AlertStore:
    """Async persistence interface for alerts."""

    async def create(self, alert: Alert) -> Alert:
        raise NotImplementedError

    async def get(self, alert_id: str) -> Optional[Alert]:
        raise NotImplementedError

    async def save(self, alert: Alert) -> Alert:
        raise NotImplementedError

    async def list_active(self) -> List[Alert]:
        """Active alerts, newest first."""
        raise NotImplementedError

    async def list_by_user(self, user_id: str) -> List[Alert]:
        """All alerts created by user_id, newest first."""
        raise NotImplementedError

    async def find_nearby(
        self, latitude: float, longitude: float, max_distance_m: float,
    ) -> List[Alert]:
        """Active alerts within max_distance_m of the point, nearest first."""
        raise NotImplementedError


# ═══════════════════════════════════════════════════════════════════════════
# In-Memory Store
# ═══════════════════════════════════════════════════════════════════════════

class InMemoryAlertStore(AlertStore):

    def __init__(self) -> None:
        self._alerts: Dict[str, Alert] = {}

    def clear(self) -> None:
        self._alerts.clear()

    async def create(self, alert: Alert) -> Alert:
        if alert.id in self._alerts:
            raise ValueError(f"Alert {alert.id} already exists")
        self._alerts[alert.id] = copy.deepcopy(alert)
        return alert

    async def get(self, alert_id: str) -> Optional[Alert]:
        alert = self._alerts.get(alert_id)
        return copy.deepcopy(alert) if alert else None

    async def save(self, alert: Alert) -> Alert:
        alert.touch()
        self._alerts[alert.id] = copy.deepcopy(alert)
        return alert

    def _newest_first(self, alerts: List[Alert]) -> List[Alert]:
        # Insertion order breaks created_at ties
        ordered = sorted(
            enumerate(alerts), key=lambda pair: (pair[1].created_at, pair[0]), reverse=True,
        )
        return [copy.deepcopy(a) for _, a in ordered]

    async def list_active(self) -> List[Alert]:
        return self._newest_first([a for a in self._alerts.values() if a.is_active])

    async def list_by_user(self, user_id: str) -> List[Alert]:
        return self._newest_first(
            [a for a in self._alerts.values() if a.user_id == str(user_id)]
        )

    async def find_nearby(
        self, latitude: float, longitude: float, max_distance_m: float,
    ) -> List[Alert]:
        active = [a for a in self._alerts.values() if a.is_active]
        matched = filter_within_radius(
            Coordinate(latitude, longitude),
            active,
            max_distance_m / METERS_PER_KM,
            _alert_coordinate,
        )
        return [copy.deepcopy(a) for a in matched]


# ═══════════════════════════════════════════════════════════════════════════
# SQL Store
# ═══════════════════════════════════════════════════════════════════════════

def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything here is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_alert(record: AlertRecord) -> Alert:
    return Alert(
        id=record.id,
        user_id=record.user_id,
        user_name=record.user_name,
        user_phone=record.user_phone,
        user_aadhar=record.user_aadhar,
        location=Location(record.latitude, record.longitude, record.address or ""),
        description=record.description or "",
        emergency_type=EmergencyType(record.emergency_type),
        priority=AlertPriority(record.priority),
        status=AlertStatus(record.status),
        notified_contacts=[
            NotifiedContact.from_dict(entry) for entry in (record.notified_contacts or [])
        ],
        resolved_at=_aware(record.resolved_at),
        resolved_by=record.resolved_by,
        resolution_notes=record.resolution_notes,
        created_at=_aware(record.created_at),
        updated_at=_aware(record.updated_at),
    )


def _apply(record: AlertRecord, alert: Alert) -> None:
    """Copy mutable alert state onto a row. Snapshot fields are write-once."""
    record.status = alert.status.value
    record.notified_contacts = [c.to_dict() for c in alert.notified_contacts]
    record.resolved_at = alert.resolved_at
    record.resolved_by = alert.resolved_by
    record.resolution_notes = alert.resolution_notes
    record.updated_at = alert.updated_at


class SqlAlertStore(AlertStore):
    """
    Alert store on an async SQLAlchemy session factory.

    Usage:
        store = SqlAlertStore(get_session_factory())
        alert = await store.get("a1b2c3")
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create(self, alert: Alert) -> Alert:
        record = AlertRecord(
            id=alert.id,
            user_id=alert.user_id,
            user_aadhar=alert.user_aadhar,
            user_name=alert.user_name,
            user_phone=alert.user_phone,
            latitude=alert.location.latitude,
            longitude=alert.location.longitude,
            address=alert.location.address,
            description=alert.description,
            emergency_type=alert.emergency_type.value,
            priority=alert.priority.value,
            created_at=alert.created_at,
        )
        _apply(record, alert)
        async with self._session_factory() as session:
            session.add(record)
            await session.commit()
        return alert

    async def get(self, alert_id: str) -> Optional[Alert]:
        async with self._session_factory() as session:
            record = await session.get(AlertRecord, alert_id)
            return _to_alert(record) if record else None

    async def save(self, alert: Alert) -> Alert:
        alert.touch()
        async with self._session_factory() as session:
            record = await session.get(AlertRecord, alert.id)
            if record is None:
                raise LookupError(f"Alert {alert.id} is not persisted")
            _apply(record, alert)
            await session.commit()
        return alert

    async def _query(self, stmt) -> List[Alert]:
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [_to_alert(r) for r in result.scalars().all()]

    async def list_active(self) -> List[Alert]:
        stmt = (
            select(AlertRecord)
            .where(AlertRecord.status == AlertStatus.ACTIVE.value)
            .order_by(AlertRecord.created_at.desc())
        )
        return await self._query(stmt)

    async def list_by_user(self, user_id: str) -> List[Alert]:
        stmt = (
            select(AlertRecord)
            .where(AlertRecord.user_id == str(user_id))
            .order_by(AlertRecord.created_at.desc())
        )
        return await self._query(stmt)

    async def find_nearby(
        self, latitude: float, longitude: float, max_distance_m: float,
    ) -> List[Alert]:
        center = Coordinate(latitude, longitude)
        radius_km = max_distance_m / METERS_PER_KM
        box = bounding_box(center, radius_km)
        min_lat, max_lat, min_lon, max_lon = box
        if crosses_antimeridian(box):
            in_lon_range = or_(
                AlertRecord.longitude >= min_lon, AlertRecord.longitude <= max_lon,
            )
        else:
            in_lon_range = AlertRecord.longitude.between(min_lon, max_lon)
        stmt = (
            select(AlertRecord)
            .where(AlertRecord.status == AlertStatus.ACTIVE.value)
            .where(AlertRecord.latitude.between(min_lat, max_lat))
            .where(in_lon_range)
        )
        candidates = await self._query(stmt)
        return filter_within_radius(center, candidates, radius_km, _alert_coordinate)
