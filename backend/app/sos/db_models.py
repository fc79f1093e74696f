"""
SQLAlchemy table definitions for persistence.

Table: sos_alerts
─────────────────────────────────────────────────────────────────────────────
| Column             | Type        | Description                           |
|--------------------|-------------|---------------------------------------|
| id                 | VARCHAR PK  | opaque alert id                       |
| user_id            | VARCHAR     | creator reference                     |
| user_name/phone/.. | VARCHAR     | creator snapshot, immutable           |
| latitude/longitude | FLOAT       | alert location                        |
| notified_contacts  | JSON        | ledger, overwritten on each fan-out   |
| status             | VARCHAR     | active / resolved / false_alarm       |
─────────────────────────────────────────────────────────────────────────────

Indexes mirror the query patterns:
    (status, created_at)     active alerts, newest first
    (user_id, created_at)    a user's alerts, newest first
    (latitude, longitude)    bounding-box prefilter for nearby alerts
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List, Optional

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.core.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRecord(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), default="")
    phone: Mapped[str] = mapped_column(String(32), index=True)
    aadhar: Mapped[str] = mapped_column(String(12), default="")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class EmergencyContactRecord(Base):
    __tablename__ = "emergency_contacts"

    # Autoincrement id keeps contacts in the order they were added
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), index=True,
    )
    name: Mapped[str] = mapped_column(String(255))
    phone: Mapped[str] = mapped_column(String(32))
    relationship: Mapped[str] = mapped_column(String(50), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class AlertRecord(Base):
    __tablename__ = "sos_alerts"
    __table_args__ = (
        Index("ix_sos_alerts_status_created", "status", "created_at"),
        Index("ix_sos_alerts_user_created", "user_id", "created_at"),
        Index("ix_sos_alerts_lat_lon", "latitude", "longitude"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64))
    user_aadhar: Mapped[str] = mapped_column(String(12), default="")
    user_name: Mapped[str] = mapped_column(String(255), default="")
    user_phone: Mapped[str] = mapped_column(String(32), default="")
    latitude: Mapped[float] = mapped_column(Float)
    longitude: Mapped[float] = mapped_column(Float)
    address: Mapped[str] = mapped_column(Text, default="")
    description: Mapped[str] = mapped_column(String(500), default="")
    emergency_type: Mapped[str] = mapped_column(String(20), default="other")
    priority: Mapped[str] = mapped_column(String(20), default="high")
    status: Mapped[str] = mapped_column(String(20), default="active")
    notified_contacts: Mapped[List[Any]] = mapped_column(JSON, default=list)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    resolution_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
