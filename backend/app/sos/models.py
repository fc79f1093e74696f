"""
models.py — Shared data structures for the SOS alert lifecycle.

Defines:
    • EmergencyType      — what kind of emergency the user reported
    • AlertPriority      — fixed classification, defaults to HIGH
    • AlertStatus        — active → resolved | false_alarm
    • ContactResponse    — how a notified person answered
    • NotificationStatus — per-recipient delivery outcome (sent/logged/failed)
    • Identity           — trusted requester handed in by the auth layer
    • EmergencyContact   — a saved contact of a user
    • Recipient          — transient fan-out target
    • NotificationResult — per-recipient fan-out report
    • NotifiedContact    — ledger entry persisted on the alert
    • Alert              — the SOS record itself

═══════════════════════════════════════════════════════════════════════════
ALERT STATE MACHINE
═══════════════════════════════════════════════════════════════════════════

        ┌──────────┐   update_status(resolved)    ┌────────────┐
        │  ACTIVE  │ ───────────────────────────▶ │  RESOLVED  │
        └──────────┘                              └────────────┘
              │        update_status(false_alarm)  ┌─────────────┐
              └──────────────────────────────────▶ │ FALSE_ALARM │
                                                   └─────────────┘

Only ACTIVE alerts accept status updates. RESOLVED stamps resolved_at and
resolved_by; FALSE_ALARM stamps neither.

═══════════════════════════════════════════════════════════════════════════
SNAPSHOT FIELDS
═══════════════════════════════════════════════════════════════════════════

user_name, user_phone and user_aadhar are copied from the creator's
identity when the alert is created and never refreshed. The alert stays
readable even if the creator's profile later changes or disappears.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class EmergencyType(str, Enum):
    HARASSMENT = "harassment"
    ASSAULT    = "assault"
    MEDICAL    = "medical"
    ACCIDENT   = "accident"
    OTHER      = "other"


class AlertPriority(str, Enum):
    LOW      = "low"
    MEDIUM   = "medium"
    HIGH     = "high"
    CRITICAL = "critical"


class AlertStatus(str, Enum):
    ACTIVE      = "active"
    RESOLVED    = "resolved"
    FALSE_ALARM = "false_alarm"


class ContactResponse(str, Enum):
    PENDING      = "pending"
    ACKNOWLEDGED = "acknowledged"
    RESPONDING   = "responding"
    UNREACHABLE  = "unreachable"


class NotificationStatus(str, Enum):
    """Outcome of one notification attempt."""
    SENT   = "sent"     # transport accepted the message
    LOGGED = "logged"   # SMS unconfigured, logged for manual follow-up
    FAILED = "failed"   # transport attempted and failed


# Responses a contact can report back (pending is only ever the default)
REPORTABLE_RESPONSES = (
    ContactResponse.ACKNOWLEDGED,
    ContactResponse.RESPONDING,
    ContactResponse.UNREACHABLE,
)

DESCRIPTION_MAX_LENGTH = 500
BROADCAST_RELATIONSHIP = "System User"


# ═══════════════════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════════════════

def _generate_id() -> str:
    return uuid.uuid4().hex


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class Identity:
    """
    An authenticated requester, trusted as-is.

    user_id is always a plain string so ownership checks are a single
    equality comparison.
    """
    user_id: str
    name: str = ""
    phone: str = ""
    aadhar: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "user_id", str(self.user_id))


@dataclass
class EmergencyContact:
    id: str
    name: str
    phone: str
    relationship: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "relationship": self.relationship,
        }


@dataclass
class UserRef:
    """A registered platform user as seen by the directory."""
    id: str
    name: str
    phone: str
    aadhar: str = ""
    is_active: bool = True

    def to_identity(self) -> Identity:
        return Identity(
            user_id=self.id, name=self.name, phone=self.phone, aadhar=self.aadhar,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name or "Anonymous",
            "phone": self.phone,
            "is_active": self.is_active,
        }


@dataclass(frozen=True)
class Recipient:
    """A fan-out target; phone is raw and normalised during fan-out."""
    name: str
    phone: str
    relationship: str = ""


@dataclass
class NotificationResult:
    """Per-recipient outcome returned to the caller of a fan-out."""
    name: str
    phone: str
    relationship: str
    status: NotificationStatus
    error: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "phone": self.phone,
            "relationship": self.relationship,
            "status": self.status.value,
            "error": self.error,
        }


@dataclass
class NotifiedContact:
    """
    Ledger entry stored on an alert.

    status is None for entries created by a contact response for a phone
    that was never part of a fan-out.
    """
    phone: str
    response: ContactResponse = ContactResponse.PENDING
    notified_at: datetime = field(default_factory=_now)
    status: Optional[NotificationStatus] = None
    error: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phone": self.phone,
            "response": self.response.value,
            "notified_at": _iso(self.notified_at),
            "status": self.status.value if self.status else None,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NotifiedContact":
        notified_at = data.get("notified_at")
        status = data.get("status")
        return cls(
            phone=data.get("phone", ""),
            response=ContactResponse(data.get("response", "pending")),
            notified_at=(
                datetime.fromisoformat(notified_at) if notified_at else _now()
            ),
            status=NotificationStatus(status) if status else None,
            error=data.get("error") or "",
        )


@dataclass
class Location:
    latitude: float
    longitude: float
    address: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "address": self.address,
        }


@dataclass
class Alert:
    """A single SOS emergency record."""
    user_id: str
    user_name: str
    user_phone: str
    user_aadhar: str
    location: Location
    id: str = field(default_factory=_generate_id)
    description: str = ""
    emergency_type: EmergencyType = EmergencyType.OTHER
    priority: AlertPriority = AlertPriority.HIGH
    status: AlertStatus = AlertStatus.ACTIVE
    notified_contacts: List[NotifiedContact] = field(default_factory=list)
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolution_notes: Optional[str] = None
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    @property
    def is_active(self) -> bool:
        return self.status == AlertStatus.ACTIVE

    def touch(self) -> None:
        self.updated_at = _now()

    def to_summary(self) -> Dict[str, Any]:
        """List view — never includes the notification ledger."""
        return {
            "id": self.id,
            "status": self.status.value,
            "priority": self.priority.value,
            "emergency_type": self.emergency_type.value,
            "location": self.location.to_dict(),
            "created_at": _iso(self.created_at),
            "user_name": self.user_name,
            "user_phone": self.user_phone,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.to_summary(),
            "user_id": self.user_id,
            "user_aadhar": self.user_aadhar,
            "description": self.description,
            "notified_contacts": [c.to_dict() for c in self.notified_contacts],
            "resolved_at": _iso(self.resolved_at),
            "resolved_by": self.resolved_by,
            "resolution_notes": self.resolution_notes,
            "updated_at": _iso(self.updated_at),
        }
