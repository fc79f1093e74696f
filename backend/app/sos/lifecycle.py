"""
lifecycle.py — SOS alert lifecycle orchestration.

The manager is the single entry point the API layer talks to. It owns
validation, authorisation, state transitions and the two fan-out modes:

═══════════════════════════════════════════════════════════════════════════
FAN-OUT MODES
═══════════════════════════════════════════════════════════════════════════

    Mode        Triggered by          Recipients
    ─────────   ──────────────────    ─────────────────────────────────────
    Broadcast   create_alert()        every other active user
    Targeted    notify_contacts()     the creator's saved emergency contacts

In both modes the alert's ledger is replaced wholesale by the new results
and persisted once, after every recipient has been tried. Responses
recorded between two fan-outs are discarded by the second one.

═══════════════════════════════════════════════════════════════════════════
FAILURE POLICY
═══════════════════════════════════════════════════════════════════════════

    • Validation and authorisation errors are raised before any write.
    • The alert is durable before broadcast starts. Any fault in the
      broadcast phase is logged and absorbed; create_alert() still returns
      the alert with whatever results exist (possibly none).
    • Per-recipient transport failures never surface here; they are
      already classified into the ledger by the fan-out engine.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from backend.app.core.errors import (
    ForbiddenError,
    InvalidTransitionError,
    NoContactsError,
    NotFoundError,
    ValidationError,
)
from backend.app.core.logging_config import bind_request_context
from backend.app.sos.directory import UserDirectory
from backend.app.sos.fanout import FanOutEngine, build_ledger
from backend.app.sos.models import (
    BROADCAST_RELATIONSHIP,
    DESCRIPTION_MAX_LENGTH,
    REPORTABLE_RESPONSES,
    Alert,
    AlertPriority,
    AlertStatus,
    ContactResponse,
    EmergencyType,
    Identity,
    Location,
    NotificationResult,
    NotifiedContact,
    Recipient,
)
from backend.app.sos.store import AlertStore
from backend.app.spatial.radius_utils import METERS_PER_KM

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Input validation
# ═══════════════════════════════════════════════════════════════════════════

def _validate_coordinate(value: Any, name: str, limit: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name.capitalize()} must be a number", field=name)
    if math.isnan(number) or not -limit <= number <= limit:
        raise ValidationError(
            f"{name.capitalize()} must be between -{limit:g} and {limit:g}",
            field=name, value=number,
        )
    return number


def _parse_enum(enum_cls, value: Any, field_name: str, allowed=None):
    choices = list(allowed) if allowed is not None else list(enum_cls)
    try:
        parsed = enum_cls(value)
    except ValueError:
        parsed = None
    if parsed is None or parsed not in choices:
        raise ValidationError(
            f"Invalid {field_name.replace('_', ' ')}",
            field=field_name,
            allowed=[c.value for c in choices],
        )
    return parsed


class AlertLifecycleManager:
    """
    Coordinates store, user directory and fan-out engine.

    Usage:
        manager = AlertLifecycleManager(store, directory, FanOutEngine(notifier))
        alert, notifications = await manager.create_alert(identity, 12.9, 77.6)
    """

    def __init__(self, store: AlertStore, directory: UserDirectory, fanout: FanOutEngine):
        self.store = store
        self.directory = directory
        self.fanout = fanout

    @property
    def sms_configured(self) -> bool:
        return self.fanout.notifier.is_configured

    # ─── Creation ────────────────────────────────────────────────────────

    async def create_alert(
        self,
        identity: Identity,
        latitude: Any,
        longitude: Any,
        address: Optional[str] = None,
        description: Optional[str] = None,
        emergency_type: Optional[Any] = None,
    ) -> Tuple[Alert, List[NotificationResult]]:
        """Persist a new active alert, then broadcast it to every other active user."""
        lat = _validate_coordinate(latitude, "latitude", 90.0)
        lon = _validate_coordinate(longitude, "longitude", 180.0)

        # Length is checked on the raw text, before trimming
        description = description or ""
        if len(description) > DESCRIPTION_MAX_LENGTH:
            raise ValidationError(
                "Description must be less than 500 characters",
                field="description", length=len(description),
            )
        description = description.strip()

        kind = (
            _parse_enum(EmergencyType, emergency_type, "emergency_type")
            if emergency_type is not None
            else EmergencyType.OTHER
        )

        alert = Alert(
            user_id=identity.user_id,
            user_name=identity.name or "Anonymous",
            user_phone=identity.phone,
            user_aadhar=identity.aadhar,
            location=Location(lat, lon, (address or "").strip()),
            description=description,
            emergency_type=kind,
            priority=AlertPriority.HIGH,
            status=AlertStatus.ACTIVE,
        )
        await self.store.create(alert)
        bind_request_context(alert_id=alert.id)
        logger.info(
            "SOS alert %s created by %s at (%.5f, %.5f) type=%s",
            alert.id, alert.user_id, lat, lon, kind.value,
            extra={"alert_id": alert.id, "user_id": alert.user_id},
        )

        results: List[NotificationResult] = []
        try:
            users = await self.directory.list_active_users_except(identity.user_id)
            recipients = [
                Recipient(u.name or "Anonymous", u.phone, BROADCAST_RELATIONSHIP)
                for u in users
            ]
            results = await self.fanout.fan_out(alert, recipients)
            if results:
                alert.notified_contacts = build_ledger(results)
                await self.store.save(alert)
        except Exception:
            logger.exception(
                "Broadcast for alert %s failed; alert stays created",
                alert.id, extra={"alert_id": alert.id},
            )

        return alert, results

    # ─── Targeted notification ───────────────────────────────────────────

    async def notify_contacts(
        self, alert_id: str, identity: Identity,
    ) -> List[NotificationResult]:
        """Notify the creator's saved emergency contacts. Only the creator may ask."""
        alert = await self.get_alert(alert_id)
        if alert.user_id != identity.user_id:
            raise ForbiddenError(
                "Not authorized to notify contacts for this alert",
                alert_id=alert_id,
            )

        contacts = await self.directory.get_emergency_contacts(identity.user_id)
        if not contacts:
            raise NoContactsError(identity.user_id)

        recipients = [Recipient(c.name, c.phone, c.relationship) for c in contacts]
        results = await self.fanout.fan_out(alert, recipients)
        alert.notified_contacts = build_ledger(results)
        await self.store.save(alert)
        return results

    # ─── Status & responses ──────────────────────────────────────────────

    async def update_status(
        self,
        alert_id: str,
        new_status: Any,
        resolver: Identity,
        notes: Optional[str] = None,
    ) -> Alert:
        status = _parse_enum(AlertStatus, new_status, "status")
        alert = await self.get_alert(alert_id)
        if not alert.is_active:
            raise InvalidTransitionError(alert_id, alert.status.value, status.value)

        alert.status = status
        if status == AlertStatus.RESOLVED:
            alert.resolved_at = datetime.now(timezone.utc)
            alert.resolved_by = resolver.user_id
        if notes:
            alert.resolution_notes = notes
        await self.store.save(alert)

        logger.info(
            "Alert %s status → %s by %s",
            alert_id, status.value, resolver.user_id,
            extra={"alert_id": alert_id, "status": status.value},
        )
        return alert

    async def record_contact_response(
        self, alert_id: str, contact_phone: str, response: Any,
    ) -> Alert:
        if not contact_phone or not str(contact_phone).strip():
            raise ValidationError("Contact phone is required", field="contact_phone")
        answer = _parse_enum(
            ContactResponse, response, "response", allowed=REPORTABLE_RESPONSES,
        )
        alert = await self.get_alert(alert_id)

        entry = next(
            (c for c in alert.notified_contacts if c.phone == contact_phone), None,
        )
        if entry is not None:
            entry.response = answer
            entry.notified_at = datetime.now(timezone.utc)
        else:
            alert.notified_contacts.append(
                NotifiedContact(phone=contact_phone, response=answer)
            )
        await self.store.save(alert)
        return alert

    # ─── Queries ─────────────────────────────────────────────────────────

    async def get_alert(self, alert_id: str) -> Alert:
        alert = await self.store.get(alert_id)
        if alert is None:
            raise NotFoundError("SOS alert", alert_id=alert_id)
        bind_request_context(alert_id=alert.id)
        return alert

    async def get_active_alerts(self) -> List[Alert]:
        return await self.store.list_active()

    async def get_user_alerts(self, user_id: str) -> List[Alert]:
        return await self.store.list_by_user(str(user_id))

    async def get_nearby_alerts(
        self, latitude: Any, longitude: Any, radius_km: Any,
    ) -> List[Alert]:
        lat = _validate_coordinate(latitude, "latitude", 90.0)
        lon = _validate_coordinate(longitude, "longitude", 180.0)
        try:
            radius = float(radius_km)
        except (TypeError, ValueError):
            raise ValidationError("Radius must be a number", field="radius")
        if math.isnan(radius) or radius <= 0:
            raise ValidationError(
                "Radius must be greater than 0", field="radius", value=radius,
            )
        return await self.store.find_nearby(lat, lon, radius * METERS_PER_KM)

    # ─── Diagnostics ─────────────────────────────────────────────────────

    async def contact_readiness(self, identity: Identity) -> Dict[str, Any]:
        """What a targeted notification for this user would reach."""
        contacts = await self.directory.get_emergency_contacts(identity.user_id)
        return {
            "user_id": identity.user_id,
            "user_name": identity.name,
            "emergency_contacts_count": len(contacts),
            "emergency_contacts": [c.to_dict() for c in contacts],
            "sms_configured": self.sms_configured,
        }

    async def broadcast_readiness(self, identity: Identity) -> Dict[str, Any]:
        """What a broadcast from this user would reach."""
        everyone = await self.directory.list_active_users()
        others = [u for u in everyone if u.id != identity.user_id]
        return {
            "total_users": len(everyone),
            "other_users": len(others),
            "users": [u.to_dict() for u in others],
            "sms_configured": self.sms_configured,
        }
