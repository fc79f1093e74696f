"""
FastAPI routes: SOS alert lifecycle.

Provides endpoints to:
    POST /api/v1/sos/create                       — raise an alert, broadcast it
    GET  /api/v1/sos/active                       — active alerts, newest first
    GET  /api/v1/sos/my-alerts                    — the caller's alerts
    GET  /api/v1/sos/nearby/{lat}/{lon}/{radius}  — active alerts within radius km
    GET  /api/v1/sos/{id}                         — one alert, ledger included
    PUT  /api/v1/sos/{id}/status                  — resolve / mark false alarm
    POST /api/v1/sos/{id}/contact-response        — record a contact's answer
    POST /api/v1/sos/{id}/notify-contacts         — targeted fan-out
    GET  /api/v1/sos/test/emergency-contacts      — targeted-mode readiness
    GET  /api/v1/sos/test/all-users               — broadcast-mode readiness

Fixed paths are declared before /{alert_id} so they are not captured by it.
"""

from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends

from backend.app.api.deps import get_alert_manager, get_current_identity
from backend.app.api.schemas import (
    AlertListResponse,
    AlertUpdateResponse,
    ContactResponseRequest,
    CreateAlertRequest,
    CreateAlertResponse,
    NotifyContactsResponse,
    StatusUpdateRequest,
)
from backend.app.sos.lifecycle import AlertLifecycleManager
from backend.app.sos.models import Alert, Identity

router = APIRouter(prefix="/api/v1/sos", tags=["sos"])


def _listing(alerts: List[Alert]) -> Dict[str, Any]:
    return {"alerts": [a.to_summary() for a in alerts], "count": len(alerts)}


# ---------------------------------------------------------------------------
# Creation & listings
# ---------------------------------------------------------------------------

@router.post(
    "/create",
    status_code=201,
    response_model=CreateAlertResponse,
    summary="Raise an SOS alert",
    description=(
        "Persists the alert, then notifies every other active user by SMS. "
        "Notification trouble never fails the request; per-recipient "
        "outcomes are reported in `notifications`."
    ),
)
async def create_alert(
    request: CreateAlertRequest,
    identity: Identity = Depends(get_current_identity),
    manager: AlertLifecycleManager = Depends(get_alert_manager),
):
    alert, results = await manager.create_alert(
        identity,
        request.location.latitude,
        request.location.longitude,
        address=request.location.address,
        description=request.description,
        emergency_type=request.emergency_type,
    )
    return {
        "message": "SOS alert created successfully",
        "alert": alert.to_summary(),
        "notifications": [r.to_dict() for r in results],
    }


@router.get("/active", response_model=AlertListResponse, summary="List active alerts")
async def active_alerts(manager: AlertLifecycleManager = Depends(get_alert_manager)):
    return _listing(await manager.get_active_alerts())


@router.get("/my-alerts", response_model=AlertListResponse, summary="List the caller's alerts")
async def my_alerts(
    identity: Identity = Depends(get_current_identity),
    manager: AlertLifecycleManager = Depends(get_alert_manager),
):
    return _listing(await manager.get_user_alerts(identity.user_id))


@router.get(
    "/nearby/{latitude}/{longitude}/{radius_km}",
    response_model=AlertListResponse,
    summary="Active alerts near a point",
    description="Active alerts within `radius_km` kilometres, nearest first.",
)
async def nearby_alerts(
    latitude: float,
    longitude: float,
    radius_km: float,
    manager: AlertLifecycleManager = Depends(get_alert_manager),
):
    return _listing(await manager.get_nearby_alerts(latitude, longitude, radius_km))


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------

@router.get("/test/emergency-contacts", summary="Check targeted-notification readiness")
async def emergency_contacts_readiness(
    identity: Identity = Depends(get_current_identity),
    manager: AlertLifecycleManager = Depends(get_alert_manager),
):
    report = await manager.contact_readiness(identity)
    report["message"] = (
        "Emergency contacts found and ready for notifications"
        if report["emergency_contacts_count"]
        else "No emergency contacts found. Please add contacts in your profile."
    )
    return report


@router.get("/test/all-users", summary="Check broadcast readiness")
async def all_users_readiness(
    identity: Identity = Depends(get_current_identity),
    manager: AlertLifecycleManager = Depends(get_alert_manager),
):
    report = await manager.broadcast_readiness(identity)
    others = report["other_users"]
    report["message"] = (
        f"{others} other users found and ready for notifications"
        if others
        else "No other users found in the system."
    )
    return report


# ---------------------------------------------------------------------------
# Single alert
# ---------------------------------------------------------------------------

@router.get("/{alert_id}", summary="Get one alert with its notification ledger")
async def get_alert(
    alert_id: str,
    manager: AlertLifecycleManager = Depends(get_alert_manager),
):
    alert = await manager.get_alert(alert_id)
    return alert.to_dict()


@router.put("/{alert_id}/status", response_model=AlertUpdateResponse, summary="Update alert status")
async def update_status(
    alert_id: str,
    request: StatusUpdateRequest,
    identity: Identity = Depends(get_current_identity),
    manager: AlertLifecycleManager = Depends(get_alert_manager),
):
    alert = await manager.update_status(alert_id, request.status, identity, request.notes)
    return {"message": "Alert status updated successfully", "alert": alert.to_summary()}


@router.post(
    "/{alert_id}/contact-response",
    response_model=AlertUpdateResponse,
    summary="Record a contact's response",
)
async def contact_response(
    alert_id: str,
    request: ContactResponseRequest,
    manager: AlertLifecycleManager = Depends(get_alert_manager),
):
    alert = await manager.record_contact_response(
        alert_id, request.contact_phone, request.response,
    )
    return {"message": "Contact response recorded successfully", "alert": alert.to_summary()}


@router.post(
    "/{alert_id}/notify-contacts",
    response_model=NotifyContactsResponse,
    summary="Notify the creator's emergency contacts",
    description="Only the alert's creator may trigger this. Replaces the alert's ledger.",
)
async def notify_contacts(
    alert_id: str,
    identity: Identity = Depends(get_current_identity),
    manager: AlertLifecycleManager = Depends(get_alert_manager),
):
    results = await manager.notify_contacts(alert_id, identity)
    return {
        "message": "Emergency contacts notified successfully",
        "notifications": [r.to_dict() for r in results],
    }
