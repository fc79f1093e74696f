"""
FastAPI routes: emergency contacts of the calling user, and read-only
directory lookups for responders and the admin dashboard.

    GET    /api/v1/users/                                 — active users (first 100)
    GET    /api/v1/users/search/phone/{phone}             — active user by exact phone
    GET    /api/v1/users/stats/overview                   — contact coverage counts
    GET    /api/v1/users/emergency-contacts               — list, in insertion order
    POST   /api/v1/users/emergency-contacts               — add one
    DELETE /api/v1/users/emergency-contacts/{contact_id}  — remove one

Every route needs a known, active caller (X-User-Id).
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from backend.app.api.deps import get_current_identity, get_user_directory
from backend.app.api.schemas import (
    EmergencyContactCreate,
    EmergencyContactsResponse,
    UserListResponse,
    UserSearchResponse,
    UserStatsResponse,
)
from backend.app.core.errors import NotFoundError
from backend.app.sos.directory import UserDirectory
from backend.app.sos.models import Identity

router = APIRouter(prefix="/api/v1/users", tags=["users"])

USER_LISTING_LIMIT = 100


# ---------------------------------------------------------------------------
# Directory lookups
# ---------------------------------------------------------------------------

@router.get("/", response_model=UserListResponse, summary="List active users")
async def list_users(
    identity: Identity = Depends(get_current_identity),
    directory: UserDirectory = Depends(get_user_directory),
):
    users = await directory.list_active_users(limit=USER_LISTING_LIMIT)
    return {"users": [u.to_dict() for u in users], "count": len(users)}


@router.get(
    "/search/phone/{phone}",
    response_model=UserSearchResponse,
    summary="Find an active user by phone number",
    description="Exact match on the stored number; `9876543210` and `+919876543210` differ.",
)
async def search_by_phone(
    phone: str,
    identity: Identity = Depends(get_current_identity),
    directory: UserDirectory = Depends(get_user_directory),
):
    user = await directory.find_active_user_by_phone(phone)
    if user is None:
        raise NotFoundError("User", phone=phone)
    contacts = await directory.get_emergency_contacts(user.id)
    return {
        "user": {
            **user.to_dict(),
            "emergency_contacts": [c.to_dict() for c in contacts],
        }
    }


@router.get("/stats/overview", response_model=UserStatsResponse, summary="Directory overview")
async def stats_overview(
    identity: Identity = Depends(get_current_identity),
    directory: UserDirectory = Depends(get_user_directory),
):
    return await directory.overview()


# ---------------------------------------------------------------------------
# Emergency contacts of the caller
# ---------------------------------------------------------------------------

@router.get("/emergency-contacts", response_model=EmergencyContactsResponse)
async def list_contacts(
    identity: Identity = Depends(get_current_identity),
    directory: UserDirectory = Depends(get_user_directory),
):
    contacts = await directory.get_emergency_contacts(identity.user_id)
    return {"emergency_contacts": [c.to_dict() for c in contacts]}


@router.post("/emergency-contacts", status_code=201, response_model=EmergencyContactsResponse)
async def add_contact(
    request: EmergencyContactCreate,
    identity: Identity = Depends(get_current_identity),
    directory: UserDirectory = Depends(get_user_directory),
):
    contacts = await directory.add_emergency_contact(
        identity.user_id, request.name, request.phone, request.relationship,
    )
    return {
        "message": "Emergency contact added successfully",
        "emergency_contacts": [c.to_dict() for c in contacts],
    }


@router.delete("/emergency-contacts/{contact_id}", response_model=EmergencyContactsResponse)
async def remove_contact(
    contact_id: str,
    identity: Identity = Depends(get_current_identity),
    directory: UserDirectory = Depends(get_user_directory),
):
    contacts = await directory.remove_emergency_contact(identity.user_id, contact_id)
    return {
        "message": "Emergency contact deleted successfully",
        "emergency_contacts": [c.to_dict() for c in contacts],
    }
