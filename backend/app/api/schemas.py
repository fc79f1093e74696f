"""
Pydantic schemas for the SOS API.

Separated from the route handlers so they are reusable across the
codebase (background workers, tests). Range checks on coordinates,
descriptions and enum values are left to the lifecycle manager so that
every rejection carries the same field-level error shape.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class LocationInput(BaseModel):
    """GPS fix from the device, or a manually entered point."""
    latitude: float = Field(..., description="Latitude in decimal degrees", examples=[12.9716])
    longitude: float = Field(..., description="Longitude in decimal degrees", examples=[77.5946])
    address: Optional[str] = Field(None, examples=["MG Road, Bengaluru"])


class CreateAlertRequest(BaseModel):
    location: LocationInput
    description: Optional[str] = Field(None, examples=["Being followed near the metro station"])
    emergency_type: Optional[str] = Field(
        None, examples=["harassment"],
        description="harassment / assault / medical / accident / other",
    )


class StatusUpdateRequest(BaseModel):
    status: str = Field(..., examples=["resolved"], description="active / resolved / false_alarm")
    notes: Optional[str] = Field(None, examples=["Reached home safely"])


class ContactResponseRequest(BaseModel):
    contact_phone: str = Field(..., examples=["+919876543210"])
    response: str = Field(
        ..., examples=["responding"],
        description="acknowledged / responding / unreachable",
    )


class EmergencyContactCreate(BaseModel):
    name: str = Field(..., examples=["Priya"])
    phone: str = Field(..., examples=["9876543210"], description="10-digit Indian mobile number")
    relationship: str = Field("", examples=["Sister"])


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class LocationOut(BaseModel):
    latitude: float
    longitude: float
    address: str = ""


class AlertSummaryOut(BaseModel):
    """List view of an alert. Never carries the notification ledger."""
    id: str
    status: str
    priority: str
    emergency_type: str
    location: LocationOut
    created_at: Optional[str]
    user_name: str
    user_phone: str


class NotificationOut(BaseModel):
    name: str
    phone: str
    relationship: str
    status: str
    error: str = ""


class CreateAlertResponse(BaseModel):
    message: str
    alert: AlertSummaryOut
    notifications: List[NotificationOut]


class AlertListResponse(BaseModel):
    alerts: List[AlertSummaryOut]
    count: int


class AlertUpdateResponse(BaseModel):
    message: str
    alert: AlertSummaryOut


class NotifyContactsResponse(BaseModel):
    message: str
    notifications: List[NotificationOut]


class EmergencyContactOut(BaseModel):
    id: str
    name: str
    phone: str
    relationship: str = ""


class EmergencyContactsResponse(BaseModel):
    message: Optional[str] = None
    emergency_contacts: List[EmergencyContactOut]


class UserOut(BaseModel):
    """Directory view of a user. An empty name is rendered as "Anonymous"."""
    id: str
    name: str
    phone: str
    is_active: bool


class UserListResponse(BaseModel):
    users: List[UserOut]
    count: int


class UserDetailOut(UserOut):
    emergency_contacts: List[EmergencyContactOut]


class UserSearchResponse(BaseModel):
    user: UserDetailOut


class UserStatsResponse(BaseModel):
    total_users: int
    users_with_emergency_contacts: int
    percentage_with_contacts: int
