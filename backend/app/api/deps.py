"""
FastAPI dependencies shared by the v1 routers.

The lifecycle manager and user directory are built once in the app
lifespan and parked on app.state. The auth gateway in front of this
service forwards the authenticated user's id as X-User-Id; it is
resolved through the directory into a trusted Identity.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Header, Request
from fastapi.exceptions import HTTPException

from backend.app.core.errors import AuthenticationError
from backend.app.sos.directory import UserDirectory
from backend.app.sos.lifecycle import AlertLifecycleManager
from backend.app.sos.models import Identity


def get_alert_manager(request: Request) -> AlertLifecycleManager:
    manager = getattr(request.app.state, "alert_manager", None)
    if manager is None:
        raise HTTPException(status_code=503, detail="SOS service is not ready")
    return manager


def get_user_directory(request: Request) -> UserDirectory:
    directory = getattr(request.app.state, "user_directory", None)
    if directory is None:
        raise HTTPException(status_code=503, detail="User directory is not ready")
    return directory


async def get_current_identity(
    request: Request,
    x_user_id: Optional[str] = Header(None),
) -> Identity:
    if not x_user_id or not x_user_id.strip():
        raise AuthenticationError()

    directory = get_user_directory(request)
    user = await directory.get_user(x_user_id.strip())
    if user is None or not user.is_active:
        raise AuthenticationError("Unknown or inactive user")
    return user.to_identity()
