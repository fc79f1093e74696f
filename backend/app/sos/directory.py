"""
directory.py — Read side of the user base, plus emergency-contact upkeep.

The SOS core only needs two questions answered:

    list_active_users_except(id)   broadcast-mode recipients
    get_emergency_contacts(id)     targeted-mode recipients, in the order
                                   the user added them

Responders and the admin dashboard read it through three more queries:
find_active_user_by_phone(), list_active_users(limit) and overview().

Account registration and credentials live in the auth service; add_user()
exists so the directory can be seeded from it.
"""

from __future__ import annotations

import copy
import logging
import math
from typing import Dict, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.core.errors import NotFoundError, ValidationError
from backend.app.sos.db_models import EmergencyContactRecord, UserRecord
from backend.app.sos.models import EmergencyContact, UserRef
from backend.app.sos.phone import is_indian_mobile

logger = logging.getLogger(__name__)

CONTACT_NAME_MIN_LENGTH = 2
RELATIONSHIP_MAX_LENGTH = 50


def validate_contact(name: str, phone: str, relationship: str) -> tuple[str, str, str]:
    """Return trimmed (name, phone, relationship) or raise ValidationError."""
    name = (name or "").strip()
    phone = (phone or "").strip()
    relationship = (relationship or "").strip()
    if len(name) < CONTACT_NAME_MIN_LENGTH:
        raise ValidationError(
            "Contact name must be at least 2 characters long", field="name",
        )
    if not is_indian_mobile(phone):
        raise ValidationError(
            "Please enter a valid Indian mobile number", field="phone",
        )
    if len(relationship) > RELATIONSHIP_MAX_LENGTH:
        raise ValidationError(
            "Relationship must be less than 50 characters", field="relationship",
        )
    return name, phone, relationship


def _duplicate_contact(phone: str) -> ValidationError:
    return ValidationError(
        "Emergency contact with this phone number already exists", field="phone",
    )


def _percentage(part: int, whole: int) -> int:
    # Rounds half up, 0 for an empty directory
    return math.floor(part * 100 / whole + 0.5) if whole else 0


class UserDirectory:
    """Async user directory interface."""

    async def add_user(self, user: UserRef) -> UserRef:
        raise NotImplementedError

    async def get_user(self, user_id: str) -> Optional[UserRef]:
        raise NotImplementedError

    async def list_active_users(self, limit: Optional[int] = None) -> List[UserRef]:
        """Active users in registration order, at most `limit` of them."""
        raise NotImplementedError

    async def list_active_users_except(self, user_id: str) -> List[UserRef]:
        raise NotImplementedError

    async def find_active_user_by_phone(self, phone: str) -> Optional[UserRef]:
        """Exact match on the stored phone string."""
        raise NotImplementedError

    async def count_active_users(self) -> int:
        raise NotImplementedError

    async def count_active_users_with_contacts(self) -> int:
        raise NotImplementedError

    async def overview(self) -> Dict[str, int]:
        total = await self.count_active_users()
        with_contacts = await self.count_active_users_with_contacts()
        return {
            "total_users": total,
            "users_with_emergency_contacts": with_contacts,
            "percentage_with_contacts": _percentage(with_contacts, total),
        }

    async def get_emergency_contacts(self, user_id: str) -> List[EmergencyContact]:
        raise NotImplementedError

    async def add_emergency_contact(
        self, user_id: str, name: str, phone: str, relationship: str = "",
    ) -> List[EmergencyContact]:
        raise NotImplementedError

    async def remove_emergency_contact(
        self, user_id: str, contact_id: str,
    ) -> List[EmergencyContact]:
        raise NotImplementedError


# ═══════════════════════════════════════════════════════════════════════════
# In-Memory Directory
# ═══════════════════════════════════════════════════════════════════════════

class InMemoryUserDirectory(UserDirectory):

    def __init__(self) -> None:
        self._users: Dict[str, UserRef] = {}
        self._contacts: Dict[str, List[EmergencyContact]] = {}
        self._next_contact_id = 1

    async def add_user(self, user: UserRef) -> UserRef:
        self._users[user.id] = copy.deepcopy(user)
        self._contacts.setdefault(user.id, [])
        return user

    def _require(self, user_id: str) -> UserRef:
        user = self._users.get(str(user_id))
        if user is None:
            raise NotFoundError("User", user_id=str(user_id))
        return user

    async def get_user(self, user_id: str) -> Optional[UserRef]:
        user = self._users.get(str(user_id))
        return copy.deepcopy(user) if user else None

    async def list_active_users(self, limit: Optional[int] = None) -> List[UserRef]:
        active = [copy.deepcopy(u) for u in self._users.values() if u.is_active]
        return active if limit is None else active[:limit]

    async def list_active_users_except(self, user_id: str) -> List[UserRef]:
        return [
            copy.deepcopy(u) for u in self._users.values()
            if u.is_active and u.id != str(user_id)
        ]

    async def find_active_user_by_phone(self, phone: str) -> Optional[UserRef]:
        for user in self._users.values():
            if user.is_active and user.phone == phone:
                return copy.deepcopy(user)
        return None

    async def count_active_users(self) -> int:
        return sum(1 for u in self._users.values() if u.is_active)

    async def count_active_users_with_contacts(self) -> int:
        return sum(
            1 for u in self._users.values() if u.is_active and self._contacts.get(u.id)
        )

    async def get_emergency_contacts(self, user_id: str) -> List[EmergencyContact]:
        return copy.deepcopy(self._contacts.get(str(user_id), []))

    async def add_emergency_contact(
        self, user_id: str, name: str, phone: str, relationship: str = "",
    ) -> List[EmergencyContact]:
        self._require(user_id)
        name, phone, relationship = validate_contact(name, phone, relationship)
        contacts = self._contacts.setdefault(str(user_id), [])
        if any(c.phone == phone for c in contacts):
            raise _duplicate_contact(phone)
        contacts.append(
            EmergencyContact(str(self._next_contact_id), name, phone, relationship)
        )
        self._next_contact_id += 1
        logger.info("Emergency contact added for user %s", user_id, extra={"user_id": str(user_id)})
        return copy.deepcopy(contacts)

    async def remove_emergency_contact(
        self, user_id: str, contact_id: str,
    ) -> List[EmergencyContact]:
        self._require(user_id)
        contacts = self._contacts.get(str(user_id), [])
        for index, contact in enumerate(contacts):
            if contact.id == str(contact_id):
                del contacts[index]
                return copy.deepcopy(contacts)
        raise NotFoundError("Emergency contact", contact_id=str(contact_id))


# ═══════════════════════════════════════════════════════════════════════════
# SQL Directory
# ═══════════════════════════════════════════════════════════════════════════

def _to_user(record: UserRecord) -> UserRef:
    return UserRef(
        id=record.id,
        name=record.name or "",
        phone=record.phone,
        aadhar=record.aadhar or "",
        is_active=record.is_active,
    )


def _active_users():
    return (
        select(UserRecord)
        .where(UserRecord.is_active.is_(True))
        .order_by(UserRecord.created_at, UserRecord.id)
    )


def _to_contact(record: EmergencyContactRecord) -> EmergencyContact:
    return EmergencyContact(
        id=str(record.id),
        name=record.name,
        phone=record.phone,
        relationship=record.relationship or "",
    )


class SqlUserDirectory(UserDirectory):

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def add_user(self, user: UserRef) -> UserRef:
        async with self._session_factory() as session:
            await session.merge(UserRecord(
                id=user.id,
                name=user.name,
                phone=user.phone,
                aadhar=user.aadhar,
                is_active=user.is_active,
            ))
            await session.commit()
        return user

    async def get_user(self, user_id: str) -> Optional[UserRef]:
        async with self._session_factory() as session:
            record = await session.get(UserRecord, str(user_id))
            return _to_user(record) if record else None

    async def _users(self, stmt) -> List[UserRef]:
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [_to_user(r) for r in result.scalars().all()]

    async def list_active_users(self, limit: Optional[int] = None) -> List[UserRef]:
        stmt = _active_users()
        if limit is not None:
            stmt = stmt.limit(limit)
        return await self._users(stmt)

    async def list_active_users_except(self, user_id: str) -> List[UserRef]:
        return await self._users(_active_users().where(UserRecord.id != str(user_id)))

    async def find_active_user_by_phone(self, phone: str) -> Optional[UserRef]:
        found = await self._users(_active_users().where(UserRecord.phone == phone).limit(1))
        return found[0] if found else None

    async def count_active_users(self) -> int:
        async with self._session_factory() as session:
            return await session.scalar(
                select(func.count())
                .select_from(UserRecord)
                .where(UserRecord.is_active.is_(True))
            )

    async def count_active_users_with_contacts(self) -> int:
        has_contact = (
            select(EmergencyContactRecord.id)
            .where(EmergencyContactRecord.user_id == UserRecord.id)
            .exists()
        )
        async with self._session_factory() as session:
            return await session.scalar(
                select(func.count())
                .select_from(UserRecord)
                .where(UserRecord.is_active.is_(True))
                .where(has_contact)
            )

    async def _contacts(self, session: AsyncSession, user_id: str) -> List[EmergencyContact]:
        result = await session.execute(
            select(EmergencyContactRecord)
            .where(EmergencyContactRecord.user_id == str(user_id))
            .order_by(EmergencyContactRecord.id)
        )
        return [_to_contact(r) for r in result.scalars().all()]

    async def get_emergency_contacts(self, user_id: str) -> List[EmergencyContact]:
        async with self._session_factory() as session:
            return await self._contacts(session, user_id)

    async def add_emergency_contact(
        self, user_id: str, name: str, phone: str, relationship: str = "",
    ) -> List[EmergencyContact]:
        name, phone, relationship = validate_contact(name, phone, relationship)
        async with self._session_factory() as session:
            if await session.get(UserRecord, str(user_id)) is None:
                raise NotFoundError("User", user_id=str(user_id))
            existing = await session.scalar(
                select(func.count())
                .select_from(EmergencyContactRecord)
                .where(EmergencyContactRecord.user_id == str(user_id))
                .where(EmergencyContactRecord.phone == phone)
            )
            if existing:
                raise _duplicate_contact(phone)
            session.add(EmergencyContactRecord(
                user_id=str(user_id), name=name, phone=phone, relationship=relationship,
            ))
            await session.commit()
            logger.info("Emergency contact added for user %s", user_id, extra={"user_id": str(user_id)})
            return await self._contacts(session, user_id)

    async def remove_emergency_contact(
        self, user_id: str, contact_id: str,
    ) -> List[EmergencyContact]:
        try:
            numeric_id = int(contact_id)
        except (TypeError, ValueError):
            raise NotFoundError("Emergency contact", contact_id=str(contact_id))

        async with self._session_factory() as session:
            result = await session.execute(
                delete(EmergencyContactRecord)
                .where(EmergencyContactRecord.id == numeric_id)
                .where(EmergencyContactRecord.user_id == str(user_id))
            )
            if result.rowcount == 0:
                raise NotFoundError("Emergency contact", contact_id=str(contact_id))
            await session.commit()
            return await self._contacts(session, user_id)
