"""
Account helpers — lookups, deletion scheduling, sanitize-in-place and
invite-code minting.  None of these commit; the caller owns the transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from maelink.core.config import settings
from maelink.core.security import generate_invite_value
from maelink.core.timeutils import utcnow
from maelink.models.invite_code import InviteCode
from maelink.models.user import User

logger = logging.getLogger(__name__)

DELETED_DISPLAY_NAME = "Deleted User"


async def get_user_by_name(db: AsyncSession, name: str) -> User | None:
    result = await db.execute(
        select(User).where(User.name == name, User.deleted_at.is_(None))
    )
    return result.scalar_one_or_none()


async def get_user_by_token(db: AsyncSession, token: str) -> User | None:
    result = await db.execute(
        select(User).where(User.token == token, User.deleted_at.is_(None))
    )
    return result.scalar_one_or_none()


async def get_user_by_uuid(db: AsyncSession, uuid: str) -> User | None:
    result = await db.execute(
        select(User).where(User.uuid == uuid, User.deleted_at.is_(None))
    )
    return result.scalar_one_or_none()


async def resolve_user(
    db: AsyncSession,
    name: str | None = None,
    uuid: str | None = None,
) -> User | None:
    """Find a live user by name or uuid (uuid wins when both are given)."""
    if uuid:
        return await get_user_by_uuid(db, uuid)
    if name:
        return await get_user_by_name(db, name)
    return None


async def find_user_by_name_or_uuid(db: AsyncSession, ident: str) -> User | None:
    """Like :func:`resolve_user` but for a single free-form identifier.

    Deleted accounts are included so audit queries can still target them.
    """
    result = await db.execute(
        select(User).where(or_(User.name == ident, User.uuid == ident)).limit(1)
    )
    return result.scalar_one_or_none()


def schedule_deletion(user: User, initiated_by: User, now: datetime | None = None) -> datetime:
    when = (now or utcnow()) + timedelta(days=settings.DELETION_GRACE_DAYS)
    user.deletion_scheduled_at = when
    user.deletion_initiated_by = initiated_by.id
    return when


def sanitize_account(user: User, now: datetime | None = None) -> None:
    """Strip credentials and identity from *user*, keeping the row and uuid."""
    user.pswd = None
    user.token = None
    user.system_key = None
    user.avatar = None
    user.name = f"deleted-{user.uuid.replace('-', '')}"
    user.display_name = DELETED_DISPLAY_NAME
    user.deleted_at = now or utcnow()
    user.deletion_scheduled_at = None


def mint_invite_code(db: AsyncSession) -> InviteCode:
    code = InviteCode(
        value=generate_invite_value(),
        expires_at=utcnow() + timedelta(days=settings.INVITE_CODE_TTL_DAYS),
    )
    db.add(code)
    return code
