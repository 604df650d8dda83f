"""
FastAPI dependencies — database session, shared services and auth guards.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from maelink.models.user import User
from maelink.realtime.notifier import NotificationBus
from maelink.realtime.registry import SessionRegistry
from maelink.services.accounts import get_user_by_token
from maelink.services.audit import AuditLogRecorder
from maelink.services.authorization import has_role, is_banned


# ── Database session ────────────────────────────────────────────────
async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    async with request.app.state.session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


# ── Shared services (built once in create_app) ──────────────────────
def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.registry


def get_audit(request: Request) -> AuditLogRecorder:
    return request.app.state.audit


def get_bus(request: Request) -> NotificationBus:
    return request.app.state.bus


# ── Auth dependencies ───────────────────────────────────────────────
async def get_current_user(
    token: Optional[str] = Header(default=None),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Resolve the ``token`` header to a live (non-deleted) user."""
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
    user = await get_user_by_token(db, token)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
    return user


async def get_current_active_user(
    current_user: User = Depends(get_current_user),
) -> User:
    """Reject accounts under an effective ban."""
    if is_banned(current_user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Banned")
    return current_user


def require_role(minimum: str):
    """Build a dependency admitting only active users of at least *minimum* role."""

    async def _guard(current_user: User = Depends(get_current_active_user)) -> User:
        if not has_role(current_user, minimum):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"{minimum.capitalize()} privileges required",
            )
        return current_user

    return _guard


require_mod = require_role("mod")
require_admin = require_role("admin")
