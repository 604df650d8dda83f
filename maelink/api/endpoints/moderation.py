"""
Moderation endpoints — bans and role assignment.

Every successful mutation writes exactly one audit entry and, for bans,
closes the target's live sockets.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from starlette import status

from maelink.api.deps import get_audit, get_db, get_registry, require_admin, require_mod
from maelink.core.timeutils import ensure_utc, isoformat, utcnow
from maelink.models.user import User
from maelink.realtime.registry import SessionRegistry
from maelink.schemas.user import BanRequest, BanResponse, RoleRequest, RoleResponse, UnbanRequest
from maelink.services.accounts import resolve_user
from maelink.services.audit import AuditAction, AuditLogRecorder
from maelink.services.authorization import ensure_can_assign_role, ensure_can_ban

router = APIRouter(tags=["moderation"])
logger = logging.getLogger(__name__)


async def _load_target(db: AsyncSession, name: str | None, uuid: str | None) -> User:
    target = await resolve_user(db, name=name, uuid=uuid)
    if target is None:
        raise HTTPException(status_code=404, detail="User not found")
    return target


@router.post("/ban", response_model=BanResponse)
async def ban_user(
    body: BanRequest,
    db: AsyncSession = Depends(get_db),
    audit: AuditLogRecorder = Depends(get_audit),
    registry: SessionRegistry = Depends(get_registry),
    actor: User = Depends(require_mod),
) -> BanResponse:
    """Ban until a timestamp, for a number of days, or permanently."""
    now = utcnow()
    if body.until is not None:
        until = ensure_utc(body.until)
        if until <= now:
            raise HTTPException(status_code=400, detail="Ban end must be in the future")
    elif body.days is not None:
        until = now + timedelta(days=body.days)
    else:
        until = None

    target = await _load_target(db, body.name, body.uuid)
    ensure_can_ban(actor, target)

    target.banned = True
    target.banned_until = until
    token = target.token
    await db.commit()
    until_text = isoformat(until)
    logger.info("%s banned %s until %s", actor.name, target.name, until_text or "forever")

    await audit.record(
        actor.id,
        target.id,
        AuditAction.BAN,
        f"until={until_text or 'permanent'}" + (f" reason={body.reason}" if body.reason else ""),
    )
    for session in registry.bound_to_token(token):
        await registry.evict(
            session,
            status.WS_1008_POLICY_VIOLATION,
            event={"cmd": "banned", "until": until_text},
        )
    return BanResponse(user=target.name, until=until_text)


@router.post("/unban", response_model=BanResponse)
async def unban_user(
    body: UnbanRequest,
    db: AsyncSession = Depends(get_db),
    audit: AuditLogRecorder = Depends(get_audit),
    actor: User = Depends(require_mod),
) -> BanResponse:
    target = await _load_target(db, body.name, body.uuid)
    ensure_can_ban(actor, target)
    if not target.banned:
        raise HTTPException(status_code=409, detail="User is not banned")

    target.banned = False
    target.banned_until = None
    await db.commit()
    logger.info("%s lifted the ban on %s", actor.name, target.name)
    await audit.record(actor.id, target.id, AuditAction.UNBAN, None)
    return BanResponse(user=target.name, until=None)


@router.post("/permissions", response_model=RoleResponse)
async def set_role(
    body: RoleRequest,
    db: AsyncSession = Depends(get_db),
    audit: AuditLogRecorder = Depends(get_audit),
    actor: User = Depends(require_admin),
) -> RoleResponse:
    target = await _load_target(db, body.name, body.uuid)
    ensure_can_assign_role(actor, target, body.role)

    previous = target.role
    target.role = body.role
    await db.commit()
    logger.info("%s changed role of %s: %s -> %s", actor.name, target.name, previous, body.role)

    await audit.record(actor.id, target.id, AuditAction.ROLE_CHANGE, f"{previous} -> {body.role}")
    return RoleResponse(user=target.name, role=target.role)
