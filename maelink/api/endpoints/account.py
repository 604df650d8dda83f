"""
Account endpoints — profile lookup and account deletion.

Deleting your own account only schedules it (``DELETION_GRACE_DAYS`` out);
logging in before the sweep applies it cancels the schedule.  Moderators
may schedule someone else's deletion or, with ``instant=true``, sanitize
the account on the spot.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from starlette import status

from maelink.api.deps import get_audit, get_current_user, get_db, get_registry
from maelink.core.timeutils import isoformat
from maelink.models.user import User
from maelink.realtime.registry import SessionRegistry
from maelink.schemas.user import AccountDeletionResponse, MeResponse
from maelink.services.accounts import resolve_user, sanitize_account, schedule_deletion
from maelink.services.audit import AuditAction, AuditLogRecorder
from maelink.services.authorization import ensure_can_delete_account, is_banned

router = APIRouter(tags=["account"])
logger = logging.getLogger(__name__)


@router.get("/me", response_model=MeResponse)
async def read_current_user(current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return profile of the currently authenticated user."""
    return MeResponse(
        name=current_user.name,
        display_name=current_user.display_name,
        role=current_user.role,
        uuid=current_user.uuid,
        avatar=current_user.avatar,
    )


@router.delete("/account", response_model=AccountDeletionResponse)
async def delete_account(
    user: Optional[str] = Query(default=None),
    uuid: Optional[str] = Query(default=None),
    instant: bool = Query(default=False),
    db: AsyncSession = Depends(get_db),
    audit: AuditLogRecorder = Depends(get_audit),
    registry: SessionRegistry = Depends(get_registry),
    actor: User = Depends(get_current_user),
) -> AccountDeletionResponse:
    if user or uuid:
        target = await resolve_user(db, name=user, uuid=uuid)
        if target is None:
            raise HTTPException(status_code=404, detail="User not found")
    else:
        target = actor
    self_service = target.id == actor.id

    if not self_service:
        # A banned account may still leave, but not act on anyone else.
        if is_banned(actor):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Banned")
        ensure_can_delete_account(actor, target)

    if instant and not self_service:
        token = target.token
        former_name = target.name
        sanitize_account(target)
        await db.commit()
        logger.info("%s deleted account %s instantly", actor.name, former_name)

        await audit.record(
            actor.id, target.id, AuditAction.INSTANT_DELETION, f"account {former_name}"
        )
        for session in registry.bound_to_token(token):
            await registry.evict(
                session,
                status.WS_1000_NORMAL_CLOSURE,
                event={"cmd": "account_deleted"},
            )
        return AccountDeletionResponse(user=former_name, instant=True)

    if instant:
        # Self-service deletion always gets the grace period.
        logger.info("%s asked for instant self-deletion; scheduling instead", actor.name)

    when = schedule_deletion(target, initiated_by=actor)
    await db.commit()
    logger.info("Deletion of %s scheduled for %s by %s", target.name, isoformat(when), actor.name)
    if not self_service:
        await audit.record(
            actor.id, target.id, AuditAction.SCHEDULED_DELETION, f"due {isoformat(when)}"
        )
    return AccountDeletionResponse(
        user=target.name,
        deletion_scheduled_at=isoformat(when),
    )
