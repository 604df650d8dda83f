"""
Audit log query — moderators and above.

Actor and target ids are resolved to names in the same query; entries
written by the sweeps report ``system`` as their actor.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from maelink.api.deps import get_db, require_mod
from maelink.core.config import settings
from maelink.core.timeutils import ensure_utc, isoformat
from maelink.models.action_log import ActionLog
from maelink.models.user import User
from maelink.schemas.action_log import ActionLogRead, ActionLogResponse
from maelink.services.accounts import find_user_by_name_or_uuid

router = APIRouter(tags=["audit"])

SYSTEM_ACTOR = "system"


@router.get("/actionlogs", response_model=ActionLogResponse)
async def list_action_logs(
    action: Optional[str] = Query(default=None),
    actor: Optional[str] = Query(default=None),
    target: Optional[str] = Query(default=None),
    since: Optional[datetime] = Query(default=None),
    until: Optional[datetime] = Query(default=None),
    limit: int = Query(default=settings.ACTION_LOG_DEFAULT_LIMIT, ge=1),
    page: int = Query(default=1, ge=1),
    db: AsyncSession = Depends(get_db),
    _mod: User = Depends(require_mod),
) -> ActionLogResponse:
    limit = min(limit, settings.ACTION_LOG_MAX_LIMIT)
    empty = ActionLogResponse(logs=[], page=page, limit=limit)

    actor_user = aliased(User)
    target_user = aliased(User)
    stmt = (
        select(ActionLog, actor_user, target_user)
        .outerjoin(actor_user, ActionLog.actor_id == actor_user.id)
        .outerjoin(target_user, ActionLog.target_user_id == target_user.id)
    )

    if action:
        stmt = stmt.where(ActionLog.action == action)
    if actor:
        if actor == SYSTEM_ACTOR:
            stmt = stmt.where(ActionLog.actor_id.is_(None))
        else:
            found = await find_user_by_name_or_uuid(db, actor)
            if found is None:
                return empty
            stmt = stmt.where(ActionLog.actor_id == found.id)
    if target:
        found = await find_user_by_name_or_uuid(db, target)
        if found is None:
            return empty
        stmt = stmt.where(ActionLog.target_user_id == found.id)
    if since is not None:
        stmt = stmt.where(ActionLog.created_at >= ensure_utc(since))
    if until is not None:
        stmt = stmt.where(ActionLog.created_at <= ensure_utc(until))

    stmt = (
        stmt.order_by(ActionLog.created_at.desc(), ActionLog.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )
    result = await db.execute(stmt)

    logs = [
        ActionLogRead(
            id=entry.id,
            action=entry.action,
            actor=actor_row.name if actor_row is not None else SYSTEM_ACTOR,
            actor_uuid=actor_row.uuid if actor_row is not None else None,
            target=target_row.name if target_row is not None else None,
            target_uuid=target_row.uuid if target_row is not None else None,
            details=entry.details,
            created_at=isoformat(entry.created_at),
        )
        for entry, actor_row, target_row in result.all()
    ]
    return ActionLogResponse(logs=logs, page=page, limit=limit)
