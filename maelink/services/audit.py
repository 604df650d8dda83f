"""
Audit log recorder — best-effort, append-only trail of privileged actions.

Entries are written through a dedicated session *after* the triggering
action has committed; a failed write is logged and never propagated.
"""

from __future__ import annotations

import logging
from enum import Enum

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from maelink.models.action_log import ActionLog

logger = logging.getLogger(__name__)


class AuditAction(str, Enum):
    BAN = "ban"
    UNBAN = "unban"
    ROLE_CHANGE = "role_change"
    DELETE_POST = "delete_post"
    INSTANT_DELETION = "instant_deletion"
    SCHEDULED_DELETION = "scheduled_deletion"
    APPLIED_DELETION = "applied_deletion"
    SYSKEY_LOGIN = "syskey_login"


class AuditLogRecorder:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def record(
        self,
        actor_id: int | None,
        target_user_id: int | None,
        action: AuditAction | str,
        details: str | None = None,
    ) -> bool:
        """Append one entry. Returns False (after logging) if the write failed."""
        tag = action.value if isinstance(action, AuditAction) else action
        try:
            async with self._session_factory() as db:
                db.add(
                    ActionLog(
                        actor_id=actor_id,
                        target_user_id=target_user_id,
                        action=tag,
                        details=details,
                    )
                )
                await db.commit()
        except SQLAlchemyError:
            logger.exception(
                "Failed to write audit entry %s (actor=%s target=%s)",
                tag,
                actor_id,
                target_user_id,
            )
            return False
        return True
