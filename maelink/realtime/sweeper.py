"""
Lifecycle sweeps — periodic reconciliation of stored user state with the
live session registry.

Two loops run on the application's event loop:

* every ``SWEEP_INTERVAL_SECONDS``: the expiry pass, then the deletion pass;
* every ``NUDGE_INTERVAL_SECONDS``: the nudge pass.

Each pass is guarded on its own: a failure is logged and neither the other
passes nor the loops are affected.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette import status

from maelink.core.timeutils import utcnow
from maelink.models.user import User
from maelink.realtime.registry import SessionRegistry
from maelink.services import accounts
from maelink.services.audit import AuditAction, AuditLogRecorder

logger = logging.getLogger(__name__)

NUDGE_EVENT = {
    "cmd": "auth_required",
    "reason": "notAuthenticated",
    "message": "Log in or register to keep receiving the feed.",
}


class SweepScheduler:
    def __init__(
        self,
        registry: SessionRegistry,
        session_factory: async_sessionmaker[AsyncSession],
        audit: AuditLogRecorder,
        sweep_interval: float,
        nudge_interval: float,
    ) -> None:
        self._registry = registry
        self._session_factory = session_factory
        self._audit = audit
        self._sweep_interval = sweep_interval
        self._nudge_interval = nudge_interval
        self._tasks: list[asyncio.Task[None]] = []

    # ── Lifecycle ───────────────────────────────────────────────────
    def start(self) -> None:
        """Launch both loops. Called once from the application lifespan."""
        self._tasks = [
            asyncio.create_task(self._every(self._sweep_interval, self.run_reconcile), name="sweep"),
            asyncio.create_task(self._every(self._nudge_interval, self.run_nudge), name="nudge"),
        ]
        logger.info(
            "Sweeps scheduled (reconcile every %ss, nudge every %ss)",
            self._sweep_interval,
            self._nudge_interval,
        )

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    @staticmethod
    async def _every(interval: float, job: Callable[[], Awaitable[None]]) -> None:
        while True:
            await asyncio.sleep(interval)
            await job()

    async def run_reconcile(self) -> None:
        await self._guarded("expiry", self.run_expiry_pass)
        await self._guarded("deletion", self.run_deletion_pass)

    async def run_nudge(self) -> None:
        await self._guarded("nudge", self.run_nudge_pass)

    @staticmethod
    async def _guarded(name: str, job: Callable[[], Awaitable[object]]) -> None:
        try:
            await job()
        except Exception:
            logger.exception("%s pass failed; will retry on the next sweep", name)

    # ── Passes ──────────────────────────────────────────────────────
    async def run_expiry_pass(self, now: datetime | None = None) -> int:
        """Evict sessions of expired or banned users; clear lapsed bans.

        Returns the number of sessions evicted.
        """
        now = now or utcnow()
        async with self._session_factory() as db:
            result = await db.execute(
                select(User).where(
                    User.deleted_at.is_(None),
                    or_(
                        User.expires_at <= now,
                        and_(
                            User.banned.is_(True),
                            or_(User.banned_until.is_(None), User.banned_until > now),
                        ),
                    ),
                )
            )
            doomed = result.scalars().all()

            lapsed = await db.execute(
                select(User).where(User.banned.is_(True), User.banned_until <= now)
            )
            for user in lapsed.scalars().all():
                user.banned = False
                user.banned_until = None
                logger.info("Ban on %s lapsed", user.name)
            await db.commit()

        evicted = 0
        for user in doomed:
            for session in self._registry.bound_to_token(user.token):
                await self._registry.evict(session, status.WS_1008_POLICY_VIOLATION)
                evicted += 1
        if evicted:
            logger.info("Expiry pass evicted %d session(s)", evicted)
        return evicted

    async def run_deletion_pass(self, now: datetime | None = None) -> int:
        """Apply every deletion whose grace period has run out.

        Returns the number of accounts sanitized.
        """
        now = now or utcnow()
        async with self._session_factory() as db:
            result = await db.execute(
                select(User).where(
                    User.deletion_scheduled_at.is_not(None),
                    User.deletion_scheduled_at <= now,
                    User.deleted_at.is_(None),
                )
            )
            due = result.scalars().all()
            applied: list[tuple[int, str | None, str | None]] = []
            for user in due:
                applied.append((user.id, user.token, user.name))
                accounts.sanitize_account(user, now)
            await db.commit()

        for user_id, token, former_name in applied:
            await self._audit.record(
                None,
                user_id,
                AuditAction.APPLIED_DELETION,
                f"scheduled deletion of {former_name} applied",
            )
            for session in self._registry.bound_to_token(token):
                await self._registry.evict(
                    session,
                    status.WS_1000_NORMAL_CLOSURE,
                    event={"cmd": "account_deleted"},
                )
            logger.info("Deleted account %s (user id %s)", former_name, user_id)
        return len(applied)

    async def run_nudge_pass(self) -> int:
        """Remind every unauthenticated session to log in."""
        nudged = 0
        for session in self._registry.anonymous():
            if await session.send(NUDGE_EVENT):
                nudged += 1
        return nudged
