"""
Protocol command dispatcher — one inbound socket frame at a time.

Frames are decoded, matched against the closed command union and routed to
a handler.  Every outcome is reported to the client as a frame; nothing a
client sends can close its own connection or disturb anyone else's.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import timedelta
from typing import Any, Awaitable, Callable

from pydantic import ValidationError
from sqlalchemy import delete as sa_delete
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from maelink.core.config import settings
from maelink.core.security import generate_token, get_password_hash, verify_password
from maelink.core.timeutils import ensure_utc, isoformat, utcnow
from maelink.models.invite_code import InviteCode
from maelink.models.user import User
from maelink.realtime.registry import Session, SessionRegistry
from maelink.schemas.protocol import (
    ClientInfo,
    LoginPassword,
    LoginSystemKey,
    LoginToken,
    ProvideToken,
    Register,
    SetAvatar,
    command_adapter,
)
from maelink.services import accounts
from maelink.services.audit import AuditAction, AuditLogRecorder
from maelink.services.authorization import is_banned

logger = logging.getLogger(__name__)

_UNKNOWN_COMMAND_ERRORS = {"union_tag_invalid", "union_tag_not_found"}

_IMAGE_URL_RE = re.compile(
    r"^https?://[^\s/$.?#][^\s]*\.(?:png|jpe?g|gif|webp|bmp|svg)(?:\?[^\s#]*)?$",
    re.IGNORECASE,
)


def error_frame(code: int, reason: str, **extra: Any) -> dict[str, Any]:
    return {"error": True, "code": code, "reason": reason, **extra}


def _account_frame(user: User) -> dict[str, Any]:
    return {
        "error": False,
        "user": user.name,
        "display": user.display_name or user.name,
        "token": user.token,
        "uuid": user.uuid,
        "role": user.role,
    }


class CommandDispatcher:
    def __init__(
        self,
        registry: SessionRegistry,
        session_factory: async_sessionmaker[AsyncSession],
        audit: AuditLogRecorder,
    ) -> None:
        self._registry = registry
        self._session_factory = session_factory
        self._audit = audit
        self._handlers: dict[type, Callable[[Session, Any], Awaitable[None]]] = {
            ClientInfo: self._client_info,
            Register: self._register,
            LoginPassword: self._login_password,
            LoginToken: self._login_token,
            ProvideToken: self._provide_token,
            LoginSystemKey: self._login_system_key,
            SetAvatar: self._set_avatar,
        }

    async def dispatch(self, session: Session, raw: str | bytes) -> None:
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            await session.send(error_frame(400, "badJSON"))
            return
        if not isinstance(data, dict):
            await session.send(error_frame(400, "badJSON"))
            return

        try:
            command = command_adapter.validate_python(data)
        except ValidationError as exc:
            if any(err["type"] in _UNKNOWN_COMMAND_ERRORS for err in exc.errors()):
                await session.send(error_frame(404, "notFound"))
            else:
                await session.send(error_frame(400, "badRequest"))
            return

        handler = self._handlers[type(command)]
        try:
            await handler(session, command)
        except Exception:
            logger.exception("Command %s failed for %s", command.cmd, session.user or "anonymous")
            await session.send(error_frame(500, "serverError"))

    # ── Shared login tail ───────────────────────────────────────────
    @staticmethod
    def _login_refusal(user: User) -> dict[str, Any] | None:
        if is_banned(user):
            return error_frame(403, "banned", until=isoformat(user.banned_until))
        return None

    async def _complete_login(
        self,
        db: AsyncSession,
        session: Session,
        user: User,
        *,
        silent: bool = False,
    ) -> None:
        if user.deletion_scheduled_at is not None:
            user.deletion_scheduled_at = None
            user.deletion_initiated_by = None
            await db.commit()
            logger.info("Pending deletion of %s cancelled by login", user.name)
        self._registry.bind(session.handle, user)
        if not silent:
            await session.send(_account_frame(user))

    # ── Handlers ────────────────────────────────────────────────────
    async def _client_info(self, session: Session, command: ClientInfo) -> None:
        self._registry.set_client_info(
            session.handle, command.client, command.version, command.token
        )
        await session.send({"error": False, "code": 200, "reason": "clientInfoUpdated"})

    async def _register(self, session: Session, command: Register) -> None:
        name = command.user
        if len(name) > settings.USERNAME_MAX_LENGTH:
            await session.send(error_frame(400, "usernameTooLong"))
            return
        if len(name) < settings.USERNAME_MIN_LENGTH:
            await session.send(error_frame(400, "usernameTooShort"))
            return
        if name.lower() == settings.RESERVED_USERNAME.lower():
            await session.send(error_frame(403, "reservedName"))
            return

        now = utcnow()
        async with self._session_factory() as db:
            result = await db.execute(select(InviteCode).where(InviteCode.value == command.code))
            code = result.scalar_one_or_none()
            code_expiry = ensure_utc(code.expires_at) if code is not None else None
            if code is None or (code_expiry is not None and code_expiry <= now):
                await session.send(error_frame(400, "badCode"))
                return

            # Consuming the code and creating the user share one transaction:
            # a lost race on the code, or a taken name, leaves both untouched.
            consumed = await db.execute(sa_delete(InviteCode).where(InviteCode.id == code.id))
            if consumed.rowcount != 1:
                await db.rollback()
                await session.send(error_frame(400, "badCode"))
                return

            ttl = settings.REGISTRATION_TTL_DAYS
            user = User(
                name=name,
                display_name=command.display_name or name,
                pswd=get_password_hash(command.pswd),
                token=generate_token(),
                registered_at=now,
                expires_at=now + timedelta(days=ttl) if ttl > 0 else None,
            )
            db.add(user)
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                await session.send(error_frame(409, "userExists"))
                return
            logger.info("Registered %s with invite code %s", user.name, command.code)

            self._registry.bind(session.handle, user)
            await session.send(_account_frame(user))

            if settings.INVITE_REGENERATE_ON_USE:
                await self._replace_invite_code(db)

    async def _replace_invite_code(self, db: AsyncSession) -> None:
        try:
            replacement = accounts.mint_invite_code(db)
            await db.commit()
        except SQLAlchemyError:
            await db.rollback()
            logger.exception("Could not mint a replacement invite code")
            return
        logger.info("Issued replacement invite code %s", replacement.value)

    async def _login_password(self, session: Session, command: LoginPassword) -> None:
        async with self._session_factory() as db:
            user = await accounts.get_user_by_name(db, command.user)
            if user is None:
                await session.send(error_frame(404, "userNotFound"))
                return
            if user.system_account:
                await session.send(error_frame(403, "systemAccountUseKey"))
                return
            if not verify_password(command.pswd, user.pswd):
                await session.send(error_frame(400, "badPswd"))
                return
            refusal = self._login_refusal(user)
            if refusal is not None:
                await session.send(refusal)
                return
            await self._complete_login(db, session, user)

    async def _token_login(self, session: Session, token: str, *, silent: bool) -> None:
        async with self._session_factory() as db:
            user = await accounts.get_user_by_token(db, token)
            if user is None:
                await session.send(error_frame(404, "userNotFound"))
                return
            if user.system_account:
                await session.send(error_frame(403, "systemAccountUseKey"))
                return
            refusal = self._login_refusal(user)
            if refusal is not None:
                await session.send(refusal)
                return
            await self._complete_login(db, session, user, silent=silent)

    async def _login_token(self, session: Session, command: LoginToken) -> None:
        await self._token_login(session, command.token, silent=False)

    async def _provide_token(self, session: Session, command: ProvideToken) -> None:
        await self._token_login(session, command.token, silent=True)

    async def _login_system_key(self, session: Session, command: LoginSystemKey) -> None:
        async with self._session_factory() as db:
            user = await accounts.get_user_by_name(db, command.user)
            if user is None or not user.system_account:
                await session.send(error_frame(404, "userNotFoundOrNotSystem"))
                return
            if not user.system_key:
                await session.send(error_frame(403, "noSystemKey"))
                return
            if not verify_password(command.key, user.system_key):
                await session.send(error_frame(401, "badKey"))
                return

            previous = user.token
            user.token = generate_token()
            if user.deletion_scheduled_at is not None:
                user.deletion_scheduled_at = None
                user.deletion_initiated_by = None
            await db.commit()

        self._registry.bind(session.handle, user)
        # The old token is dead in the store; drop sockets still riding on it.
        for stale in self._registry.bound_to_token(previous):
            if stale is not session:
                await self._registry.evict(stale, event={"cmd": "token_revoked"})
        await self._audit.record(
            user.id,
            user.id,
            AuditAction.SYSKEY_LOGIN,
            f"client={session.client or 'unknown'} version={session.version or 'unknown'}",
        )
        logger.info("System account %s logged in with its key", user.name)
        await session.send(_account_frame(user))

    async def _set_avatar(self, session: Session, command: SetAvatar) -> None:
        if not session.authenticated:
            await session.send(error_frame(401, "Unauthorized"))
            return
        url = command.url.strip()
        if len(url) > settings.AVATAR_URL_MAX_LENGTH:
            await session.send(error_frame(400, "urlTooLong"))
            return
        async with self._session_factory() as db:
            user = await accounts.get_user_by_token(db, session.token)
            if user is None:
                await session.send(error_frame(404, "userNotFound"))
                return
            if not _IMAGE_URL_RE.match(url):
                await session.send(error_frame(400, "invalidUrl"))
                return
            user.avatar = url
            await db.commit()
        session.avatar = url
        await session.send({"error": False, "code": 200, "reason": "avatarUpdated", "avatar": url})
