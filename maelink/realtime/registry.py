"""
Session registry — in-memory state for every live socket connection.

Owned by the single asyncio event loop; nothing here is persisted, so after
a restart every client has to authenticate again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterator, Protocol

from starlette import status

from maelink.models.user import User

logger = logging.getLogger(__name__)


class Connection(Protocol):
    """The slice of Starlette's ``WebSocket`` that sessions rely on."""

    async def send_json(self, data: Any, mode: str = "text") -> None: ...

    async def close(self, code: int = 1000, reason: str | None = None) -> None: ...


@dataclass(eq=False)
class Session:
    handle: Connection
    user: str | None = None
    token: str | None = None
    uuid: str | None = None
    client: str | None = None
    version: str | None = None
    token_hint: str | None = None
    avatar: str | None = None
    open: bool = True

    @property
    def authenticated(self) -> bool:
        return self.token is not None

    async def send(self, payload: dict[str, Any]) -> bool:
        """Send a frame; a dead or closing transport is logged, not raised."""
        if not self.open:
            return False
        try:
            await self.handle.send_json(payload)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Send to %s failed: %s", self.user or "anonymous", exc)
            return False
        return True

    async def close(self, code: int = status.WS_1000_NORMAL_CLOSURE) -> None:
        try:
            await self.handle.close(code=code)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Close of %s failed: %s", self.user or "anonymous", exc)


class SessionRegistry:
    def __init__(self) -> None:
        # Keyed by identity: transports are not required to be hashable.
        self._sessions: dict[int, Session] = {}

    def open(self, handle: Connection) -> Session:
        session = Session(handle=handle)
        self._sessions[id(handle)] = session
        return session

    def get(self, handle: Connection) -> Session | None:
        return self._sessions.get(id(handle))

    def bind(self, handle: Connection, user: User) -> Session | None:
        """Attach *user* to the session; a no-op if the connection is gone."""
        session = self._sessions.get(id(handle))
        if session is None:
            return None
        session.user = user.name
        session.token = user.token
        session.uuid = user.uuid
        session.avatar = user.avatar
        return session

    def set_client_info(
        self,
        handle: Connection,
        client: str,
        version: str | None = None,
        token_hint: str | None = None,
    ) -> Session | None:
        session = self._sessions.get(id(handle))
        if session is None:
            return None
        session.client = client
        session.version = version or "unknown"
        session.token_hint = token_hint
        return session

    def close(self, handle: Connection) -> None:
        session = self._sessions.pop(id(handle), None)
        if session is not None:
            session.open = False

    async def evict(
        self,
        session: Session,
        code: int = status.WS_1008_POLICY_VIOLATION,
        event: dict[str, Any] | None = None,
    ) -> None:
        """Optionally notify, then close and deregister *session*."""
        if event is not None:
            await session.send(event)
        self.close(session.handle)
        await session.close(code)

    # ── Views ───────────────────────────────────────────────────────
    def __iter__(self) -> Iterator[Session]:
        # Snapshot: callers await between sends and sessions may come and go.
        return iter(list(self._sessions.values()))

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, handle: object) -> bool:
        return id(handle) in self._sessions

    def authenticated(self) -> list[Session]:
        return [s for s in self if s.authenticated]

    def anonymous(self) -> list[Session]:
        return [s for s in self if not s.authenticated]

    def bound_to_token(self, token: str | None) -> list[Session]:
        if token is None:
            return []
        return [s for s in self if s.token == token]

    def bound_to_uuid(self, uuid: str | None) -> list[Session]:
        if uuid is None:
            return []
        return [s for s in self if s.uuid == uuid]
