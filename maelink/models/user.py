"""
User model — credentials, roles and the moderation lifecycle.

Accounts are never physically removed: deletion sanitizes the row in place
and stamps ``deleted_at`` so posts and audit entries keep resolving.
"""

from __future__ import annotations

import uuid as uuid_lib
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String

from maelink.db.base import Base


class User(Base):
    __tablename__ = "users"

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    name: str = Column(String(64), unique=True, nullable=False, index=True)  # type: ignore[assignment]
    display_name: str | None = Column(String(64), nullable=True)  # type: ignore[assignment]
    pswd: str | None = Column(String(128), nullable=True)  # type: ignore[assignment]
    token: str | None = Column(String(128), unique=True, nullable=True, index=True)  # type: ignore[assignment]
    uuid: str = Column(  # type: ignore[assignment]
        String(36),
        unique=True,
        nullable=False,
        default=lambda: str(uuid_lib.uuid4()),
    )
    role: str = Column(  # type: ignore[assignment]
        String(16),
        nullable=False,
        default="user",
        server_default="user",
    )  # user | mod | admin | sysadmin
    avatar: str | None = Column(String(512), nullable=True)  # type: ignore[assignment]

    banned: bool = Column(Boolean, nullable=False, default=False, server_default="0")  # type: ignore[assignment]
    banned_until: datetime | None = Column(DateTime(timezone=True), nullable=True)  # type: ignore[assignment]

    deletion_scheduled_at: datetime | None = Column(DateTime(timezone=True), nullable=True, index=True)  # type: ignore[assignment]
    deleted_at: datetime | None = Column(DateTime(timezone=True), nullable=True)  # type: ignore[assignment]
    deletion_initiated_by: int | None = Column(Integer, ForeignKey("users.id"), nullable=True)  # type: ignore[assignment]

    registered_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    expires_at: datetime | None = Column(DateTime(timezone=True), nullable=True, index=True)  # type: ignore[assignment]

    system_account: bool = Column(Boolean, nullable=False, default=False, server_default="0")  # type: ignore[assignment]
    system_key: str | None = Column(String(128), nullable=True)  # type: ignore[assignment]
