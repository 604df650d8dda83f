"""InviteCode model — single-use registration codes."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String

from maelink.db.base import Base


class InviteCode(Base):
    __tablename__ = "invite_codes"

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    value: str = Column(String(64), unique=True, nullable=False, index=True)  # type: ignore[assignment]
    expires_at: datetime | None = Column(DateTime(timezone=True), nullable=True)  # type: ignore[assignment]
    created_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
