"""Pydantic schemas for the audit log query."""

from __future__ import annotations

from pydantic import BaseModel


class ActionLogRead(BaseModel):
    id: int
    action: str
    actor: str | None
    actor_uuid: str | None
    target: str | None
    target_uuid: str | None
    details: str | None
    created_at: str | None


class ActionLogResponse(BaseModel):
    logs: list[ActionLogRead]
    page: int
    limit: int
