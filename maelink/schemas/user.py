"""Pydantic schemas for user-facing account data and moderation requests."""

from __future__ import annotations

from datetime import datetime

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator

from maelink.services.authorization import ROLES


class MeResponse(BaseModel):
    name: str
    display_name: str | None
    role: str
    uuid: str
    avatar: str | None = None


class _TargetRequest(BaseModel):
    """Names the target user by ``user``/``name`` or by ``uuid``."""

    name: str | None = Field(default=None, validation_alias=AliasChoices("user", "name"))
    uuid: str | None = None

    @model_validator(mode="after")
    def _has_target(self):
        if not self.name and not self.uuid:
            raise ValueError("A target user (user, name or uuid) is required")
        return self


class BanRequest(_TargetRequest):
    until: datetime | None = None
    days: float | None = Field(default=None, gt=0)
    reason: str | None = Field(default=None, max_length=500)


class UnbanRequest(_TargetRequest):
    pass


class RoleRequest(_TargetRequest):
    role: str

    @field_validator("role")
    @classmethod
    def _validate_role(cls, v: str) -> str:
        if v not in ROLES:
            raise ValueError(f"Role must be one of: {', '.join(ROLES)}")
        return v


class BanResponse(BaseModel):
    success: bool = True
    user: str
    until: str | None


class RoleResponse(BaseModel):
    success: bool = True
    user: str
    role: str


class AccountDeletionResponse(BaseModel):
    success: bool = True
    user: str
    instant: bool = False
    deletion_scheduled_at: str | None = None
