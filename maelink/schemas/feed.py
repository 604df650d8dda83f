"""Pydantic schemas for the feed."""

from __future__ import annotations

from pydantic import AliasChoices, BaseModel, Field, field_validator

from maelink.core.config import settings


class PostCreate(BaseModel):
    content: str = Field(validation_alias=AliasChoices("content", "p", "text"))

    @field_validator("content", mode="before")
    @classmethod
    def _content(cls, v: object) -> str:
        v = "" if v is None else str(v).strip()
        if not v:
            raise ValueError("Post content must not be empty")
        if len(v) > settings.POST_MAX_LENGTH:
            raise ValueError(
                f"Post content must not exceed {settings.POST_MAX_LENGTH} characters"
            )
        return v


class PostRead(BaseModel):
    id: int
    user: str
    content: str
    timestamp: str | None


class FeedResponse(BaseModel):
    posts: list[PostRead]


class SuccessResponse(BaseModel):
    success: bool = True
