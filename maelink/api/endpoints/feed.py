"""
Feed endpoints — read the timeline, publish a post, delete a post.

- GET /feed is public, banned or not.
- POST /feed needs a live, unbanned token.
- DELETE /post needs ownership or moderator role.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from maelink.api.deps import (
    get_audit,
    get_bus,
    get_current_active_user,
    get_db,
)
from maelink.core.config import settings
from maelink.core.ratelimit import limiter
from maelink.core.timeutils import isoformat
from maelink.models.post import Post
from maelink.models.user import User
from maelink.realtime.notifier import NotificationBus
from maelink.schemas.feed import FeedResponse, PostCreate, PostRead, SuccessResponse
from maelink.services.audit import AuditAction, AuditLogRecorder
from maelink.services.authorization import ensure_can_delete_post

router = APIRouter(tags=["feed"])
logger = logging.getLogger(__name__)


@router.get("/feed", response_model=FeedResponse)
async def read_feed(
    limit: int = Query(settings.FEED_DEFAULT_LIMIT, ge=1, le=settings.FEED_MAX_LIMIT),
    db: AsyncSession = Depends(get_db),
) -> FeedResponse:
    """Newest posts first."""
    result = await db.execute(
        select(Post).order_by(Post.timestamp.desc(), Post.id.desc()).limit(limit)
    )
    posts = result.scalars().all()
    return FeedResponse(
        posts=[
            PostRead(
                id=post.id,
                user=post.author.name,
                content=post.content,
                timestamp=isoformat(post.timestamp),
            )
            for post in posts
        ]
    )


@router.post("/feed", response_model=SuccessResponse)
@limiter.limit(settings.POST_RATE_LIMIT)
async def create_post(
    request: Request,
    body: PostCreate,
    db: AsyncSession = Depends(get_db),
    bus: NotificationBus = Depends(get_bus),
    current_user: User = Depends(get_current_active_user),
) -> SuccessResponse:
    post = Post(content=body.content, user_id=current_user.id)
    db.add(post)
    await db.commit()
    await db.refresh(post)
    logger.info("Post %s created by %s", post.id, current_user.name)

    await bus.publish_new_post(post, current_user)
    return SuccessResponse()


@router.delete("/post", response_model=SuccessResponse)
async def delete_post(
    post_id: Optional[str] = Query(default=None, alias="id"),
    db: AsyncSession = Depends(get_db),
    audit: AuditLogRecorder = Depends(get_audit),
    current_user: User = Depends(get_current_active_user),
) -> SuccessResponse:
    """Hard-delete a post (owner, or moderator and above)."""
    if post_id is None or not post_id.strip().isdigit():
        raise HTTPException(status_code=400, detail="A numeric post id is required")

    post = await db.get(Post, int(post_id))
    if post is None:
        raise HTTPException(status_code=404, detail="Post not found")
    ensure_can_delete_post(current_user, post)

    author_id = post.user_id
    snippet = post.content[:64]
    await db.delete(post)
    await db.commit()
    logger.info("Post %s deleted by %s", post.id, current_user.name)

    await audit.record(
        current_user.id,
        author_id,
        AuditAction.DELETE_POST,
        f"post {post.id}: {snippet}",
    )
    return SuccessResponse()
