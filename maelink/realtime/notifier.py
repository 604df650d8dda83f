"""Notification bus — fans ``new_post`` events out to live sessions."""

from __future__ import annotations

import asyncio
import logging

from maelink.core.timeutils import isoformat
from maelink.models.post import Post
from maelink.models.user import User
from maelink.realtime.registry import SessionRegistry

logger = logging.getLogger(__name__)


class NotificationBus:
    def __init__(self, registry: SessionRegistry) -> None:
        self._registry = registry

    async def publish_new_post(self, post: Post, author: User) -> int:
        """Send the post to every authenticated session except the author's.

        Fire-and-forget: returns how many sends went through, nothing is
        retried and a failed recipient does not affect the others.
        """
        event = {
            "cmd": "new_post",
            "post": {
                "id": post.id,
                "user": author.name,
                "display": author.display_name or author.name,
                "content": post.content,
                "timestamp": isoformat(post.timestamp),
            },
        }
        recipients = [s for s in self._registry.authenticated() if s.uuid != author.uuid]
        if not recipients:
            return 0
        results = await asyncio.gather(*(s.send(event) for s in recipients))
        delivered = sum(1 for ok in results if ok)
        logger.debug("new_post %s delivered to %d/%d sessions", post.id, delivered, len(recipients))
        return delivered
