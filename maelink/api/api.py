"""
API router aggregator — wires all endpoint modules together.
"""

from fastapi import APIRouter

from maelink.api.endpoints import account, action_logs, feed, moderation

api_router = APIRouter()

# Feed read/write, post deletion
api_router.include_router(feed.router)

# Bans and role assignment
api_router.include_router(moderation.router)

# Profile and account deletion
api_router.include_router(account.router)

# Audit trail
api_router.include_router(action_logs.router)
