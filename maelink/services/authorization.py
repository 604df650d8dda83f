"""
Authorization rules — role ordering, ban state and ownership checks.

Pure functions over model objects, consulted by the protocol dispatcher and
the HTTP endpoints.  The ``ensure_*`` helpers raise
:class:`~maelink.core.exceptions.AuthorizationError`, which the exception
handlers turn into a 403.
"""

from __future__ import annotations

from datetime import datetime

from maelink.core.exceptions import AuthorizationError
from maelink.core.timeutils import ensure_utc, utcnow
from maelink.models.post import Post
from maelink.models.user import User

ROLES: tuple[str, ...] = ("user", "mod", "admin", "sysadmin")
_RANK = {role: rank for rank, role in enumerate(ROLES)}


def role_rank(role: str | None) -> int:
    """Unknown roles rank below ``user``."""
    return _RANK.get(role or "", -1)


def has_role(user: User, minimum: str) -> bool:
    return role_rank(user.role) >= role_rank(minimum)


def is_sysadmin(user: User) -> bool:
    return user.role == "sysadmin"


def is_banned(user: User, now: datetime | None = None) -> bool:
    """True while a ban is in force; a null ``banned_until`` is permanent."""
    if not user.banned:
        return False
    until = ensure_utc(user.banned_until)
    if until is None:
        return True
    return until > (now or utcnow())


def can_ban(actor: User, target: User) -> bool:
    if not has_role(actor, "mod"):
        return False
    if is_sysadmin(target) and not is_sysadmin(actor):
        return False
    return True


def can_assign_role(actor: User, target: User, new_role: str) -> bool:
    if new_role not in _RANK or not has_role(actor, "admin"):
        return False
    # Granting, altering or revoking sysadmin is sysadmin-only.
    if (new_role == "sysadmin" or is_sysadmin(target)) and not is_sysadmin(actor):
        return False
    return True


def can_delete_post(actor: User, post: Post) -> bool:
    return post.user_id == actor.id or has_role(actor, "mod")


def can_delete_account(actor: User, target: User) -> bool:
    if actor.id == target.id:
        return True
    return can_ban(actor, target)


# ── Raising variants ────────────────────────────────────────────────
def ensure_can_ban(actor: User, target: User) -> None:
    if not has_role(actor, "mod"):
        raise AuthorizationError("Moderator privileges required")
    if not can_ban(actor, target):
        raise AuthorizationError("Only a sysadmin may moderate a sysadmin")


def ensure_can_assign_role(actor: User, target: User, new_role: str) -> None:
    if not has_role(actor, "admin"):
        raise AuthorizationError("Admin privileges required")
    if not can_assign_role(actor, target, new_role):
        raise AuthorizationError("Only a sysadmin may grant or alter sysadmin")


def ensure_can_delete_post(actor: User, post: Post) -> None:
    if not can_delete_post(actor, post):
        raise AuthorizationError("Not the owner of this post")


def ensure_can_delete_account(actor: User, target: User) -> None:
    if actor.id == target.id:
        return
    ensure_can_ban(actor, target)
