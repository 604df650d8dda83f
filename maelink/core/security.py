"""
Credential primitives: password / system-key hashing (bcrypt), bearer
token issuance and invite-code values.
"""

from __future__ import annotations

import hashlib
import secrets
import string

from passlib.context import CryptContext

from maelink.core.config import settings

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
)

_CODE_ALPHABET = string.ascii_uppercase + string.digits


# ── Passwords & system keys ─────────────────────────────────────────
def verify_password(plain: str, hashed: str | None) -> bool:
    # Sanitized accounts and system accounts carry no password hash.
    if not hashed:
        return False
    return pwd_context.verify(plain, hashed)


def get_password_hash(plain: str) -> str:
    return pwd_context.hash(plain)


# ── Bearer tokens ───────────────────────────────────────────────────
def generate_token() -> str:
    """Return a fresh opaque bearer token.

    The token is a SHA-256 digest of 32 random bytes, so it never encodes
    the username, a counter or a timestamp.
    """
    return hashlib.sha256(secrets.token_bytes(32)).hexdigest()


# ── Invite codes ────────────────────────────────────────────────────
def generate_invite_value() -> str:
    """Return an invite code value such as ``MLNK-7Q2ZC0KD-R1M8XW4A``."""

    def _chunk() -> str:
        return "".join(secrets.choice(_CODE_ALPHABET) for _ in range(8))

    return f"MLNK-{_chunk()}-{_chunk()}"
