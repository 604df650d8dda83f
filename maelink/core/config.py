"""
Centralised application settings loaded from environment / .env file.

Uses pydantic-settings so every value can be overridden via env vars
or the .env file at the project root.
"""

from __future__ import annotations

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── Project ──────────────────────────────────────────────────────
    PROJECT_NAME: str = "Maelink"
    VERSION: str = "2.0.0"
    INSTANCE_NAME: str = "maelink"
    API_PREFIX: str = "/api"
    WS_PATH: str = "/ws"

    # ── Database (aiosqlite by default, asyncpg for PostgreSQL) ──────
    DATABASE_URL: str = "sqlite+aiosqlite:///./maelink.db"

    # ── Credentials ──────────────────────────────────────────────────
    BCRYPT_ROUNDS: int = 12
    SYSTEM_ACCOUNT_KEY: str | None = None

    # ── Accounts ─────────────────────────────────────────────────────
    USERNAME_MIN_LENGTH: int = 4
    USERNAME_MAX_LENGTH: int = 16
    RESERVED_USERNAME: str = "system"
    REGISTRATION_TTL_DAYS: int = 3  # 0 = accounts never expire
    DELETION_GRACE_DAYS: int = 7
    AVATAR_URL_MAX_LENGTH: int = 512

    # ── Invite codes ─────────────────────────────────────────────────
    INVITE_CODE_TTL_DAYS: int = 7
    INVITE_REGENERATE_ON_USE: bool = True

    # ── Feed & audit queries ─────────────────────────────────────────
    POST_MAX_LENGTH: int = 256
    FEED_DEFAULT_LIMIT: int = 100
    FEED_MAX_LIMIT: int = 500
    ACTION_LOG_DEFAULT_LIMIT: int = 50
    ACTION_LOG_MAX_LIMIT: int = 500

    # ── Background sweeps ────────────────────────────────────────────
    SCHEDULER_ENABLED: bool = True
    SWEEP_INTERVAL_SECONDS: float = 300
    NUDGE_INTERVAL_SECONDS: float = 30

    # ── Rate limiting ────────────────────────────────────────────────
    RATE_LIMIT_ENABLED: bool = True
    POST_RATE_LIMIT: str = "30/minute"

    # ── CORS ─────────────────────────────────────────────────────────
    CORS_ORIGINS: list[str] = ["*"]

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors(cls, v: object) -> list[str]:
        if isinstance(v, str) and not v.lstrip().startswith("["):
            return [o.strip() for o in v.split(",") if o.strip()]
        return v  # type: ignore[return-value]

    # ── Logging ──────────────────────────────────────────────────────
    LOG_LEVEL: str = "INFO"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
        "extra": "ignore",
    }


settings = Settings()

if not settings.SYSTEM_ACCOUNT_KEY:
    import logging

    logging.getLogger("maelink.core.config").warning(
        "SYSTEM_ACCOUNT_KEY is not set; the '%s' system account will not be "
        "provisioned and login_syskey is unusable.",
        settings.RESERVED_USERNAME,
    )
