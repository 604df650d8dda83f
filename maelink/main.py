"""
Maelink — application entry point.

This is the **only** file that assembles the app.  It builds the shared
collaborators (session registry, audit recorder, notification bus, command
dispatcher, sweep scheduler) once and hangs them on ``app.state``; all
business logic lives in the `api/`, `realtime/`, `services/` and `models/`
packages.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from maelink.api.api import api_router
from maelink.core.config import settings
from maelink.core.exceptions import register_exception_handlers
from maelink.core.ratelimit import limiter
from maelink.core.security import get_password_hash
from maelink.db.base import Base
from maelink.db.session import engine as default_engine
from maelink.db.session import make_session_factory

# Ensure all models are imported so metadata.create_all can see them
from maelink.models.action_log import ActionLog  # noqa: F401
from maelink.models.invite_code import InviteCode
from maelink.models.post import Post  # noqa: F401
from maelink.models.user import User
from maelink.realtime import websocket
from maelink.realtime.dispatcher import CommandDispatcher
from maelink.realtime.notifier import NotificationBus
from maelink.realtime.registry import SessionRegistry
from maelink.realtime.sweeper import SweepScheduler
from maelink.services.accounts import mint_invite_code
from maelink.services.audit import AuditLogRecorder

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


async def _seed(session_factory: async_sessionmaker[AsyncSession]) -> None:
    """Provision the system account and a first invite code if missing."""
    async with session_factory() as session:
        if settings.SYSTEM_ACCOUNT_KEY:
            result = await session.execute(
                select(User).where(User.name == settings.RESERVED_USERNAME)
            )
            if result.scalar_one_or_none() is None:
                session.add(
                    User(
                        name=settings.RESERVED_USERNAME,
                        display_name="System",
                        role="sysadmin",
                        system_account=True,
                        system_key=get_password_hash(settings.SYSTEM_ACCOUNT_KEY),
                    )
                )
                await session.commit()
                logger.info("System account '%s' provisioned", settings.RESERVED_USERNAME)

        codes = await session.scalar(select(func.count()).select_from(InviteCode))
        if not codes:
            code = mint_invite_code(session)
            await session.commit()
            logger.info("No invite codes on file; issued %s", code.value)


# ── Lifespan ────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    session_factory = app.state.session_factory
    db_engine: AsyncEngine = app.state.engine
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")

    await _seed(session_factory)

    scheduler: SweepScheduler = app.state.scheduler
    if settings.SCHEDULER_ENABLED:
        scheduler.start()

    logger.info("%s v%s [%s] started", settings.PROJECT_NAME, settings.VERSION, settings.INSTANCE_NAME)
    yield
    await scheduler.stop()
    await db_engine.dispose()
    logger.info("Shutdown complete")


# ── App factory ─────────────────────────────────────────────────────
def create_app(
    engine: AsyncEngine | None = None,
) -> FastAPI:
    application = FastAPI(
        title=settings.PROJECT_NAME,
        description="Realtime social feed with moderation",
        version=settings.VERSION,
        openapi_url=f"{settings.API_PREFIX}/openapi.json",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Collaborators, wired once per application
    engine = engine or default_engine
    session_factory = make_session_factory(engine)
    registry = SessionRegistry()
    audit = AuditLogRecorder(session_factory)
    application.state.engine = engine
    application.state.session_factory = session_factory
    application.state.registry = registry
    application.state.audit = audit
    application.state.bus = NotificationBus(registry)
    application.state.dispatcher = CommandDispatcher(registry, session_factory, audit)
    application.state.scheduler = SweepScheduler(
        registry,
        session_factory,
        audit,
        sweep_interval=settings.SWEEP_INTERVAL_SECONDS,
        nudge_interval=settings.NUDGE_INTERVAL_SECONDS,
    )
    application.state.limiter = limiter

    # CORS
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS", "DELETE"],
        allow_headers=["Content-Type", "token"],
    )

    # Global exception handlers (prevent stack-trace leakage)
    register_exception_handlers(application)

    application.include_router(api_router, prefix=settings.API_PREFIX)
    application.include_router(websocket.router)

    return application


app = create_app()
