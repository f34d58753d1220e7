"""
Portfolio API: FastAPI application factory.

Application lifecycle:
  startup  → configure logging, run DB migrations, seed permissions/admin,
             start the URL refresh scheduler
  shutdown → stop the scheduler, drain counter increments, dispose DB engine pool
"""

from __future__ import annotations

from pathlib import Path

import sqlalchemy as sa
import structlog
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from portfolio.api.limits import limiter
from portfolio.api.v1.router import router as v1_router
from portfolio.config.logging_config import configure_logging
from portfolio.config.settings import Settings, get_settings
from portfolio.core.errors import AppError
from portfolio.core.middleware import (
    CorrelationIDMiddleware,
    SecurityHeadersMiddleware,
    app_error_handler,
    rate_limit_handler,
    unhandled_exception_handler,
)
from portfolio.core.security import hash_password
from portfolio.db.models.user import ADMIN_ROLE, Permission, Role, User
from portfolio.db.session import SessionFactory, dispose_engine, get_session_factory
from portfolio.services.authorization import AuthorizationEngine, PermissionCatalog
from portfolio.services.counters import CounterDispatcher
from portfolio.services.permissions import PermissionService
from portfolio.services.scheduler import UrlRefreshScheduler
from portfolio.services.storage import ObjectStorage, S3ObjectStorage

_log = structlog.get_logger(__name__)

_ALEMBIC_INI = Path(__file__).resolve().parent.parent / "alembic.ini"


def _run_migrations(settings: Settings) -> None:
    from alembic import command
    from alembic.config import Config

    alembic_cfg = Config(str(_ALEMBIC_INI))
    alembic_cfg.set_main_option("script_location", str(_ALEMBIC_INI.parent / "alembic"))
    alembic_cfg.attributes["db_url"] = settings.database_url
    command.upgrade(alembic_cfg, "head")
    _log.info("migrations_applied")


async def _seed_database(app: FastAPI) -> None:
    """
    Ensure the default permissions, the admin role and the bootstrap admin
    account exist. Existing rows are left untouched.
    """
    settings: Settings = app.state.settings
    engine: AuthorizationEngine = app.state.authorization
    factory: SessionFactory = app.state.session_factory

    async with factory() as db:
        created = await PermissionService(db).initialize_defaults(engine.catalog)

        result = await db.execute(select(Role).where(Role.name == ADMIN_ROLE))
        admin_role = result.scalar_one_or_none()
        if admin_role is None:
            all_permissions = await db.execute(select(Permission))
            admin_role = Role(name=ADMIN_ROLE, description="Full access", is_active=True)
            admin_role.permissions = list(all_permissions.scalars().all())
            db.add(admin_role)
            await db.flush()

        admin_result = await db.execute(
            select(User).where(User.username == settings.admin_username)
        )
        if admin_result.scalar_one_or_none() is None:
            db.add(
                User(
                    username=settings.admin_username,
                    email=settings.admin_email,
                    password_hash=hash_password(settings.admin_password.get_secret_value()),
                    role=ADMIN_ROLE,
                    role_id=admin_role.id,
                    is_active=True,
                )
            )
            _log.info("admin_bootstrapped", username=settings.admin_username)

        await db.commit()
        _log.info("database_seeded", permissions_created=created)


async def _startup(app: FastAPI) -> None:
    settings: Settings = app.state.settings
    configure_logging(log_level=settings.log_level.value, json_logs=settings.log_json)
    _log.info(
        "portfolio_starting",
        version=settings.app_version,
        environment=settings.environment.value,
    )

    if settings.run_migrations_on_startup:
        try:
            _run_migrations(settings)
        except Exception as exc:
            _log.warning("migration_warning", error=str(exc))

    await _seed_database(app)

    if settings.scheduler_enabled:
        app.state.scheduler.start()
    _log.info("portfolio_ready", host=settings.host, port=settings.port)


async def _shutdown(app: FastAPI) -> None:
    await app.state.scheduler.stop()
    await app.state.counters.drain()
    await dispose_engine()
    _log.info("portfolio_shutdown")


def create_app(
    settings: Settings | None = None,
    storage: ObjectStorage | None = None,
    session_factory: SessionFactory | None = None,
) -> FastAPI:
    """
    Application factory. Returns a configured FastAPI instance.

    ``storage`` and ``session_factory`` default to the S3 client and the
    global engine; tests pass their own.
    """
    settings = settings or get_settings()
    factory = session_factory or get_session_factory(settings)
    storage = storage or S3ObjectStorage(settings)
    production = settings.environment.value == "production"

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description=(
            "Portfolio content API: role-based access control, file uploads "
            "with presigned URLs and the resources built on them."
        ),
        docs_url=None if production else "/docs",
        redoc_url=None if production else "/redoc",
        openapi_url=None if production else "/openapi.json",
    )

    # ── Collaborators ─────────────────────────────────────────────────── #
    app.state.settings = settings
    app.state.session_factory = factory
    app.state.storage = storage
    app.state.authorization = AuthorizationEngine(
        PermissionCatalog.from_resources(settings.admin_permission_resources)
    )
    app.state.counters = CounterDispatcher(factory, max_pending=settings.counter_max_pending)
    app.state.scheduler = UrlRefreshScheduler(factory, storage, settings)

    # ── Startup / Shutdown ────────────────────────────────────────────── #
    @app.on_event("startup")
    async def on_startup() -> None:
        await _startup(app)

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        await _shutdown(app)

    # ── Rate Limiting ─────────────────────────────────────────────────── #
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)  # type: ignore[arg-type]
    app.add_middleware(SlowAPIMiddleware)

    # ── CORS ──────────────────────────────────────────────────────────── #
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Correlation-ID"],
    )

    # ── Custom Middleware (applied in reverse order) ───────────────────── #
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(CorrelationIDMiddleware)

    # ── Exception Handlers ────────────────────────────────────────────── #
    app.add_exception_handler(AppError, app_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # ── Routes ────────────────────────────────────────────────────────── #
    app.include_router(v1_router)

    # ── Health ────────────────────────────────────────────────────────── #
    @app.get("/health", tags=["health"], summary="Health check")
    async def health() -> dict[str, object]:
        """Returns service health including DB reachability and scheduler state."""
        db_ok = False
        try:
            async with factory() as db:
                await db.execute(sa.text("SELECT 1"))
            db_ok = True
        except (SQLAlchemyError, OSError) as exc:
            _log.warning("health_db_unavailable", error=str(exc))

        return {
            "status": "healthy" if db_ok else "degraded",
            "database": "ok" if db_ok else "unavailable",
            "scheduler": "running" if app.state.scheduler.running else "stopped",
            "version": settings.app_version,
        }

    # ── Metrics (Prometheus) ──────────────────────────────────────────── #
    @app.get("/metrics", tags=["observability"], summary="Prometheus metrics")
    async def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


# Entry point for uvicorn
app = create_app()
