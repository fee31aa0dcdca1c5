"""
HMS Nova Core FastAPI application factory.

Application lifecycle:
  startup  → configure logging, run DB migrations, seed bootstrap tenant/admin
  shutdown → dispose DB engine pool
"""

from __future__ import annotations

import structlog
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from hmsnova.api.v1.router import router as v1_router
from hmsnova.config.logging_config import configure_logging
from hmsnova.config.settings import get_settings
from hmsnova.core.errors import AppError
from hmsnova.core.middleware import (
    CorrelationIDMiddleware,
    SecurityHeadersMiddleware,
    app_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)

_log = structlog.get_logger(__name__)


def _create_limiter() -> Limiter:
    settings = get_settings()
    return Limiter(
        key_func=get_remote_address,
        default_limits=[settings.rate_limit_default],
    )


async def _startup(app: FastAPI) -> None:
    settings = get_settings()
    configure_logging(log_level=settings.log_level.value, json_logs=settings.log_json)
    _log.info(
        "hmsnova_starting",
        version=settings.app_version,
        environment=settings.environment.value,
    )

    if settings.run_migrations_on_startup:
        from alembic import command
        from alembic.config import Config

        # alembic/env.py uses a sync engine, so this runs synchronously
        command.upgrade(Config("alembic.ini"), "head")
        _log.info("migrations_applied")

    await _seed_database()
    _log.info("hmsnova_ready", host=settings.host, port=settings.port)


async def _seed_database() -> None:
    """Create the bootstrap tenant and its admin account if absent."""
    from sqlalchemy import select

    from hmsnova.core.security import hash_password
    from hmsnova.db.models.tenant import Tenant, TenantMembership, TenantRole, User
    from hmsnova.db.session import session_scope
    from hmsnova.services.documents.lifecycle import slugify

    settings = get_settings()

    async with session_scope() as db:
        tenant_slug = slugify(settings.admin_tenant_name) or "default"
        tenant = await db.scalar(select(Tenant).where(Tenant.slug == tenant_slug))
        if tenant is None:
            tenant = Tenant(name=settings.admin_tenant_name, slug=tenant_slug)
            db.add(tenant)
            await db.flush()

        admin = await db.scalar(select(User).where(User.email == settings.admin_email))
        if admin is None:
            admin = User(
                email=settings.admin_email,
                name="Administrator",
                password_hash=hash_password(settings.admin_password.get_secret_value()),
                is_active=True,
            )
            db.add(admin)
            await db.flush()
            _log.info("admin_bootstrapped", email=settings.admin_email)

        membership = await db.scalar(
            select(TenantMembership.id).where(
                TenantMembership.tenant_id == tenant.id,
                TenantMembership.user_id == admin.id,
            )
        )
        if membership is None:
            db.add(
                TenantMembership(tenant_id=tenant.id, user_id=admin.id, role=TenantRole.ADMIN.value)
            )


async def _shutdown() -> None:
    from hmsnova.db.session import dispose_engine

    await dispose_engine()
    _log.info("hmsnova_shutdown")


_OPENAPI_TAGS = [
    {"name": "documents", "description": "Controlled HMS documents, versions, approval and review dates"},
    {"name": "files", "description": "Signed downloads from the local blob store"},
    {"name": "risks", "description": "Risk register with derived inherent and residual scores"},
    {"name": "risk-assessments", "description": "Yearly assessment batches built from risk levels"},
    {"name": "auth", "description": "Login, token refresh and password change"},
    {"name": "admin", "description": "Tenant member management"},
    {"name": "audit", "description": "Hash-chained audit trail per tenant"},
]


def create_app() -> FastAPI:
    """Application factory. Returns a configured FastAPI instance."""
    settings = get_settings()
    public_docs = settings.environment.value != "production"

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description=(
            "HMS Nova Core: document control, periodic review and risk "
            "assessment for occupational health and safety management."
        ),
        docs_url="/docs" if public_docs else None,
        redoc_url="/redoc" if public_docs else None,
        openapi_url="/openapi.json" if public_docs else None,
        openapi_tags=_OPENAPI_TAGS,
    )

    # ── Startup / Shutdown ────────────────────────────────────────────── #
    @app.on_event("startup")
    async def on_startup() -> None:
        await _startup(app)

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        await _shutdown()

    # ── Rate Limiting ─────────────────────────────────────────────────── #
    limiter = _create_limiter()
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
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
    app.add_exception_handler(RequestValidationError, request_validation_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # ── Routes ────────────────────────────────────────────────────────── #
    app.include_router(v1_router)

    # ── Health ────────────────────────────────────────────────────────── #
    @app.get("/health", tags=["health"], summary="Health check")
    async def health() -> dict[str, object]:
        """Returns service health including database reachability."""
        import sqlalchemy as sa
        from sqlalchemy.exc import SQLAlchemyError

        from hmsnova.db.session import session_scope

        db_ok = False
        try:
            async with session_scope() as db:
                await db.execute(sa.text("SELECT 1"))
            db_ok = True
        except (SQLAlchemyError, OSError) as exc:
            _log.warning("health_db_unavailable", error=str(exc))

        return {
            "status": "healthy" if db_ok else "degraded",
            "database": "ok" if db_ok else "unavailable",
            "storage_backend": settings.storage_backend.value,
            "version": settings.app_version,
        }

    # ── Metrics (Prometheus) ──────────────────────────────────────────── #
    @app.get("/metrics", tags=["observability"], summary="Prometheus metrics")
    async def metrics() -> object:
        from fastapi.responses import Response
        from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


# Entry point for uvicorn
app = create_app()
