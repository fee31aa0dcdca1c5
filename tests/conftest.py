"""
Shared pytest fixtures for HMS Nova Core tests.

Provides:
  - async SQLite in-memory database (per-test isolation, foreign keys on)
  - two seeded tenants with members in several roles
  - service instances wired to the test session and a tmp_path blob store
  - an HTTP client against the real app with DB and storage overridden
"""

from __future__ import annotations

import os
import tempfile

# Settings are read at import time of the application package.
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-not-for-production-at-all")
os.environ.setdefault("ADMIN_PASSWORD", "TestAdmin@2024!")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("STORAGE_LOCAL_PATH", tempfile.mkdtemp(prefix="hmsnova-test-"))
os.environ.setdefault("RUN_MIGRATIONS_ON_STARTUP", "false")
os.environ.setdefault("RATE_LIMIT_DEFAULT", "10000/minute")
os.environ.setdefault("LOG_JSON", "false")
os.environ.setdefault("ENVIRONMENT", "testing")

from collections.abc import AsyncGenerator  # noqa: E402
from dataclasses import dataclass  # noqa: E402
from datetime import UTC, datetime  # noqa: E402
from pathlib import Path  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

from hmsnova.api.deps import get_storage  # noqa: E402
from hmsnova.config.settings import Settings, get_settings  # noqa: E402
from hmsnova.core.auth_context import AuthContext  # noqa: E402
from hmsnova.core.security import create_access_token, hash_password  # noqa: E402
from hmsnova.db.base import Base  # noqa: E402
from hmsnova.db.models.tenant import Tenant, TenantMembership, TenantRole, User  # noqa: E402
from hmsnova.db.session import enable_sqlite_foreign_keys, get_db  # noqa: E402
from hmsnova.main import create_app  # noqa: E402
from hmsnova.services.audit.logger import AuditLogger  # noqa: E402
from hmsnova.services.documents.lifecycle import DocumentLifecycle  # noqa: E402
from hmsnova.services.risks.assessments import RiskAssessmentService  # noqa: E402
from hmsnova.services.risks.lifecycle import RiskRecordLifecycle  # noqa: E402
from hmsnova.services.storage.backend import LocalStorage  # noqa: E402

TEST_PASSWORD = "TestUser@2024!"
# bcrypt is slow on purpose; hash once for every seeded user
_PASSWORD_HASH = hash_password(TEST_PASSWORD)

FIXED_NOW = datetime(2025, 1, 31, 9, 30, tzinfo=UTC)


def fixed_clock() -> datetime:
    return FIXED_NOW


# ─── Database ─────────────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """One in-memory database per test, shared by every session via StaticPool."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    enable_sqlite_foreign_keys(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.rollback()


# ─── Seed data ────────────────────────────────────────────────────────────────


@dataclass
class Seed:
    tenant_id: str
    other_tenant_id: str
    admin: AuthContext
    hms: AuthContext
    leder: AuthContext
    ansatt: AuthContext
    outsider: AuthContext  # ADMIN of the other tenant


async def _add_member(
    db: AsyncSession, tenant: Tenant, email: str, role: TenantRole
) -> AuthContext:
    user = User(email=email, name=email.split("@")[0], password_hash=_PASSWORD_HASH)
    db.add(user)
    await db.flush()
    db.add(TenantMembership(tenant_id=tenant.id, user_id=user.id, role=role.value))
    return AuthContext(user_id=user.id, user_email=email, tenant_id=tenant.id, role=role)


@pytest_asyncio.fixture
async def seed(session_factory: async_sessionmaker[AsyncSession]) -> Seed:
    """Two tenants. Committed, so a service-level rollback cannot undo it."""
    async with session_factory() as db:
        tenant = Tenant(name="Nordvik Bygg AS", slug="nordvik-bygg-as")
        other = Tenant(name="Fjord Logistikk", slug="fjord-logistikk")
        db.add_all([tenant, other])
        await db.flush()
        result = Seed(
            tenant_id=tenant.id,
            other_tenant_id=other.id,
            admin=await _add_member(db, tenant, "admin@nordvik.no", TenantRole.ADMIN),
            hms=await _add_member(db, tenant, "hms@nordvik.no", TenantRole.HMS),
            leder=await _add_member(db, tenant, "leder@nordvik.no", TenantRole.LEDER),
            ansatt=await _add_member(db, tenant, "ansatt@nordvik.no", TenantRole.ANSATT),
            outsider=await _add_member(db, other, "admin@fjord.no", TenantRole.ADMIN),
        )
        await db.commit()
    return result


# ─── Services ─────────────────────────────────────────────────────────────────


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
def storage(tmp_path: Path) -> LocalStorage:
    return LocalStorage(tmp_path / "blobs")


@pytest.fixture
def audit(db_session: AsyncSession) -> AuditLogger:
    return AuditLogger(db_session)


@pytest.fixture
def documents(
    db_session: AsyncSession, storage: LocalStorage, audit: AuditLogger, settings: Settings
) -> DocumentLifecycle:
    return DocumentLifecycle(db_session, storage, audit, settings, clock=fixed_clock)


@pytest.fixture
def risks(db_session: AsyncSession, audit: AuditLogger) -> RiskRecordLifecycle:
    return RiskRecordLifecycle(db_session, audit, clock=fixed_clock)


@pytest.fixture
def assessments(
    db_session: AsyncSession, audit: AuditLogger, risks: RiskRecordLifecycle
) -> RiskAssessmentService:
    return RiskAssessmentService(db_session, audit, risks)


# ─── App & HTTP client ────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def app(session_factory: async_sessionmaker[AsyncSession], storage: LocalStorage):
    """FastAPI app with the DB dependency and blob store pointed at the test fixtures."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app_ = create_app()
    app_.dependency_overrides[get_db] = override_get_db
    app_.dependency_overrides[get_storage] = lambda: storage
    return app_


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:  # type: ignore[no-untyped-def]
    """Unauthenticated async HTTP client."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


def bearer(ctx: AuthContext) -> dict[str, str]:
    token = create_access_token(
        subject=ctx.user_id, role=ctx.role.value, extra_claims={"tenant_id": ctx.tenant_id}
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers():  # type: ignore[no-untyped-def]
    """Build a bearer header for an AuthContext, as issued by /auth/login."""
    return bearer


@pytest.fixture
def password() -> str:
    """Plaintext password of every seeded user."""
    return TEST_PASSWORD
