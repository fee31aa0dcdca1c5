"""
FastAPI dependency providers.

Authentication happens here and nowhere else: the bearer token is decoded,
the live tenant membership is loaded, and the result is handed to routes
as an explicit ``AuthContext``. Routes pass that value into services.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated

import structlog
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hmsnova.config.settings import Settings, get_settings
from hmsnova.core.auth_context import AccessGate, AuthContext, Capability
from hmsnova.core.errors import AuthError, ErrorCode
from hmsnova.core.security import decode_token
from hmsnova.db.models.tenant import TenantMembership, TenantRole, User
from hmsnova.db.session import get_db
from hmsnova.services.audit.logger import AuditLogger
from hmsnova.services.documents.lifecycle import DocumentLifecycle
from hmsnova.services.risks.assessments import RiskAssessmentService
from hmsnova.services.risks.lifecycle import RiskRecordLifecycle
from hmsnova.services.risks.policy import policy_for
from hmsnova.services.storage.backend import Storage, build_storage

_log = structlog.get_logger(__name__)
_bearer = HTTPBearer(auto_error=False)

DbSession = Annotated[AsyncSession, Depends(get_db)]


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer)],
    db: DbSession,
) -> tuple[User, dict[str, object]]:
    """
    Validate the JWT bearer token and return the user with its claims.

    Raises AuthError on any JWT problem.
    """
    if credentials is None:
        raise AuthError(
            ErrorCode.AUTH_TOKEN_INVALID, "Authorization header missing or not Bearer type"
        )

    try:
        payload = decode_token(credentials.credentials)
    except JWTError as exc:
        raise AuthError(ErrorCode.AUTH_TOKEN_INVALID, "Token invalid or expired") from exc

    if payload.get("type") != "access":
        raise AuthError(ErrorCode.AUTH_TOKEN_INVALID, "Token is not an access token")

    user_id = payload.get("sub")
    if not isinstance(user_id, str) or not user_id:
        raise AuthError(ErrorCode.AUTH_TOKEN_INVALID, "Token missing subject")

    user = await db.get(User, user_id)
    if user is None or user.is_deleted:
        raise AuthError(ErrorCode.AUTH_TOKEN_INVALID, "User not found")
    if not user.is_active:
        raise AuthError(ErrorCode.AUTH_USER_INACTIVE, "Account is deactivated")
    return user, payload


async def get_auth_context(
    current: Annotated[tuple[User, dict[str, object]], Depends(get_current_user)],
    db: DbSession,
) -> AuthContext:
    """Resolve the caller's membership in the tenant named by the token."""
    user, payload = current
    tenant_id = payload.get("tenant_id")
    if not isinstance(tenant_id, str) or not tenant_id:
        raise AuthError(ErrorCode.AUTH_NO_TENANT, "Token is not bound to a tenant")

    membership = await db.scalar(
        select(TenantMembership).where(
            TenantMembership.user_id == user.id,
            TenantMembership.tenant_id == tenant_id,
        )
    )
    if membership is None:
        raise AuthError(ErrorCode.AUTH_NO_TENANT, "No membership in this tenant")

    structlog.contextvars.bind_contextvars(user_id=user.id, tenant_id=tenant_id)
    return AuthContext(
        user_id=user.id,
        user_email=user.email,
        tenant_id=tenant_id,
        role=TenantRole(membership.role),
    )


AuthCtx = Annotated[AuthContext, Depends(get_auth_context)]


def require_capability(capability: Capability):
    """Return a dependency callable that enforces one capability."""

    async def _check(ctx: AuthCtx) -> AuthContext:
        return get_access_gate().require_capability(ctx, capability)

    return _check


AuditReader = Depends(require_capability(Capability.AUDIT_READ))
MemberManager = Depends(require_capability(Capability.MEMBERS_MANAGE))


# ── Services ──────────────────────────────────────────────────────────── #


@lru_cache
def _storage_singleton() -> Storage:
    return build_storage(get_settings())


def get_storage() -> Storage:
    return _storage_singleton()


@lru_cache
def get_access_gate() -> AccessGate:
    return AccessGate()


def get_audit(db: DbSession) -> AuditLogger:
    return AuditLogger(db)


def get_document_lifecycle(
    db: DbSession,
    storage: Annotated[Storage, Depends(get_storage)],
    audit: Annotated[AuditLogger, Depends(get_audit)],
    settings: Annotated[Settings, Depends(get_settings)],
    gate: Annotated[AccessGate, Depends(get_access_gate)],
) -> DocumentLifecycle:
    return DocumentLifecycle(db, storage, audit, settings, gate=gate)


def get_risk_lifecycle(
    db: DbSession,
    audit: Annotated[AuditLogger, Depends(get_audit)],
    settings: Annotated[Settings, Depends(get_settings)],
    gate: Annotated[AccessGate, Depends(get_access_gate)],
) -> RiskRecordLifecycle:
    return RiskRecordLifecycle(db, audit, policy=policy_for(settings.risk_status_policy), gate=gate)


def get_assessment_service(
    db: DbSession,
    audit: Annotated[AuditLogger, Depends(get_audit)],
    risks: Annotated[RiskRecordLifecycle, Depends(get_risk_lifecycle)],
    gate: Annotated[AccessGate, Depends(get_access_gate)],
) -> RiskAssessmentService:
    return RiskAssessmentService(db, audit, risks, gate=gate)


Documents = Annotated[DocumentLifecycle, Depends(get_document_lifecycle)]
Risks = Annotated[RiskRecordLifecycle, Depends(get_risk_lifecycle)]
Assessments = Annotated[RiskAssessmentService, Depends(get_assessment_service)]
