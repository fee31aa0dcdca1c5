"""Authentication API endpoints."""

from __future__ import annotations

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends
from jose import JWTError
from sqlalchemy import select

from hmsnova.api.deps import AuthCtx, DbSession, get_audit
from hmsnova.config.settings import get_settings
from hmsnova.core.auth_context import Capability
from hmsnova.core.errors import AuthError, ErrorCode
from hmsnova.core.security import (
    create_access_token,
    create_refresh_token,
    decode_token,
    hash_password,
    verify_password,
)
from hmsnova.db.models.tenant import TenantMembership, TenantRole, User
from hmsnova.schemas.auth import (
    ChangePasswordRequest,
    LoginRequest,
    MeOut,
    RefreshRequest,
    TokenResponse,
)
from hmsnova.services.audit.logger import AuditLogger, resource_ref

_log = structlog.get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

Audit = Annotated[AuditLogger, Depends(get_audit)]


def _issue(user: User, membership: TenantMembership, refresh_token: str | None = None) -> TokenResponse:
    settings = get_settings()
    access = create_access_token(
        subject=user.id,
        role=membership.role,
        extra_claims={"tenant_id": membership.tenant_id},
    )
    return TokenResponse(
        access_token=access,
        refresh_token=refresh_token or create_refresh_token(user.id, membership.tenant_id),
        token_type="bearer",
        expires_in=settings.jwt_access_token_expire_minutes * 60,
        tenant_id=membership.tenant_id,
        role=TenantRole(membership.role),
    )


@router.post("/login", response_model=TokenResponse, summary="Obtain access and refresh tokens")
async def login(body: LoginRequest, db: DbSession, audit: Audit) -> TokenResponse:
    """
    Authenticate with e-mail and password.

    The session is opened in ``tenant_id`` when given, otherwise in the
    user's oldest membership.
    """
    user = await db.scalar(
        select(User).where(User.email == body.email, User.deleted_at.is_(None))
    )
    if user is None or not verify_password(body.password, user.password_hash):
        _log.warning("login_failed", email=body.email)
        raise AuthError(ErrorCode.AUTH_INVALID_CREDENTIALS, "Invalid e-mail or password")

    if not user.is_active:
        raise AuthError(ErrorCode.AUTH_USER_INACTIVE, "Account is deactivated")

    query = select(TenantMembership).where(TenantMembership.user_id == user.id)
    if body.tenant_id:
        query = query.where(TenantMembership.tenant_id == body.tenant_id)
    membership = await db.scalar(query.order_by(TenantMembership.created_at.asc()).limit(1))
    if membership is None:
        raise AuthError(ErrorCode.AUTH_NO_TENANT, "No membership in the requested tenant")

    await audit.log(
        membership.tenant_id, user.id, "AUTH_LOGIN", resource_ref("User", user.id)
    )
    _log.info("login_success", user_id=user.id, tenant_id=membership.tenant_id)
    return _issue(user, membership)


@router.post("/refresh", response_model=TokenResponse, summary="Refresh access token")
async def refresh_token(body: RefreshRequest, db: DbSession) -> TokenResponse:
    """Exchange a valid refresh token for a new access token in the same tenant."""
    try:
        payload = decode_token(body.refresh_token)
    except JWTError as exc:
        raise AuthError(ErrorCode.AUTH_TOKEN_INVALID, "Refresh token invalid") from exc

    if payload.get("type") != "refresh":
        raise AuthError(ErrorCode.AUTH_TOKEN_INVALID, "Not a refresh token")

    user = await db.get(User, payload.get("sub"))
    if user is None or user.is_deleted or not user.is_active:
        raise AuthError(ErrorCode.AUTH_TOKEN_INVALID, "User not found")

    membership = await db.scalar(
        select(TenantMembership).where(
            TenantMembership.user_id == user.id,
            TenantMembership.tenant_id == payload.get("tenant_id"),
        )
    )
    if membership is None:
        raise AuthError(ErrorCode.AUTH_NO_TENANT, "Membership no longer exists")
    return _issue(user, membership, refresh_token=body.refresh_token)


@router.get("/me", response_model=MeOut, summary="Current user and tenant")
async def get_me(ctx: AuthCtx, db: DbSession) -> MeOut:
    user = await db.get(User, ctx.user_id)
    return MeOut(
        user_id=ctx.user_id,
        email=ctx.user_email,
        name=user.name if user else None,
        tenant_id=ctx.tenant_id,
        role=ctx.role,
        capabilities=sorted(c.value for c in Capability if ctx.can(c)),
    )


@router.post("/change-password", status_code=204, summary="Change own password")
async def change_password(
    body: ChangePasswordRequest, ctx: AuthCtx, db: DbSession, audit: Audit
) -> None:
    user = await db.get(User, ctx.user_id)
    if user is None or not verify_password(body.current_password, user.password_hash):
        raise AuthError(ErrorCode.AUTH_INVALID_CREDENTIALS, "Current password is incorrect")

    user.password_hash = hash_password(body.new_password)
    await db.flush()
    await audit.log(
        ctx.tenant_id, ctx.user_id, "AUTH_PASSWORD_CHANGED", resource_ref("User", user.id)
    )
