"""Audit log API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Query
from sqlalchemy import func, select

from hmsnova.api.deps import AuditReader, AuthCtx, DbSession
from hmsnova.db.models.audit import AuditEvent
from hmsnova.schemas.audit import AuditEventOut, AuditListResponse, ChainVerificationResult
from hmsnova.services.audit.logger import AuditLogger

router = APIRouter(prefix="/audit", tags=["audit"])


@router.get(
    "",
    response_model=AuditListResponse,
    summary="List audit events",
    dependencies=[AuditReader],
)
async def list_audit_events(
    ctx: AuthCtx,
    db: DbSession,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=200),
    action: str | None = Query(default=None),
    resource_ref: str | None = Query(default=None, description="e.g. Document:<id>"),
    user_id: str | None = Query(default=None),
) -> AuditListResponse:
    """Return the tenant's audit events, newest first, with optional filters."""
    query = select(AuditEvent).where(AuditEvent.tenant_id == ctx.tenant_id)
    if action:
        query = query.where(AuditEvent.action == action)
    if resource_ref:
        query = query.where(AuditEvent.resource_ref == resource_ref)
    if user_id:
        query = query.where(AuditEvent.user_id == user_id)

    count = await db.execute(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(AuditEvent.sequence_no.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return AuditListResponse(
        items=[AuditEventOut.model_validate(e) for e in result.scalars().all()],
        total=count.scalar_one(),
        page=page,
        page_size=page_size,
    )


@router.get(
    "/verify",
    response_model=ChainVerificationResult,
    summary="Verify audit hash chain integrity",
    dependencies=[AuditReader],
)
async def verify_chain(ctx: AuthCtx, db: DbSession) -> ChainVerificationResult:
    """
    Recompute the tenant's hash chain.

    Returns whether the chain is intact and, if not, the ID of the first
    broken link.
    """
    total = await db.scalar(
        select(func.count()).select_from(AuditEvent).where(AuditEvent.tenant_id == ctx.tenant_id)
    )
    is_valid, broken_at = await AuditLogger.verify_chain(db, ctx.tenant_id)

    return ChainVerificationResult(
        is_valid=is_valid,
        total_events=total or 0,
        first_broken_at=broken_at,
        message="Chain is intact." if is_valid else f"Chain broken at event {broken_at}.",
    )
