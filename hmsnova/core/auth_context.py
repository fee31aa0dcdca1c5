"""
Authenticated request context and the capability gate.

AuthContext is an explicit value built once per request by the API layer
and passed into every lifecycle call; services never read identity from
ambient state. AccessGate answers two questions: may this role perform a
capability, and may this caller see a specific resource.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hmsnova.core.errors import ErrorCode, ForbiddenError, NotFoundError
from hmsnova.db.models.document import Document
from hmsnova.db.models.risk import Risk, RiskAssessment
from hmsnova.db.models.tenant import TenantRole

_log = structlog.get_logger(__name__)


class Capability(StrEnum):
    DOCUMENTS_READ = "documents.read"
    DOCUMENTS_CREATE = "documents.create"
    DOCUMENTS_APPROVE = "documents.approve"
    DOCUMENTS_DELETE = "documents.delete"
    RISKS_READ = "risks.read"
    RISKS_WRITE = "risks.write"
    RISKS_DELETE = "risks.delete"
    AUDIT_READ = "audit.read"
    MEMBERS_MANAGE = "members.manage"


class ResourceType(StrEnum):
    DOCUMENT = "Document"
    RISK = "Risk"
    RISK_ASSESSMENT = "RiskAssessment"


_ALL_ROLES = frozenset(TenantRole)

ROLE_CAPABILITIES: dict[Capability, frozenset[TenantRole]] = {
    Capability.DOCUMENTS_READ: _ALL_ROLES,
    Capability.DOCUMENTS_CREATE: frozenset({TenantRole.ADMIN, TenantRole.HMS, TenantRole.LEDER}),
    Capability.DOCUMENTS_APPROVE: frozenset({TenantRole.ADMIN, TenantRole.HMS}),
    Capability.DOCUMENTS_DELETE: frozenset({TenantRole.ADMIN}),
    Capability.RISKS_READ: _ALL_ROLES,
    Capability.RISKS_WRITE: frozenset(
        {TenantRole.ADMIN, TenantRole.HMS, TenantRole.LEDER, TenantRole.VERNEOMBUD, TenantRole.BHT}
    ),
    Capability.RISKS_DELETE: frozenset({TenantRole.ADMIN, TenantRole.LEDER}),
    Capability.AUDIT_READ: frozenset({TenantRole.ADMIN}),
    Capability.MEMBERS_MANAGE: frozenset({TenantRole.ADMIN}),
}


@dataclass(frozen=True, slots=True)
class AuthContext:
    """Who is calling, and inside which tenant."""

    user_id: str
    user_email: str
    tenant_id: str
    role: TenantRole

    @property
    def is_admin(self) -> bool:
        return self.role == TenantRole.ADMIN

    def can(self, capability: Capability) -> bool:
        return self.role in ROLE_CAPABILITIES[capability]


def is_visible_to(document: Document, ctx: AuthContext) -> bool:
    """Documents restricted to a role list are hidden from other roles (admins see all)."""
    if ctx.is_admin or not document.visible_to_roles:
        return True
    return ctx.role.value in document.visible_to_roles


class AccessGate:
    """Capability and resource checks. Stateless; one instance is shared."""

    def require_capability(self, ctx: AuthContext, capability: Capability) -> AuthContext:
        if not ctx.can(capability):
            _log.info(
                "capability_denied",
                capability=capability.value,
                role=ctx.role.value,
            )
            raise ForbiddenError(detail={"capability": capability.value})
        return ctx

    async def require_resource_access(
        self,
        db: AsyncSession,
        ctx: AuthContext,
        resource_type: ResourceType,
        resource_id: str,
    ) -> AuthContext:
        """
        Confirm the resource exists in the caller's tenant and is visible.

        Missing, cross-tenant and hidden resources all raise the same
        NotFoundError.
        """
        match resource_type:
            case ResourceType.DOCUMENT:
                document = await db.scalar(
                    select(Document).where(
                        Document.id == resource_id, Document.tenant_id == ctx.tenant_id
                    )
                )
                if document is None or not is_visible_to(document, ctx):
                    raise NotFoundError("Document", resource_id, ErrorCode.DOC_NOT_FOUND)
            case ResourceType.RISK:
                found = await db.scalar(
                    select(Risk.id).where(Risk.id == resource_id, Risk.tenant_id == ctx.tenant_id)
                )
                if found is None:
                    raise NotFoundError("Risk", resource_id, ErrorCode.RISK_NOT_FOUND)
            case ResourceType.RISK_ASSESSMENT:
                found = await db.scalar(
                    select(RiskAssessment.id).where(
                        RiskAssessment.id == resource_id,
                        RiskAssessment.tenant_id == ctx.tenant_id,
                    )
                )
                if found is None:
                    raise NotFoundError(
                        "RiskAssessment", resource_id, ErrorCode.RISK_ASSESSMENT_NOT_FOUND
                    )
        return ctx
