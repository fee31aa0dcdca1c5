"""Database model registry. Import all models here so Alembic can discover them."""

from hmsnova.db.models.audit import AuditEvent
from hmsnova.db.models.document import (
    PROTECTED_KINDS,
    DocStatus,
    Document,
    DocumentKind,
    DocumentTemplate,
    DocumentVersion,
)
from hmsnova.db.models.risk import (
    Goal,
    InspectionTemplate,
    ResponseStrategy,
    ReviewFrequency,
    Risk,
    RiskAssessment,
    RiskCategory,
    RiskStatus,
    RiskTrend,
)
from hmsnova.db.models.tenant import Tenant, TenantMembership, TenantRole, User

__all__ = [
    "PROTECTED_KINDS",
    "AuditEvent",
    "DocStatus",
    "Document",
    "DocumentKind",
    "DocumentTemplate",
    "DocumentVersion",
    "Goal",
    "InspectionTemplate",
    "ResponseStrategy",
    "ReviewFrequency",
    "Risk",
    "RiskAssessment",
    "RiskCategory",
    "RiskStatus",
    "RiskTrend",
    "Tenant",
    "TenantMembership",
    "TenantRole",
    "User",
]
