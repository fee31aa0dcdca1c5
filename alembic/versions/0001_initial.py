"""Initial schema: tenants, documents, risks, audit.

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision: str = "0001_initial"
down_revision: str | None = None
branch_labels: str | None = None
depends_on: str | None = None

_DOCUMENT_KIND = sa.Enum(
    "LAW", "PLAN", "PROCEDURE", "CHECKLIST", "FORM", "SDS", "OTHER", name="document_kind"
)
_DOCUMENT_STATUS = sa.Enum("DRAFT", "APPROVED", name="document_status")
_RISK_CATEGORY = sa.Enum(
    "OPERATIONAL",
    "SAFETY",
    "HEALTH",
    "ENVIRONMENTAL",
    "INFORMATION_SECURITY",
    "LEGAL",
    "STRATEGIC",
    "PSYCHOSOCIAL",
    "ERGONOMIC",
    "ORGANISATIONAL",
    "PHYSICAL",
    name="risk_category",
)
_RISK_STATUS = sa.Enum("OPEN", "MITIGATING", "ACCEPTED", "CLOSED", name="risk_status")
_REVIEW_FREQUENCY = sa.Enum(
    "WEEKLY", "MONTHLY", "QUARTERLY", "ANNUAL", "BIENNIAL", name="review_frequency"
)
_RESPONSE_STRATEGY = sa.Enum("AVOID", "REDUCE", "TRANSFER", "ACCEPT", name="response_strategy")
_RISK_TREND = sa.Enum("INCREASING", "STABLE", "DECREASING", name="risk_trend")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    ]


def _tenant_fk(nullable: bool = False) -> sa.Column:
    return sa.Column(
        "tenant_id",
        sa.String(36),
        sa.ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=nullable,
    )


def upgrade() -> None:
    # tenants
    op.create_table(
        "tenants",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("slug", sa.String(120), nullable=False, unique=True),
        *_timestamps(),
    )
    op.create_index("ix_tenants_slug", "tenants", ["slug"])

    # users
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(200), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )
    op.create_index("ix_users_email", "users", ["email"])
    op.create_index("ix_users_deleted_at", "users", ["deleted_at"])

    # tenant_memberships
    op.create_table(
        "tenant_memberships",
        sa.Column("id", sa.String(36), primary_key=True),
        _tenant_fk(),
        sa.Column(
            "user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("role", sa.String(20), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("tenant_id", "user_id", name="uq_tenant_memberships_tenant_user"),
    )
    op.create_index("ix_tenant_memberships_tenant_id", "tenant_memberships", ["tenant_id"])
    op.create_index("ix_tenant_memberships_user_id", "tenant_memberships", ["user_id"])

    # document_templates
    op.create_table(
        "document_templates",
        sa.Column("id", sa.String(36), primary_key=True),
        _tenant_fk(nullable=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("category", sa.String(50), nullable=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("default_review_interval_months", sa.Integer, nullable=False),
        sa.Column("pdca_guidance", sa.JSON, nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_document_templates_tenant_id", "document_templates", ["tenant_id"])

    # documents
    op.create_table(
        "documents",
        sa.Column("id", sa.String(36), primary_key=True),
        _tenant_fk(),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("slug", sa.String(300), nullable=False),
        sa.Column("kind", _DOCUMENT_KIND, nullable=False),
        sa.Column("version", sa.String(50), nullable=False),
        sa.Column("status", _DOCUMENT_STATUS, nullable=False),
        sa.Column(
            "owner_id", sa.String(36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column(
            "template_id",
            sa.String(36),
            sa.ForeignKey("document_templates.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("review_interval_months", sa.Integer, nullable=False),
        sa.Column("effective_from", sa.Date, nullable=False),
        sa.Column("effective_to", sa.Date, nullable=True),
        sa.Column("next_review_date", sa.Date, nullable=True),
        sa.Column("plan_summary", sa.Text, nullable=True),
        sa.Column("do_summary", sa.Text, nullable=True),
        sa.Column("check_summary", sa.Text, nullable=True),
        sa.Column("act_summary", sa.Text, nullable=True),
        sa.Column("visible_to_roles", sa.JSON, nullable=True),
        sa.Column("approved_by", sa.String(255), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("file_key", sa.String(500), nullable=False),
        sa.Column("mime_type", sa.String(150), nullable=False),
        sa.Column("revision", sa.Integer, nullable=False, server_default="1"),
        sa.Column("updated_by", sa.String(36), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("tenant_id", "slug", name="uq_documents_tenant_slug"),
    )
    op.create_index("ix_documents_tenant_id", "documents", ["tenant_id"])
    op.create_index("ix_documents_kind", "documents", ["kind"])
    op.create_index("ix_documents_status", "documents", ["status"])
    op.create_index("ix_documents_owner_id", "documents", ["owner_id"])
    op.create_index("ix_documents_template_id", "documents", ["template_id"])
    op.create_index("ix_documents_next_review_date", "documents", ["next_review_date"])

    # document_versions
    op.create_table(
        "document_versions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "document_id",
            sa.String(36),
            sa.ForeignKey("documents.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("sequence_no", sa.Integer, nullable=False),
        sa.Column("version", sa.String(50), nullable=False),
        sa.Column("file_key", sa.String(500), nullable=False),
        sa.Column("mime_type", sa.String(150), nullable=False),
        sa.Column("file_size_bytes", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("uploaded_by", sa.String(36), nullable=True),
        sa.Column("change_comment", sa.Text, nullable=True),
        sa.Column("approved_by", sa.String(255), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("superseded_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("document_id", "version", name="uq_document_versions_label"),
        sa.UniqueConstraint("document_id", "sequence_no", name="uq_document_versions_seq"),
    )
    op.create_index("ix_document_versions_document_id", "document_versions", ["document_id"])
    op.create_index("ix_document_versions_tenant_id", "document_versions", ["tenant_id"])
    op.create_index("ix_document_versions_superseded_at", "document_versions", ["superseded_at"])

    # goals
    op.create_table(
        "goals",
        sa.Column("id", sa.String(36), primary_key=True),
        _tenant_fk(),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("target_value", sa.String(100), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_goals_tenant_id", "goals", ["tenant_id"])

    # inspection_templates
    op.create_table(
        "inspection_templates",
        sa.Column("id", sa.String(36), primary_key=True),
        _tenant_fk(nullable=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_inspection_templates_tenant_id", "inspection_templates", ["tenant_id"])

    # risk_assessments
    op.create_table(
        "risk_assessments",
        sa.Column("id", sa.String(36), primary_key=True),
        _tenant_fk(),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("assessment_year", sa.Integer, nullable=False),
        sa.Column("created_by", sa.String(36), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_risk_assessments_tenant_id", "risk_assessments", ["tenant_id"])
    op.create_index(
        "ix_risk_assessments_assessment_year", "risk_assessments", ["assessment_year"]
    )

    # risks
    op.create_table(
        "risks",
        sa.Column("id", sa.String(36), primary_key=True),
        _tenant_fk(),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("context", sa.Text, nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("existing_controls", sa.Text, nullable=True),
        sa.Column("risk_statement", sa.Text, nullable=True),
        sa.Column("additional_notes", sa.Text, nullable=True),
        sa.Column("category", _RISK_CATEGORY, nullable=False),
        sa.Column("location", sa.String(120), nullable=True),
        sa.Column("area", sa.String(120), nullable=True),
        sa.Column("linked_process", sa.String(200), nullable=True),
        sa.Column(
            "owner_id", sa.String(36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("status", _RISK_STATUS, nullable=False),
        sa.Column("likelihood", sa.Integer, nullable=False),
        sa.Column("consequence", sa.Integer, nullable=False),
        sa.Column("residual_likelihood", sa.Integer, nullable=True),
        sa.Column("residual_consequence", sa.Integer, nullable=True),
        sa.Column("review_frequency", _REVIEW_FREQUENCY, nullable=False),
        sa.Column("next_review_date", sa.Date, nullable=True),
        sa.Column("last_reviewed_at", sa.Date, nullable=True),
        sa.Column("assessment_date", sa.Date, nullable=True),
        sa.Column(
            "goal_id", sa.String(36), sa.ForeignKey("goals.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column(
            "inspection_template_id",
            sa.String(36),
            sa.ForeignKey("inspection_templates.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "assessment_id",
            sa.String(36),
            sa.ForeignKey("risk_assessments.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("risk_appetite", sa.Text, nullable=True),
        sa.Column("risk_tolerance", sa.Text, nullable=True),
        sa.Column("response_strategy", _RESPONSE_STRATEGY, nullable=False),
        sa.Column("trend", _RISK_TREND, nullable=False),
        sa.Column("revision", sa.Integer, nullable=False, server_default="1"),
        sa.Column("updated_by", sa.String(36), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_risks_tenant_id", "risks", ["tenant_id"])
    op.create_index("ix_risks_category", "risks", ["category"])
    op.create_index("ix_risks_owner_id", "risks", ["owner_id"])
    op.create_index("ix_risks_status", "risks", ["status"])
    op.create_index("ix_risks_next_review_date", "risks", ["next_review_date"])
    op.create_index("ix_risks_assessment_id", "risks", ["assessment_id"])

    # audit_events
    op.create_table(
        "audit_events",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("sequence_no", sa.Integer, nullable=False),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=True),
        sa.Column("resource_ref", sa.String(200), nullable=False),
        sa.Column("correlation_id", sa.String(36), nullable=True),
        sa.Column("metadata_json", sa.Text, nullable=True),
        sa.Column("event_hash", sa.String(64), nullable=False),
        sa.Column("prev_hash", sa.String(64), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("event_hash", name="uq_audit_event_hash"),
        sa.UniqueConstraint("tenant_id", "sequence_no", name="uq_audit_events_tenant_seq"),
    )
    op.create_index("ix_audit_events_tenant_id", "audit_events", ["tenant_id"])
    op.create_index("ix_audit_events_action", "audit_events", ["action"])
    op.create_index("ix_audit_events_user_id", "audit_events", ["user_id"])
    op.create_index("ix_audit_events_correlation_id", "audit_events", ["correlation_id"])
    op.create_index(
        "ix_audit_events_tenant_resource", "audit_events", ["tenant_id", "resource_ref"]
    )


def downgrade() -> None:
    op.drop_table("audit_events")
    op.drop_table("risks")
    op.drop_table("risk_assessments")
    op.drop_table("inspection_templates")
    op.drop_table("goals")
    op.drop_table("document_versions")
    op.drop_table("documents")
    op.drop_table("document_templates")
    op.drop_table("tenant_memberships")
    op.drop_table("users")
    op.drop_table("tenants")

    bind = op.get_bind()
    for enum in (
        _RISK_TREND,
        _RESPONSE_STRATEGY,
        _REVIEW_FREQUENCY,
        _RISK_STATUS,
        _RISK_CATEGORY,
        _DOCUMENT_STATUS,
        _DOCUMENT_KIND,
    ):
        enum.drop(bind, checkfirst=True)
