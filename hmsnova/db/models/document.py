"""
Controlled document, version and template models.

DocStatus is the approval state (DRAFT ⇄ APPROVED). DocumentVersion rows
are owned by their Document and ordered by sequence_no; the row with
superseded_at NULL is the current version.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy import (
    Enum as SAEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hmsnova.db.base import (
    Base,
    RevisionMixin,
    TenantScopedMixin,
    TimestampMixin,
    UUIDPrimaryKeyMixin,
)


class DocStatus(StrEnum):
    DRAFT = "DRAFT"
    APPROVED = "APPROVED"


class DocumentKind(StrEnum):
    LAW = "LAW"
    PLAN = "PLAN"
    PROCEDURE = "PROCEDURE"
    CHECKLIST = "CHECKLIST"
    FORM = "FORM"
    SDS = "SDS"
    OTHER = "OTHER"


# Kinds that exist for legal traceability and can never be deleted.
PROTECTED_KINDS: frozenset[DocumentKind] = frozenset({DocumentKind.LAW})


class DocumentTemplate(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """
    Template a document can be based on.

    tenant_id NULL marks a global template visible to every tenant.
    """

    __tablename__ = "document_templates"

    tenant_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[str | None] = mapped_column(String(50), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    default_review_interval_months: Mapped[int] = mapped_column(
        Integer, nullable=False, default=12
    )
    # {"plan": "...", "do": "...", "check": "...", "act": "..."}
    pdca_guidance: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    @property
    def is_global(self) -> bool:
        return self.tenant_id is None

    def __repr__(self) -> str:
        return f"<DocumentTemplate {self.name}>"


class Document(Base, UUIDPrimaryKeyMixin, TimestampMixin, TenantScopedMixin, RevisionMixin):
    """A governed document with version history and periodic review."""

    __tablename__ = "documents"
    __table_args__ = (UniqueConstraint("tenant_id", "slug", name="uq_documents_tenant_slug"),)

    title: Mapped[str] = mapped_column(String(300), nullable=False)
    slug: Mapped[str] = mapped_column(String(300), nullable=False)
    kind: Mapped[DocumentKind] = mapped_column(
        SAEnum(DocumentKind, name="document_kind"), nullable=False, index=True
    )
    version: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[DocStatus] = mapped_column(
        SAEnum(DocStatus, name="document_status"),
        default=DocStatus.DRAFT,
        nullable=False,
        index=True,
    )

    owner_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    template_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("document_templates.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    review_interval_months: Mapped[int] = mapped_column(Integer, nullable=False, default=12)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)
    next_review_date: Mapped[date | None] = mapped_column(Date, nullable=True, index=True)

    plan_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    do_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    check_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    act_summary: Mapped[str | None] = mapped_column(Text, nullable=True)

    # NULL or empty means visible to every role in the tenant
    visible_to_roles: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)

    approved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    file_key: Mapped[str] = mapped_column(String(500), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(150), nullable=False)

    versions: Mapped[list[DocumentVersion]] = relationship(
        "DocumentVersion",
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="DocumentVersion.sequence_no.desc()",
    )

    def __repr__(self) -> str:
        return f"<Document {self.slug} {self.version} [{self.status}]>"


class DocumentVersion(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """One uploaded file revision of a document."""

    __tablename__ = "document_versions"
    __table_args__ = (
        UniqueConstraint("document_id", "version", name="uq_document_versions_label"),
        UniqueConstraint("document_id", "sequence_no", name="uq_document_versions_seq"),
    )

    document_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    sequence_no: Mapped[int] = mapped_column(Integer, nullable=False)
    version: Mapped[str] = mapped_column(String(50), nullable=False)
    file_key: Mapped[str] = mapped_column(String(500), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(150), nullable=False)
    file_size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    uploaded_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    change_comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    superseded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )

    document: Mapped[Document] = relationship("Document", back_populates="versions")

    @property
    def is_current(self) -> bool:
        return self.superseded_at is None

    def __repr__(self) -> str:
        return f"<DocumentVersion {self.version} #{self.sequence_no}>"
