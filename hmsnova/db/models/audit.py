"""
Immutable audit event model.

Events form one hash chain per tenant: each event records the SHA-256
hash of the previous event of the same tenant and a gap-free sequence
number. Silently deleting or modifying a historical record breaks the
chain.

The chain can be verified via AuditLogger.verify_chain().
"""

from __future__ import annotations

from sqlalchemy import Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from hmsnova.db.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class AuditEvent(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Single immutable audit event."""

    __tablename__ = "audit_events"
    __table_args__ = (
        UniqueConstraint("event_hash", name="uq_audit_event_hash"),
        UniqueConstraint("tenant_id", "sequence_no", name="uq_audit_events_tenant_seq"),
        Index("ix_audit_events_tenant_resource", "tenant_id", "resource_ref"),
    )

    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    sequence_no: Mapped[int] = mapped_column(Integer, nullable=False)
    action: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    user_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    resource_ref: Mapped[str] = mapped_column(String(200), nullable=False)
    correlation_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Hash of this event (covers all fields except event_hash itself)
    event_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    # Hash of the previous event in the tenant's chain; null for the genesis event
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    def __repr__(self) -> str:
        return f"<AuditEvent #{self.sequence_no} {self.action} {self.resource_ref}>"
