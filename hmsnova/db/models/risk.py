"""
Risk register models.

Likelihood and consequence are stored; score and level are always
recomputed on read through the scoring engine and never persisted.
"""

from __future__ import annotations

from datetime import date
from enum import StrEnum

from sqlalchemy import Date, ForeignKey, Integer, String, Text
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


class RiskStatus(StrEnum):
    OPEN = "OPEN"
    MITIGATING = "MITIGATING"
    ACCEPTED = "ACCEPTED"
    CLOSED = "CLOSED"


class RiskCategory(StrEnum):
    OPERATIONAL = "OPERATIONAL"
    SAFETY = "SAFETY"
    HEALTH = "HEALTH"
    ENVIRONMENTAL = "ENVIRONMENTAL"
    INFORMATION_SECURITY = "INFORMATION_SECURITY"
    LEGAL = "LEGAL"
    STRATEGIC = "STRATEGIC"
    PSYCHOSOCIAL = "PSYCHOSOCIAL"
    ERGONOMIC = "ERGONOMIC"
    ORGANISATIONAL = "ORGANISATIONAL"
    PHYSICAL = "PHYSICAL"


class ReviewFrequency(StrEnum):
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    ANNUAL = "ANNUAL"
    BIENNIAL = "BIENNIAL"


class ResponseStrategy(StrEnum):
    AVOID = "AVOID"
    REDUCE = "REDUCE"
    TRANSFER = "TRANSFER"
    ACCEPT = "ACCEPT"


class RiskTrend(StrEnum):
    INCREASING = "INCREASING"
    STABLE = "STABLE"
    DECREASING = "DECREASING"


class Goal(Base, UUIDPrimaryKeyMixin, TimestampMixin, TenantScopedMixin):
    """HMS goal / KPI a risk can be tracked against."""

    __tablename__ = "goals"

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    target_value: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return f"<Goal {self.title}>"


class InspectionTemplate(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Checklist used for inspections. tenant_id NULL means global."""

    __tablename__ = "inspection_templates"

    tenant_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<InspectionTemplate {self.name}>"


class RiskAssessment(Base, UUIDPrimaryKeyMixin, TimestampMixin, TenantScopedMixin):
    """A batch of risks assessed together, typically the annual assessment."""

    __tablename__ = "risk_assessments"

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    assessment_year: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    created_by: Mapped[str | None] = mapped_column(String(36), nullable=True)

    risks: Mapped[list[Risk]] = relationship(
        "Risk", back_populates="assessment", passive_deletes=True
    )

    def __repr__(self) -> str:
        return f"<RiskAssessment {self.assessment_year} {self.title}>"


class Risk(Base, UUIDPrimaryKeyMixin, TimestampMixin, TenantScopedMixin, RevisionMixin):
    """One entry in the tenant's risk register."""

    __tablename__ = "risks"

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    context: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    existing_controls: Mapped[str | None] = mapped_column(Text, nullable=True)
    risk_statement: Mapped[str | None] = mapped_column(Text, nullable=True)
    additional_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    category: Mapped[RiskCategory] = mapped_column(
        SAEnum(RiskCategory, name="risk_category"),
        nullable=False,
        default=RiskCategory.OPERATIONAL,
        index=True,
    )
    location: Mapped[str | None] = mapped_column(String(120), nullable=True)
    area: Mapped[str | None] = mapped_column(String(120), nullable=True)
    linked_process: Mapped[str | None] = mapped_column(String(200), nullable=True)

    owner_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    status: Mapped[RiskStatus] = mapped_column(
        SAEnum(RiskStatus, name="risk_status"),
        nullable=False,
        default=RiskStatus.OPEN,
        index=True,
    )

    likelihood: Mapped[int] = mapped_column(Integer, nullable=False)
    consequence: Mapped[int] = mapped_column(Integer, nullable=False)
    residual_likelihood: Mapped[int | None] = mapped_column(Integer, nullable=True)
    residual_consequence: Mapped[int | None] = mapped_column(Integer, nullable=True)

    review_frequency: Mapped[ReviewFrequency] = mapped_column(
        SAEnum(ReviewFrequency, name="review_frequency"),
        nullable=False,
        default=ReviewFrequency.ANNUAL,
    )
    next_review_date: Mapped[date | None] = mapped_column(Date, nullable=True, index=True)
    last_reviewed_at: Mapped[date | None] = mapped_column(Date, nullable=True)
    assessment_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    goal_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("goals.id", ondelete="SET NULL"), nullable=True
    )
    inspection_template_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("inspection_templates.id", ondelete="SET NULL"), nullable=True
    )
    assessment_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("risk_assessments.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    risk_appetite: Mapped[str | None] = mapped_column(Text, nullable=True)
    risk_tolerance: Mapped[str | None] = mapped_column(Text, nullable=True)
    response_strategy: Mapped[ResponseStrategy] = mapped_column(
        SAEnum(ResponseStrategy, name="response_strategy"),
        nullable=False,
        default=ResponseStrategy.REDUCE,
    )
    trend: Mapped[RiskTrend] = mapped_column(
        SAEnum(RiskTrend, name="risk_trend"),
        nullable=False,
        default=RiskTrend.STABLE,
    )

    assessment: Mapped[RiskAssessment | None] = relationship(
        "RiskAssessment", back_populates="risks"
    )

    @property
    def has_residual(self) -> bool:
        return self.residual_likelihood is not None and self.residual_consequence is not None

    def __repr__(self) -> str:
        return f"<Risk {self.title} L{self.likelihood}xC{self.consequence} [{self.status}]>"
