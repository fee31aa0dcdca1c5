"""
Risk assessment batches (e.g. the annual ISO 45001 assessment).

Items are ordinary risks tied to a batch. They are added by level rather
than by matrix position; the level picks a fixed likelihood/consequence
pair. Deleting a batch detaches its risks instead of deleting them.
"""

from __future__ import annotations

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from hmsnova.core.auth_context import AccessGate, AuthContext, Capability
from hmsnova.core.errors import ErrorCode, NotFoundError
from hmsnova.core.operations import lifecycle_operation
from hmsnova.db.models.risk import Risk, RiskAssessment
from hmsnova.schemas.risk import AssessmentCreate, AssessmentItemCreate, RiskCreate
from hmsnova.services.audit.logger import AuditSink, resource_ref
from hmsnova.services.risks.lifecycle import RiskRecordLifecycle
from hmsnova.services.scoring.engine import LEVEL_TO_MATRIX, RiskLevel

_log = structlog.get_logger(__name__)

_MIN_CONTEXT_LENGTH = 10


def _item_context(title: str, description: str | None) -> str:
    if description and len(description) >= _MIN_CONTEXT_LENGTH:
        return description
    if len(title) >= _MIN_CONTEXT_LENGTH:
        return title
    return f"{title} (risk item)"


class RiskAssessmentService:
    def __init__(
        self,
        db: AsyncSession,
        audit: AuditSink,
        risks: RiskRecordLifecycle,
        gate: AccessGate | None = None,
    ) -> None:
        self._db = db
        self._audit = audit
        self._risks = risks
        self._gate = gate or AccessGate()

    @lifecycle_operation("risk_assessments.create")
    async def create(self, ctx: AuthContext, payload: AssessmentCreate) -> RiskAssessment:
        self._gate.require_capability(ctx, Capability.RISKS_WRITE)
        assessment = RiskAssessment(
            tenant_id=ctx.tenant_id,
            title=payload.title,
            assessment_year=payload.assessment_year,
            created_by=ctx.user_id,
        )
        self._db.add(assessment)
        await self._db.flush()
        await self._audit.log(
            ctx.tenant_id,
            ctx.user_id,
            "RISK_ASSESSMENT_CREATED",
            resource_ref("RiskAssessment", assessment.id),
            {"title": assessment.title, "year": assessment.assessment_year},
        )
        _log.info("risk_assessment_created", assessment_id=assessment.id)
        return assessment

    @lifecycle_operation("risk_assessments.list")
    async def list_assessments(self, ctx: AuthContext) -> list[tuple[RiskAssessment, int]]:
        """Each batch with its risk count, newest year first."""
        self._gate.require_capability(ctx, Capability.RISKS_READ)
        result = await self._db.execute(
            select(RiskAssessment, func.count(Risk.id))
            .outerjoin(Risk, Risk.assessment_id == RiskAssessment.id)
            .where(RiskAssessment.tenant_id == ctx.tenant_id)
            .group_by(RiskAssessment.id)
            .order_by(RiskAssessment.assessment_year.desc(), RiskAssessment.created_at.desc())
        )
        return [(assessment, count) for assessment, count in result.all()]

    @lifecycle_operation("risk_assessments.get")
    async def get(self, ctx: AuthContext, assessment_id: str) -> tuple[RiskAssessment, list[Risk]]:
        self._gate.require_capability(ctx, Capability.RISKS_READ)
        assessment = await self._load(ctx, assessment_id)
        result = await self._db.execute(
            select(Risk)
            .where(Risk.assessment_id == assessment.id, Risk.tenant_id == ctx.tenant_id)
            .order_by(
                (Risk.likelihood * Risk.consequence).desc(),
                Risk.assessment_date.desc(),
                Risk.created_at.asc(),
            )
        )
        return assessment, list(result.scalars())

    @lifecycle_operation("risk_assessments.delete")
    async def delete(self, ctx: AuthContext, assessment_id: str) -> None:
        self._gate.require_capability(ctx, Capability.RISKS_DELETE)
        assessment = await self._load(ctx, assessment_id)
        detached = await self._db.execute(
            update(Risk)
            .where(Risk.assessment_id == assessment.id)
            .values(assessment_id=None)
            .execution_options(synchronize_session="fetch")
        )
        await self._audit.log(
            ctx.tenant_id,
            ctx.user_id,
            "RISK_ASSESSMENT_DELETED",
            resource_ref("RiskAssessment", assessment.id),
            {"title": assessment.title, "risks_count": detached.rowcount},
        )
        await self._db.delete(assessment)
        await self._db.flush()
        _log.info(
            "risk_assessment_deleted",
            assessment_id=assessment_id,
            risks_detached=detached.rowcount,
        )

    @lifecycle_operation("risk_assessments.add_item")
    async def add_item(
        self, ctx: AuthContext, assessment_id: str, payload: AssessmentItemCreate
    ) -> Risk:
        self._gate.require_capability(ctx, Capability.RISKS_WRITE)
        assessment = await self._load(ctx, assessment_id)
        likelihood, consequence = LEVEL_TO_MATRIX[payload.level]
        return await self._risks.create(
            ctx,
            RiskCreate(
                title=payload.title,
                context=_item_context(payload.title, payload.description),
                description=payload.description,
                risk_statement=payload.consequence_text,
                likelihood=likelihood,
                consequence=consequence,
                category=payload.category,
                owner_id=payload.owner_id,
                assessment_date=payload.assessment_date,
                next_review_date=payload.next_review_date,
                assessment_id=assessment.id,
            ),
        )

    @lifecycle_operation("risk_assessments.update_item_level")
    async def update_item_level(
        self, ctx: AuthContext, assessment_id: str, risk_id: str, level: RiskLevel
    ) -> Risk:
        self._gate.require_capability(ctx, Capability.RISKS_WRITE)
        await self._load(ctx, assessment_id)
        risk = await self._db.scalar(
            select(Risk).where(
                Risk.id == risk_id,
                Risk.assessment_id == assessment_id,
                Risk.tenant_id == ctx.tenant_id,
            )
        )
        if risk is None:
            raise NotFoundError("Risk", risk_id, ErrorCode.RISK_NOT_FOUND)

        risk.likelihood, risk.consequence = LEVEL_TO_MATRIX[level]
        risk.revision += 1
        risk.updated_by = ctx.user_id
        await self._db.flush()
        await self._audit.log(
            ctx.tenant_id,
            ctx.user_id,
            "RISK_UPDATED",
            resource_ref("Risk", risk.id),
            {"assessment_id": assessment_id, "level": level.value},
        )
        _log.info("risk_item_level_updated", risk_id=risk.id, level=level)
        return risk

    async def _load(self, ctx: AuthContext, assessment_id: str) -> RiskAssessment:
        assessment = await self._db.scalar(
            select(RiskAssessment).where(
                RiskAssessment.id == assessment_id,
                RiskAssessment.tenant_id == ctx.tenant_id,
            )
        )
        if assessment is None:
            raise NotFoundError(
                "RiskAssessment", assessment_id, ErrorCode.RISK_ASSESSMENT_NOT_FOUND
            )
        return assessment
