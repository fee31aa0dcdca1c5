"""
Risk register lifecycle.

Inherent and residual risk are scored with the same engine call; only the
likelihood/consequence inputs are stored. Every mutation bumps the row's
revision and writes one audit entry in the caller's session.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable
from datetime import UTC, date, datetime
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hmsnova.core.auth_context import AccessGate, AuthContext, Capability
from hmsnova.core.errors import (
    ErrorCode,
    InvalidOwnerError,
    NotFoundError,
    RevisionConflictError,
    ValidationError,
)
from hmsnova.core.operations import lifecycle_operation
from hmsnova.db.models.risk import (
    Goal,
    InspectionTemplate,
    Risk,
    RiskAssessment,
    RiskCategory,
    RiskStatus,
)
from hmsnova.db.models.tenant import TenantMembership
from hmsnova.schemas.risk import RiskCreate, RiskUpdate
from hmsnova.services.audit.logger import AuditSink, resource_ref
from hmsnova.services.risks.policy import PermissiveStatusPolicy, RiskStatusPolicy
from hmsnova.services.scheduling.review import next_review_for_frequency
from hmsnova.services.scoring.engine import (
    SCALE_MAX,
    SCALE_MIN,
    RiskLevel,
    level_for_score,
    score_optional,
    score_risk,
    validate_scale,
)

_log = structlog.get_logger(__name__)

# Fields copied verbatim from the request onto the row when present.
_PLAIN_FIELDS = (
    "description",
    "existing_controls",
    "risk_statement",
    "additional_notes",
    "location",
    "area",
    "linked_process",
    "risk_appetite",
    "risk_tolerance",
    "last_reviewed_at",
    "assessment_date",
)
_NON_NULL_FIELDS = ("title", "context", "category", "response_strategy", "trend")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class RiskRecordLifecycle:
    def __init__(
        self,
        db: AsyncSession,
        audit: AuditSink,
        policy: RiskStatusPolicy | None = None,
        gate: AccessGate | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._db = db
        self._audit = audit
        self._policy = policy or PermissiveStatusPolicy()
        self._gate = gate or AccessGate()
        self._clock = clock

    # ── Reads ─────────────────────────────────────────────────────────── #

    @lifecycle_operation("risks.get")
    async def get_risk(self, ctx: AuthContext, risk_id: str) -> Risk:
        self._gate.require_capability(ctx, Capability.RISKS_READ)
        return await self._load(ctx, risk_id)

    @lifecycle_operation("risks.list")
    async def list_risks(
        self,
        ctx: AuthContext,
        status: RiskStatus | None = None,
        category: RiskCategory | None = None,
    ) -> list[Risk]:
        """Highest inherent score first, newest first within a score."""
        self._gate.require_capability(ctx, Capability.RISKS_READ)
        query = select(Risk).where(Risk.tenant_id == ctx.tenant_id)
        if status is not None:
            query = query.where(Risk.status == status)
        if category is not None:
            query = query.where(Risk.category == category)
        result = await self._db.execute(
            query.order_by((Risk.likelihood * Risk.consequence).desc(), Risk.created_at.desc())
        )
        return list(result.scalars())

    @lifecycle_operation("risks.stats")
    async def risk_stats(self, ctx: AuthContext) -> dict[str, Any]:
        risks = await self.list_risks(ctx)
        by_level = Counter(score_risk(r.likelihood, r.consequence).level for r in risks)
        residuals = [
            score_optional(r.residual_likelihood, r.residual_consequence) for r in risks
        ]
        residual_by_level = Counter(s.level for s in residuals if s is not None)
        by_status = Counter(r.status for r in risks)
        return {
            "total": len(risks),
            "by_level": {level: by_level.get(level, 0) for level in RiskLevel},
            "by_status": {status: by_status.get(status, 0) for status in RiskStatus},
            "residual_assessed": sum(residual_by_level.values()),
            "residual_by_level": {
                level: residual_by_level.get(level, 0) for level in RiskLevel
            },
        }

    @lifecycle_operation("risks.matrix")
    async def risk_matrix(self, ctx: AuthContext, residual: bool = False) -> list[dict[str, Any]]:
        """Counts per (likelihood, consequence) cell, row-major from 1×1 to 5×5."""
        risks = await self.list_risks(ctx)
        counts: Counter[tuple[int, int]] = Counter()
        for risk in risks:
            if residual:
                if risk.has_residual:
                    counts[(risk.residual_likelihood, risk.residual_consequence)] += 1
            else:
                counts[(risk.likelihood, risk.consequence)] += 1
        cells = []
        for likelihood in range(SCALE_MIN, SCALE_MAX + 1):
            for consequence in range(SCALE_MIN, SCALE_MAX + 1):
                score = likelihood * consequence
                cells.append(
                    {
                        "likelihood": likelihood,
                        "consequence": consequence,
                        "score": score,
                        "level": level_for_score(score),
                        "count": counts[(likelihood, consequence)],
                    }
                )
        return cells

    # ── Mutations ─────────────────────────────────────────────────────── #

    @lifecycle_operation("risks.create")
    async def create(self, ctx: AuthContext, payload: RiskCreate) -> Risk:
        self._gate.require_capability(ctx, Capability.RISKS_WRITE)
        inherent = score_risk(payload.likelihood, payload.consequence)
        self._validate_residual(payload.residual_likelihood, payload.residual_consequence)

        owner_id = payload.owner_id or ctx.user_id
        if payload.owner_id is not None:
            await self._require_member(ctx, owner_id)
        if payload.goal_id is not None:
            await self._require_goal(ctx, payload.goal_id)
        if payload.inspection_template_id is not None:
            await self._require_inspection_template(ctx, payload.inspection_template_id)
        if payload.assessment_id is not None:
            await self._require_assessment(ctx, payload.assessment_id)

        next_review = payload.next_review_date or next_review_for_frequency(
            payload.review_frequency, self._today()
        )
        fields = payload.model_dump(exclude={"owner_id", "next_review_date"})
        risk = Risk(
            tenant_id=ctx.tenant_id,
            owner_id=owner_id,
            next_review_date=next_review,
            revision=1,
            updated_by=ctx.user_id,
            **fields,
        )
        self._db.add(risk)
        await self._db.flush()

        await self._audit.log(
            ctx.tenant_id,
            ctx.user_id,
            "RISK_CREATED",
            resource_ref("Risk", risk.id),
            {"title": risk.title, "score": inherent.score, "level": inherent.level.value},
        )
        _log.info("risk_created", risk_id=risk.id, score=inherent.score, level=inherent.level)
        return risk

    @lifecycle_operation("risks.update")
    async def update(self, ctx: AuthContext, risk_id: str, payload: RiskUpdate) -> Risk:
        self._gate.require_capability(ctx, Capability.RISKS_WRITE)
        risk = await self._load(ctx, risk_id)
        self._check_revision(risk, payload.expected_revision)
        fields = payload.model_dump(exclude_unset=True, exclude={"expected_revision"})

        # Every check runs before the row is touched.
        likelihood = (
            fields["likelihood"] if fields.get("likelihood") is not None else risk.likelihood
        )
        consequence = (
            fields["consequence"] if fields.get("consequence") is not None else risk.consequence
        )
        score_risk(likelihood, consequence)
        if risk.assessment_id is not None and (
            likelihood != risk.likelihood or consequence != risk.consequence
        ):
            raise ValidationError(
                "Likelihood and consequence of an assessment item are edited on the assessment",
                detail={"assessment_id": risk.assessment_id},
                code=ErrorCode.RISK_MATRIX_READ_ONLY,
            )
        self._validate_residual(
            fields.get("residual_likelihood"), fields.get("residual_consequence")
        )

        status = fields.get("status")
        if status is not None and status != risk.status:
            self._policy.check(risk.status, status)

        if "owner_id" in fields:
            if fields["owner_id"] is None:
                raise ValidationError("A risk always has an owner", detail={"field": "owner_id"})
            await self._require_member(ctx, fields["owner_id"])

        risk.likelihood = likelihood
        risk.consequence = consequence
        for name in ("residual_likelihood", "residual_consequence"):
            if name in fields:
                setattr(risk, name, fields[name])
        if status is not None:
            risk.status = status
        if "owner_id" in fields:
            risk.owner_id = fields["owner_id"]

        for name in _NON_NULL_FIELDS:
            if fields.get(name) is not None:
                setattr(risk, name, fields[name])
        for name in _PLAIN_FIELDS:
            if name in fields:
                setattr(risk, name, fields[name])

        frequency = fields.get("review_frequency")
        if "next_review_date" in fields:
            risk.next_review_date = fields["next_review_date"]
        elif frequency is not None and frequency != risk.review_frequency:
            risk.next_review_date = next_review_for_frequency(frequency, self._today())
        if frequency is not None:
            risk.review_frequency = frequency

        self._bump(risk, ctx)
        await self._db.flush()

        inherent = score_risk(risk.likelihood, risk.consequence)
        residual = score_optional(risk.residual_likelihood, risk.residual_consequence)
        await self._audit.log(
            ctx.tenant_id,
            ctx.user_id,
            "RISK_UPDATED",
            resource_ref("Risk", risk.id),
            {
                "fields": sorted(fields),
                "score": inherent.score,
                "residual_score": residual.score if residual else None,
            },
        )
        _log.info("risk_updated", risk_id=risk.id, fields=sorted(fields))
        return risk

    @lifecycle_operation("risks.delete")
    async def delete(self, ctx: AuthContext, risk_id: str) -> None:
        self._gate.require_capability(ctx, Capability.RISKS_DELETE)
        risk = await self._load(ctx, risk_id)
        await self._audit.log(
            ctx.tenant_id,
            ctx.user_id,
            "RISK_DELETED",
            resource_ref("Risk", risk.id),
            {"title": risk.title},
        )
        await self._db.delete(risk)
        await self._db.flush()
        _log.info("risk_deleted", risk_id=risk_id)

    @lifecycle_operation("risks.link_goal")
    async def link_goal(self, ctx: AuthContext, risk_id: str, goal_id: str) -> Risk:
        self._gate.require_capability(ctx, Capability.RISKS_WRITE)
        risk = await self._load(ctx, risk_id)
        await self._require_goal(ctx, goal_id)
        risk.goal_id = goal_id
        return await self._record_link(ctx, risk, "RISK_LINKED", {"goal_id": goal_id})

    @lifecycle_operation("risks.unlink_goal")
    async def unlink_goal(self, ctx: AuthContext, risk_id: str) -> Risk:
        self._gate.require_capability(ctx, Capability.RISKS_WRITE)
        risk = await self._load(ctx, risk_id)
        previous, risk.goal_id = risk.goal_id, None
        return await self._record_link(ctx, risk, "RISK_UNLINKED", {"goal_id": previous})

    @lifecycle_operation("risks.link_inspection_template")
    async def link_inspection_template(
        self, ctx: AuthContext, risk_id: str, template_id: str
    ) -> Risk:
        self._gate.require_capability(ctx, Capability.RISKS_WRITE)
        risk = await self._load(ctx, risk_id)
        await self._require_inspection_template(ctx, template_id)
        risk.inspection_template_id = template_id
        return await self._record_link(
            ctx, risk, "RISK_LINKED", {"inspection_template_id": template_id}
        )

    @lifecycle_operation("risks.unlink_inspection_template")
    async def unlink_inspection_template(self, ctx: AuthContext, risk_id: str) -> Risk:
        self._gate.require_capability(ctx, Capability.RISKS_WRITE)
        risk = await self._load(ctx, risk_id)
        previous, risk.inspection_template_id = risk.inspection_template_id, None
        return await self._record_link(
            ctx, risk, "RISK_UNLINKED", {"inspection_template_id": previous}
        )

    # ── Helpers ───────────────────────────────────────────────────────── #

    def _today(self) -> date:
        return self._clock().date()

    async def _load(self, ctx: AuthContext, risk_id: str) -> Risk:
        risk = await self._db.scalar(
            select(Risk).where(Risk.id == risk_id, Risk.tenant_id == ctx.tenant_id)
        )
        if risk is None:
            raise NotFoundError("Risk", risk_id, ErrorCode.RISK_NOT_FOUND)
        return risk

    async def _record_link(
        self, ctx: AuthContext, risk: Risk, action: str, metadata: dict[str, Any]
    ) -> Risk:
        self._bump(risk, ctx)
        await self._db.flush()
        await self._audit.log(
            ctx.tenant_id, ctx.user_id, action, resource_ref("Risk", risk.id), metadata
        )
        _log.info(action.lower(), risk_id=risk.id, **metadata)
        return risk

    @staticmethod
    def _validate_residual(likelihood: int | None, consequence: int | None) -> None:
        if likelihood is not None:
            validate_scale("residual_likelihood", likelihood)
        if consequence is not None:
            validate_scale("residual_consequence", consequence)

    async def _require_member(self, ctx: AuthContext, user_id: str) -> None:
        member = await self._db.scalar(
            select(TenantMembership.id).where(
                TenantMembership.tenant_id == ctx.tenant_id,
                TenantMembership.user_id == user_id,
            )
        )
        if member is None:
            raise InvalidOwnerError(user_id)

    async def _require_goal(self, ctx: AuthContext, goal_id: str) -> None:
        found = await self._db.scalar(
            select(Goal.id).where(Goal.id == goal_id, Goal.tenant_id == ctx.tenant_id)
        )
        if found is None:
            raise NotFoundError("Goal", goal_id, ErrorCode.RISK_LINK_TARGET_NOT_FOUND)

    async def _require_inspection_template(self, ctx: AuthContext, template_id: str) -> None:
        found = await self._db.scalar(
            select(InspectionTemplate.id).where(
                InspectionTemplate.id == template_id,
                (InspectionTemplate.tenant_id == ctx.tenant_id)
                | InspectionTemplate.tenant_id.is_(None),
            )
        )
        if found is None:
            raise NotFoundError(
                "InspectionTemplate", template_id, ErrorCode.RISK_LINK_TARGET_NOT_FOUND
            )

    async def _require_assessment(self, ctx: AuthContext, assessment_id: str) -> None:
        found = await self._db.scalar(
            select(RiskAssessment.id).where(
                RiskAssessment.id == assessment_id,
                RiskAssessment.tenant_id == ctx.tenant_id,
            )
        )
        if found is None:
            raise NotFoundError(
                "RiskAssessment", assessment_id, ErrorCode.RISK_ASSESSMENT_NOT_FOUND
            )

    @staticmethod
    def _check_revision(risk: Risk, expected: int | None) -> None:
        if expected is not None and expected != risk.revision:
            raise RevisionConflictError("Risk", risk.id, expected, risk.revision)

    @staticmethod
    def _bump(risk: Risk, ctx: AuthContext) -> None:
        risk.revision += 1
        risk.updated_by = ctx.user_id
