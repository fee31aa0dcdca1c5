"""Integration tests: risk register and assessment batches."""
from datetime import date

import pytest
from sqlalchemy import select

from hmsnova.core.auth_context import AuthContext
from hmsnova.core.errors import (
    ErrorCode,
    ForbiddenError,
    InvalidOwnerError,
    InvalidRiskInput,
    NotFoundError,
    RevisionConflictError,
    StatusTransitionError,
    ValidationError,
)
from hmsnova.db.models.risk import (
    Goal,
    InspectionTemplate,
    ReviewFrequency,
    Risk,
    RiskAssessment,
    RiskCategory,
    RiskStatus,
)
from hmsnova.db.models.tenant import TenantMembership, TenantRole, User
from hmsnova.schemas.risk import (
    AssessmentCreate,
    AssessmentItemCreate,
    RiskCreate,
    RiskOut,
    RiskUpdate,
)
from hmsnova.services.audit.logger import AuditLogger
from hmsnova.services.risks.lifecycle import RiskRecordLifecycle
from hmsnova.services.risks.policy import SequentialStatusPolicy
from hmsnova.services.scoring.engine import RiskLevel

pytestmark = pytest.mark.asyncio


def _risk(title: str = "Fall from scaffolding", **kwargs) -> RiskCreate:
    kwargs.setdefault("likelihood", 3)
    kwargs.setdefault("consequence", 4)
    return RiskCreate(
        title=title,
        context="Work at height on the north facade during renovation",
        **kwargs,
    )


# ─── create & scoring ─────────────────────────────────────────────────────────

async def test_create_scores_inherent_and_residual(risks, seed):
    risk = await risks.create(
        seed.hms,
        _risk(likelihood=5, consequence=5, residual_likelihood=2, residual_consequence=2),
    )
    out = RiskOut.from_risk(risk)
    assert (out.inherent.score, out.inherent.level) == (25, RiskLevel.CRITICAL)
    assert (out.residual.score, out.residual.level) == (4, RiskLevel.LOW)


async def test_residual_absent_until_both_values_set(risks, seed):
    risk = await risks.create(seed.hms, _risk(residual_likelihood=2))
    assert RiskOut.from_risk(risk).residual is None


async def test_create_defaults(risks, seed):
    risk = await risks.create(seed.leder, _risk())
    assert risk.status == RiskStatus.OPEN
    assert risk.category == RiskCategory.OPERATIONAL
    assert risk.review_frequency == ReviewFrequency.ANNUAL
    assert risk.owner_id == seed.leder.user_id
    assert risk.revision == 1


async def test_next_review_from_frequency(risks, seed):
    annual = await risks.create(seed.hms, _risk("Annual risk"))
    monthly = await risks.create(
        seed.hms, _risk("Monthly risk", review_frequency=ReviewFrequency.MONTHLY)
    )
    assert annual.next_review_date == date(2026, 1, 31)
    assert monthly.next_review_date == date(2025, 2, 28)


async def test_explicit_next_review_wins(risks, seed):
    risk = await risks.create(
        seed.hms,
        _risk(review_frequency=ReviewFrequency.WEEKLY, next_review_date=date(2025, 3, 1)),
    )
    assert risk.next_review_date == date(2025, 3, 1)


@pytest.mark.parametrize(
    "overrides",
    [
        {"likelihood": 0},
        {"likelihood": 6},
        {"consequence": -1},
        {"residual_likelihood": 9, "residual_consequence": 1},
    ],
)
async def test_out_of_scale_input_rejected(risks, seed, db_session, overrides):
    with pytest.raises(InvalidRiskInput) as exc_info:
        await risks.create(seed.hms, _risk(**overrides))
    assert exc_info.value.code == ErrorCode.RISK_INVALID_INPUT
    assert await db_session.scalar(select(Risk.id)) is None


async def test_owner_must_be_member(risks, seed):
    with pytest.raises(InvalidOwnerError):
        await risks.create(seed.hms, _risk(owner_id=seed.outsider.user_id))


async def test_ansatt_cannot_create(risks, seed):
    with pytest.raises(ForbiddenError):
        await risks.create(seed.ansatt, _risk())


async def test_bht_can_create(risks, seed, db_session):
    user = User(email="bht@nordvik.no", name="bht", password_hash="unused")
    db_session.add(user)
    await db_session.flush()
    db_session.add(
        TenantMembership(tenant_id=seed.tenant_id, user_id=user.id, role=TenantRole.BHT.value)
    )
    await db_session.flush()
    bht = AuthContext(
        user_id=user.id, user_email=user.email, tenant_id=seed.tenant_id, role=TenantRole.BHT
    )
    risk = await risks.create(bht, _risk())
    assert risk.owner_id == user.id
    with pytest.raises(ForbiddenError):
        await risks.delete(bht, risk.id)


# ─── update ───────────────────────────────────────────────────────────────────

async def test_update_rescored_and_revision_bumped(risks, seed):
    risk = await risks.create(seed.hms, _risk(likelihood=2, consequence=2))
    risk = await risks.update(
        seed.hms, risk.id, RiskUpdate(likelihood=4, expected_revision=1)
    )
    assert risk.likelihood == 4
    assert risk.consequence == 2
    assert risk.revision == 2
    assert RiskOut.from_risk(risk).inherent.level == RiskLevel.MEDIUM


async def test_update_rejects_invalid_scale(risks, seed):
    risk = await risks.create(seed.hms, _risk())
    with pytest.raises(InvalidRiskInput):
        await risks.update(seed.hms, risk.id, RiskUpdate(consequence=6))
    with pytest.raises(InvalidRiskInput):
        await risks.update(seed.hms, risk.id, RiskUpdate(residual_consequence=0))


async def test_update_clears_residual(risks, seed):
    risk = await risks.create(
        seed.hms, _risk(residual_likelihood=1, residual_consequence=2)
    )
    risk = await risks.update(seed.hms, risk.id, RiskUpdate(residual_likelihood=None))
    assert risk.residual_likelihood is None
    assert RiskOut.from_risk(risk).residual is None


async def test_rejected_update_leaves_risk_untouched(risks, seed, db_session):
    risk = await risks.create(seed.hms, _risk())
    with pytest.raises(InvalidRiskInput):
        await risks.update(
            seed.hms,
            risk.id,
            RiskUpdate(
                title="Fall from roof edge",
                likelihood=5,
                residual_likelihood=2,
                residual_consequence=9,
            ),
        )
    stored = await db_session.get(Risk, risk.id)
    assert stored.title == "Fall from scaffolding"
    assert (stored.likelihood, stored.consequence) == (3, 4)
    assert stored.residual_likelihood is None
    assert stored.residual_consequence is None
    assert stored.revision == 1


async def test_owner_cannot_be_cleared(risks, seed):
    risk = await risks.create(seed.hms, _risk(owner_id=seed.leder.user_id))
    with pytest.raises(ValidationError) as exc_info:
        await risks.update(seed.hms, risk.id, RiskUpdate(owner_id=None))
    assert exc_info.value.code == ErrorCode.VALIDATION_ERROR
    assert exc_info.value.detail == {"field": "owner_id"}
    assert risk.owner_id == seed.leder.user_id


async def test_stale_revision_rejected(risks, seed):
    risk = await risks.create(seed.hms, _risk())
    await risks.update(seed.hms, risk.id, RiskUpdate(status=RiskStatus.MITIGATING))
    with pytest.raises(RevisionConflictError):
        await risks.update(seed.hms, risk.id, RiskUpdate(trend="INCREASING", expected_revision=1))


async def test_frequency_change_recomputes_next_review(risks, seed):
    risk = await risks.create(seed.hms, _risk())
    risk = await risks.update(
        seed.hms, risk.id, RiskUpdate(review_frequency=ReviewFrequency.QUARTERLY)
    )
    assert risk.next_review_date == date(2025, 4, 30)


async def test_explicit_date_beats_frequency_change(risks, seed):
    risk = await risks.create(seed.hms, _risk())
    risk = await risks.update(
        seed.hms,
        risk.id,
        RiskUpdate(review_frequency=ReviewFrequency.WEEKLY, next_review_date=date(2025, 12, 24)),
    )
    assert risk.next_review_date == date(2025, 12, 24)
    assert risk.review_frequency == ReviewFrequency.WEEKLY


async def test_permissive_policy_allows_any_status(risks, seed):
    risk = await risks.create(seed.hms, _risk())
    risk = await risks.update(seed.hms, risk.id, RiskUpdate(status=RiskStatus.CLOSED))
    assert risk.status == RiskStatus.CLOSED


async def test_sequential_policy_blocks_skips(db_session, audit, seed):
    lifecycle = RiskRecordLifecycle(db_session, audit, policy=SequentialStatusPolicy())
    risk = await lifecycle.create(seed.hms, _risk())
    with pytest.raises(StatusTransitionError):
        await lifecycle.update(seed.hms, risk.id, RiskUpdate(status=RiskStatus.CLOSED))
    risk = await lifecycle.update(seed.hms, risk.id, RiskUpdate(status=RiskStatus.MITIGATING))
    assert risk.status == RiskStatus.MITIGATING


# ─── delete & tenancy ─────────────────────────────────────────────────────────

async def test_hms_cannot_delete(risks, seed):
    risk = await risks.create(seed.hms, _risk())
    with pytest.raises(ForbiddenError):
        await risks.delete(seed.hms, risk.id)


async def test_delete(risks, seed, db_session):
    risk = await risks.create(seed.hms, _risk())
    await risks.delete(seed.leder, risk.id)
    assert await db_session.scalar(select(Risk.id).where(Risk.id == risk.id)) is None


async def test_other_tenant_cannot_see_risk(risks, seed):
    risk = await risks.create(seed.hms, _risk())
    with pytest.raises(NotFoundError) as exc_info:
        await risks.get_risk(seed.outsider, risk.id)
    assert exc_info.value.code == ErrorCode.RISK_NOT_FOUND
    assert await risks.list_risks(seed.outsider) == []


# ─── links ────────────────────────────────────────────────────────────────────

async def test_link_and_unlink_goal(risks, seed, db_session):
    goal = Goal(tenant_id=seed.tenant_id, title="Zero lost-time injuries")
    db_session.add(goal)
    await db_session.flush()

    risk = await risks.create(seed.hms, _risk())
    risk = await risks.link_goal(seed.hms, risk.id, goal.id)
    assert risk.goal_id == goal.id
    risk = await risks.unlink_goal(seed.hms, risk.id)
    assert risk.goal_id is None
    assert risk.revision == 3


async def test_goal_from_other_tenant_rejected(risks, seed, db_session):
    goal = Goal(tenant_id=seed.other_tenant_id, title="Someone else's goal")
    db_session.add(goal)
    await db_session.flush()

    risk = await risks.create(seed.hms, _risk())
    with pytest.raises(NotFoundError) as exc_info:
        await risks.link_goal(seed.hms, risk.id, goal.id)
    assert exc_info.value.code == ErrorCode.RISK_LINK_TARGET_NOT_FOUND


async def test_global_inspection_template_can_be_linked(risks, seed, db_session):
    template = InspectionTemplate(tenant_id=None, name="Vernerunde")
    db_session.add(template)
    await db_session.flush()

    risk = await risks.create(seed.hms, _risk())
    risk = await risks.link_inspection_template(seed.hms, risk.id, template.id)
    assert risk.inspection_template_id == template.id
    risk = await risks.unlink_inspection_template(seed.hms, risk.id)
    assert risk.inspection_template_id is None


# ─── stats & matrix ───────────────────────────────────────────────────────────

async def test_stats(risks, seed):
    await risks.create(seed.hms, _risk("Critical one", likelihood=5, consequence=5))
    await risks.create(
        seed.hms,
        _risk("Low one", likelihood=1, consequence=2, residual_likelihood=1, residual_consequence=1),
    )
    stats = await risks.risk_stats(seed.ansatt)
    assert stats["total"] == 2
    assert stats["by_level"][RiskLevel.CRITICAL] == 1
    assert stats["by_level"][RiskLevel.LOW] == 1
    assert stats["by_level"][RiskLevel.HIGH] == 0
    assert stats["by_status"][RiskStatus.OPEN] == 2
    assert stats["residual_assessed"] == 1


async def test_list_is_ordered_by_score(risks, seed):
    await risks.create(seed.hms, _risk("Low one", likelihood=1, consequence=1))
    await risks.create(seed.hms, _risk("High one", likelihood=4, consequence=4))
    titles = [r.title for r in await risks.list_risks(seed.hms)]
    assert titles == ["High one", "Low one"]


async def test_matrix_counts(risks, seed):
    await risks.create(
        seed.hms, _risk(likelihood=5, consequence=5, residual_likelihood=2, residual_consequence=3)
    )
    inherent = await risks.risk_matrix(seed.hms)
    residual = await risks.risk_matrix(seed.hms, residual=True)

    assert len(inherent) == 25
    cell = {(c["likelihood"], c["consequence"]): c for c in inherent}
    assert cell[(5, 5)]["count"] == 1
    assert cell[(5, 5)]["level"] == RiskLevel.CRITICAL
    assert sum(c["count"] for c in inherent) == 1
    assert {(c["likelihood"], c["consequence"]) for c in residual if c["count"]} == {(2, 3)}


# ─── assessment batches ───────────────────────────────────────────────────────

async def _batch(assessments, ctx):
    return await assessments.create(
        ctx, AssessmentCreate(title="Årlig risikovurdering", assessment_year=2025)
    )


async def test_add_item_maps_level_to_matrix(assessments, seed):
    batch = await _batch(assessments, seed.hms)
    risk = await assessments.add_item(
        seed.hms,
        batch.id,
        AssessmentItemCreate(title="Chemical spill", level=RiskLevel.HIGH),
    )
    assert (risk.likelihood, risk.consequence) == (3, 4)
    assert RiskOut.from_risk(risk).inherent.level == RiskLevel.HIGH
    assert risk.assessment_id == batch.id
    assert len(risk.context) >= 10


async def test_update_item_level(assessments, seed):
    batch = await _batch(assessments, seed.hms)
    risk = await assessments.add_item(
        seed.hms, batch.id, AssessmentItemCreate(title="Noise exposure", level=RiskLevel.LOW)
    )
    risk = await assessments.update_item_level(seed.hms, batch.id, risk.id, RiskLevel.CRITICAL)
    assert (risk.likelihood, risk.consequence) == (5, 5)


async def test_assessment_item_matrix_is_read_only(assessments, risks, seed):
    batch = await _batch(assessments, seed.hms)
    risk = await assessments.add_item(
        seed.hms, batch.id, AssessmentItemCreate(title="Noise exposure", level=RiskLevel.MEDIUM)
    )
    with pytest.raises(ValidationError) as exc_info:
        await risks.update(seed.hms, risk.id, RiskUpdate(likelihood=1))
    assert exc_info.value.code == ErrorCode.RISK_MATRIX_READ_ONLY

    risk = await risks.update(seed.hms, risk.id, RiskUpdate(existing_controls="Ear protection"))
    assert risk.existing_controls == "Ear protection"


async def test_list_and_get_assessment(assessments, seed):
    batch = await _batch(assessments, seed.hms)
    for title, level in (("Noise exposure", RiskLevel.LOW), ("Chemical spill", RiskLevel.HIGH)):
        await assessments.add_item(
            seed.hms, batch.id, AssessmentItemCreate(title=title, level=level)
        )

    rows = await assessments.list_assessments(seed.ansatt)
    assert [(a.id, count) for a, count in rows] == [(batch.id, 2)]
    _, items = await assessments.get(seed.ansatt, batch.id)
    assert [r.title for r in items] == ["Chemical spill", "Noise exposure"]


async def test_deleting_batch_detaches_risks(assessments, seed, db_session):
    batch = await _batch(assessments, seed.hms)
    risk = await assessments.add_item(
        seed.hms, batch.id, AssessmentItemCreate(title="Chemical spill", level=RiskLevel.HIGH)
    )
    await assessments.delete(seed.leder, batch.id)

    assert await db_session.scalar(
        select(RiskAssessment.id).where(RiskAssessment.id == batch.id)
    ) is None
    assert await db_session.scalar(
        select(Risk.assessment_id).where(Risk.id == risk.id)
    ) is None
    assert await db_session.scalar(select(Risk.id).where(Risk.id == risk.id)) == risk.id


async def test_other_tenant_cannot_add_to_batch(assessments, seed):
    batch = await _batch(assessments, seed.hms)
    with pytest.raises(NotFoundError) as exc_info:
        await assessments.add_item(
            seed.outsider, batch.id, AssessmentItemCreate(title="Intruder", level=RiskLevel.LOW)
        )
    assert exc_info.value.code == ErrorCode.RISK_ASSESSMENT_NOT_FOUND


# ─── audit trail ──────────────────────────────────────────────────────────────

async def test_every_mutation_is_chained(risks, seed, db_session):
    risk = await risks.create(seed.hms, _risk())
    await risks.update(seed.hms, risk.id, RiskUpdate(status=RiskStatus.MITIGATING))
    await risks.delete(seed.admin, risk.id)
    assert await AuditLogger.verify_chain(db_session, seed.tenant_id) == (True, None)
