"""Risk assessment batch endpoints."""

from __future__ import annotations

from fastapi import APIRouter

from hmsnova.api.deps import Assessments, AuthCtx
from hmsnova.schemas.risk import (
    AssessmentCreate,
    AssessmentDetail,
    AssessmentItemCreate,
    AssessmentOut,
    ItemLevelUpdate,
    RiskOut,
)

router = APIRouter(prefix="/risk-assessments", tags=["risk-assessments"])


@router.get("", response_model=list[AssessmentOut], summary="List assessment batches")
async def list_assessments(ctx: AuthCtx, assessments: Assessments) -> list[AssessmentOut]:
    rows = await assessments.list_assessments(ctx)
    return [
        AssessmentOut.model_validate(a).model_copy(update={"risk_count": count})
        for a, count in rows
    ]


@router.post("", response_model=AssessmentOut, status_code=201, summary="Create a batch")
async def create_assessment(
    body: AssessmentCreate, ctx: AuthCtx, assessments: Assessments
) -> AssessmentOut:
    return AssessmentOut.model_validate(await assessments.create(ctx, body))


@router.get("/{assessment_id}", response_model=AssessmentDetail, summary="Get a batch")
async def get_assessment(
    assessment_id: str, ctx: AuthCtx, assessments: Assessments
) -> AssessmentDetail:
    assessment, risks = await assessments.get(ctx, assessment_id)
    return AssessmentDetail(
        id=assessment.id,
        title=assessment.title,
        assessment_year=assessment.assessment_year,
        created_by=assessment.created_by,
        created_at=assessment.created_at,
        risk_count=len(risks),
        risks=[RiskOut.from_risk(r) for r in risks],
    )


@router.delete("/{assessment_id}", status_code=204, summary="Delete a batch")
async def delete_assessment(assessment_id: str, ctx: AuthCtx, assessments: Assessments) -> None:
    """Risks in the batch are kept and detached."""
    await assessments.delete(ctx, assessment_id)


@router.post(
    "/{assessment_id}/items",
    response_model=RiskOut,
    status_code=201,
    summary="Add a risk to the batch by level",
)
async def add_item(
    assessment_id: str, body: AssessmentItemCreate, ctx: AuthCtx, assessments: Assessments
) -> RiskOut:
    return RiskOut.from_risk(await assessments.add_item(ctx, assessment_id, body))


@router.patch(
    "/{assessment_id}/items/{risk_id}",
    response_model=RiskOut,
    summary="Change an item's level",
)
async def update_item_level(
    assessment_id: str,
    risk_id: str,
    body: ItemLevelUpdate,
    ctx: AuthCtx,
    assessments: Assessments,
) -> RiskOut:
    return RiskOut.from_risk(
        await assessments.update_item_level(ctx, assessment_id, risk_id, body.level)
    )
