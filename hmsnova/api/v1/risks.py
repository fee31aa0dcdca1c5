"""Risk register API endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Query

from hmsnova.api.deps import AuthCtx, Risks
from hmsnova.db.models.risk import RiskCategory, RiskStatus
from hmsnova.schemas.risk import (
    LinkRequest,
    MatrixCell,
    RiskCreate,
    RiskListResponse,
    RiskMatrix,
    RiskOut,
    RiskScoreOut,
    RiskStats,
    RiskUpdate,
    ScoreRequest,
)
from hmsnova.services.scoring.engine import score_risk

router = APIRouter(prefix="/risks", tags=["risks"])


@router.get("", response_model=RiskListResponse, summary="List risks")
async def list_risks(
    ctx: AuthCtx,
    risks: Risks,
    status: Annotated[RiskStatus | None, Query()] = None,
    category: Annotated[RiskCategory | None, Query()] = None,
) -> RiskListResponse:
    items = await risks.list_risks(ctx, status=status, category=category)
    return RiskListResponse(items=[RiskOut.from_risk(r) for r in items], total=len(items))


@router.post("", response_model=RiskOut, status_code=201, summary="Register a risk")
async def create_risk(body: RiskCreate, ctx: AuthCtx, risks: Risks) -> RiskOut:
    return RiskOut.from_risk(await risks.create(ctx, body))


@router.get("/stats", response_model=RiskStats, summary="Risk counts per level and status")
async def risk_stats(ctx: AuthCtx, risks: Risks) -> RiskStats:
    return RiskStats.model_validate(await risks.risk_stats(ctx))


@router.get("/matrix", response_model=RiskMatrix, summary="5×5 risk matrix with counts")
async def risk_matrix(
    ctx: AuthCtx,
    risks: Risks,
    residual: Annotated[bool, Query(description="Plot residual instead of inherent risk")] = False,
) -> RiskMatrix:
    cells = await risks.risk_matrix(ctx, residual=residual)
    return RiskMatrix(residual=residual, cells=[MatrixCell.model_validate(c) for c in cells])


@router.post("/score", response_model=RiskScoreOut, summary="Score a likelihood/consequence pair")
async def preview_score(body: ScoreRequest, ctx: AuthCtx) -> RiskScoreOut:
    """Pure preview; nothing is stored."""
    return RiskScoreOut.from_score(score_risk(body.likelihood, body.consequence))


@router.get("/{risk_id}", response_model=RiskOut, summary="Get a risk")
async def get_risk(risk_id: str, ctx: AuthCtx, risks: Risks) -> RiskOut:
    return RiskOut.from_risk(await risks.get_risk(ctx, risk_id))


@router.patch("/{risk_id}", response_model=RiskOut, summary="Update a risk")
async def update_risk(risk_id: str, body: RiskUpdate, ctx: AuthCtx, risks: Risks) -> RiskOut:
    return RiskOut.from_risk(await risks.update(ctx, risk_id, body))


@router.delete("/{risk_id}", status_code=204, summary="Delete a risk")
async def delete_risk(risk_id: str, ctx: AuthCtx, risks: Risks) -> None:
    await risks.delete(ctx, risk_id)


# ── Links ─────────────────────────────────────────────────────────────── #


@router.put("/{risk_id}/goal", response_model=RiskOut, summary="Link a goal")
async def link_goal(risk_id: str, body: LinkRequest, ctx: AuthCtx, risks: Risks) -> RiskOut:
    return RiskOut.from_risk(await risks.link_goal(ctx, risk_id, body.target_id))


@router.delete("/{risk_id}/goal", response_model=RiskOut, summary="Unlink the goal")
async def unlink_goal(risk_id: str, ctx: AuthCtx, risks: Risks) -> RiskOut:
    return RiskOut.from_risk(await risks.unlink_goal(ctx, risk_id))


@router.put(
    "/{risk_id}/inspection-template",
    response_model=RiskOut,
    summary="Link an inspection template",
)
async def link_inspection_template(
    risk_id: str, body: LinkRequest, ctx: AuthCtx, risks: Risks
) -> RiskOut:
    return RiskOut.from_risk(
        await risks.link_inspection_template(ctx, risk_id, body.target_id)
    )


@router.delete(
    "/{risk_id}/inspection-template",
    response_model=RiskOut,
    summary="Unlink the inspection template",
)
async def unlink_inspection_template(risk_id: str, ctx: AuthCtx, risks: Risks) -> RiskOut:
    return RiskOut.from_risk(await risks.unlink_inspection_template(ctx, risk_id))
