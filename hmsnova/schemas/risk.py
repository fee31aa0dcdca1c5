"""Risk register and risk assessment Pydantic schemas."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from hmsnova.db.models.risk import (
    ResponseStrategy,
    ReviewFrequency,
    Risk,
    RiskCategory,
    RiskStatus,
    RiskTrend,
)
from hmsnova.services.scoring.engine import RiskLevel, RiskScore, score_optional, score_risk

_OPTIONAL_TEXT = (
    "description",
    "existing_controls",
    "risk_statement",
    "additional_notes",
    "location",
    "area",
    "linked_process",
    "risk_appetite",
    "risk_tolerance",
)


def _trim(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip() or None
    return value


class _RiskTextFields(BaseModel):
    description: str | None = Field(default=None, max_length=2000)
    existing_controls: str | None = Field(default=None, max_length=2000)
    risk_statement: str | None = Field(default=None, max_length=500)
    additional_notes: str | None = Field(default=None, max_length=2000)
    location: str | None = Field(default=None, max_length=120)
    area: str | None = Field(default=None, max_length=120)
    linked_process: str | None = Field(default=None, max_length=200)
    risk_appetite: str | None = Field(default=None, max_length=500)
    risk_tolerance: str | None = Field(default=None, max_length=500)

    @field_validator(*_OPTIONAL_TEXT, mode="before")
    @classmethod
    def blank_is_null(cls, v: Any) -> Any:
        return _trim(v)


# Likelihood / consequence are plain ints here; range checks happen in the
# scoring engine so that both entry points report the same RISK_001 error.


class RiskCreate(_RiskTextFields):
    title: str = Field(..., min_length=3, max_length=200)
    context: str = Field(..., min_length=10)
    likelihood: int
    consequence: int
    residual_likelihood: int | None = None
    residual_consequence: int | None = None
    owner_id: str | None = None
    status: RiskStatus = RiskStatus.OPEN
    category: RiskCategory = RiskCategory.OPERATIONAL
    review_frequency: ReviewFrequency = ReviewFrequency.ANNUAL
    response_strategy: ResponseStrategy = ResponseStrategy.REDUCE
    trend: RiskTrend = RiskTrend.STABLE
    next_review_date: date | None = None
    last_reviewed_at: date | None = None
    assessment_date: date | None = None
    goal_id: str | None = None
    inspection_template_id: str | None = None
    assessment_id: str | None = None

    @field_validator("title", "context", mode="before")
    @classmethod
    def strip_required(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v


class RiskUpdate(_RiskTextFields):
    """Partial update; only fields present in the request are applied."""

    title: str | None = Field(default=None, min_length=3, max_length=200)
    context: str | None = Field(default=None, min_length=10)
    likelihood: int | None = None
    consequence: int | None = None
    residual_likelihood: int | None = None
    residual_consequence: int | None = None
    owner_id: str | None = None
    status: RiskStatus | None = None
    category: RiskCategory | None = None
    review_frequency: ReviewFrequency | None = None
    response_strategy: ResponseStrategy | None = None
    trend: RiskTrend | None = None
    next_review_date: date | None = None
    last_reviewed_at: date | None = None
    assessment_date: date | None = None
    expected_revision: int | None = Field(default=None, ge=1)

    @field_validator("title", "context", mode="before")
    @classmethod
    def strip_required(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v


class LinkRequest(BaseModel):
    target_id: str = Field(..., min_length=1, max_length=36)


class ScoreRequest(BaseModel):
    likelihood: int
    consequence: int


class RiskScoreOut(BaseModel):
    score: int
    level: RiskLevel
    color_hint: str
    bg_hint: str

    @classmethod
    def from_score(cls, value: RiskScore) -> RiskScoreOut:
        return cls(
            score=value.score,
            level=value.level,
            color_hint=value.color_hint,
            bg_hint=value.bg_hint,
        )


class RiskOut(BaseModel):
    id: str
    tenant_id: str
    title: str
    context: str
    description: str | None
    existing_controls: str | None
    risk_statement: str | None
    additional_notes: str | None
    category: RiskCategory
    location: str | None
    area: str | None
    linked_process: str | None
    owner_id: str | None
    status: RiskStatus
    likelihood: int
    consequence: int
    residual_likelihood: int | None
    residual_consequence: int | None
    review_frequency: ReviewFrequency
    next_review_date: date | None
    last_reviewed_at: date | None
    assessment_date: date | None
    goal_id: str | None
    inspection_template_id: str | None
    assessment_id: str | None
    risk_appetite: str | None
    risk_tolerance: str | None
    response_strategy: ResponseStrategy
    trend: RiskTrend
    revision: int
    created_at: datetime
    updated_at: datetime
    inherent: RiskScoreOut
    residual: RiskScoreOut | None

    model_config = {"from_attributes": True}

    @classmethod
    def from_risk(cls, risk: Risk) -> RiskOut:
        """Scores are derived on every read; they are never stored."""
        residual = score_optional(risk.residual_likelihood, risk.residual_consequence)
        data = {name: getattr(risk, name) for name in cls.model_fields if hasattr(risk, name)}
        data["inherent"] = RiskScoreOut.from_score(score_risk(risk.likelihood, risk.consequence))
        data["residual"] = RiskScoreOut.from_score(residual) if residual else None
        return cls.model_validate(data)


class RiskListResponse(BaseModel):
    items: list[RiskOut]
    total: int


class RiskStats(BaseModel):
    total: int
    by_level: dict[RiskLevel, int]
    by_status: dict[RiskStatus, int]
    residual_assessed: int
    residual_by_level: dict[RiskLevel, int]


class MatrixCell(BaseModel):
    likelihood: int
    consequence: int
    score: int
    level: RiskLevel
    count: int


class RiskMatrix(BaseModel):
    residual: bool
    cells: list[MatrixCell]


# ── Risk assessments ──────────────────────────────────────────────────── #


class AssessmentCreate(BaseModel):
    title: str = Field(..., min_length=3, max_length=200)
    assessment_year: int = Field(..., ge=2000, le=2100)

    @field_validator("title", mode="before")
    @classmethod
    def strip_title(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v


class AssessmentItemCreate(BaseModel):
    title: str = Field(..., min_length=3, max_length=200)
    level: RiskLevel
    category: RiskCategory = RiskCategory.OPERATIONAL
    description: str | None = Field(default=None, max_length=2000)
    consequence_text: str | None = Field(default=None, max_length=500)
    owner_id: str | None = None
    assessment_date: date | None = None
    next_review_date: date | None = None

    @field_validator("title", mode="before")
    @classmethod
    def strip_title(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("description", "consequence_text", mode="before")
    @classmethod
    def blank_is_null(cls, v: Any) -> Any:
        return _trim(v)


class ItemLevelUpdate(BaseModel):
    level: RiskLevel


class AssessmentOut(BaseModel):
    id: str
    title: str
    assessment_year: int
    created_by: str | None
    created_at: datetime
    risk_count: int = 0

    model_config = {"from_attributes": True}


class AssessmentDetail(AssessmentOut):
    risks: list[RiskOut] = Field(default_factory=list)
