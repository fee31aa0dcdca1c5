"""
Risk scoring on the 5×5 likelihood × consequence matrix.

The same function scores inherent and residual risk. Banding:

    score  1–4   LOW
    score  5–9   MEDIUM
    score 10–15  HIGH
    score 16–25  CRITICAL
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from hmsnova.core.errors import InvalidRiskInput

SCALE_MIN = 1
SCALE_MAX = 5


class RiskLevel(StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


# Upper score bound (inclusive) for each level, ascending.
_BANDS: tuple[tuple[int, RiskLevel], ...] = (
    (4, RiskLevel.LOW),
    (9, RiskLevel.MEDIUM),
    (15, RiskLevel.HIGH),
    (25, RiskLevel.CRITICAL),
)

# (color_hint, bg_hint)
_HINTS: dict[RiskLevel, tuple[str, str]] = {
    RiskLevel.LOW: ("green", "bg-green-100"),
    RiskLevel.MEDIUM: ("yellow", "bg-yellow-100"),
    RiskLevel.HIGH: ("orange", "bg-orange-100"),
    RiskLevel.CRITICAL: ("red", "bg-red-100"),
}

# Fixed matrix position used when a risk is added to an assessment by level only.
LEVEL_TO_MATRIX: dict[RiskLevel, tuple[int, int]] = {
    RiskLevel.LOW: (1, 2),
    RiskLevel.MEDIUM: (2, 4),
    RiskLevel.HIGH: (3, 4),
    RiskLevel.CRITICAL: (5, 5),
}


@dataclass(frozen=True, slots=True)
class RiskScore:
    score: int
    level: RiskLevel
    color_hint: str
    bg_hint: str


def validate_scale(field: str, value: object) -> int:
    # bool is an int subclass; True must not pass as 1
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidRiskInput(field, value)
    if not SCALE_MIN <= value <= SCALE_MAX:
        raise InvalidRiskInput(field, value)
    return value


def level_for_score(score: int) -> RiskLevel:
    for upper, level in _BANDS:
        if score <= upper:
            return level
    raise InvalidRiskInput("score", score)


def score_risk(likelihood: int, consequence: int) -> RiskScore:
    """
    Score a likelihood/consequence pair.

    Raises:
        InvalidRiskInput: either value is not an integer in 1..5.
    """
    score = validate_scale("likelihood", likelihood) * validate_scale("consequence", consequence)
    level = level_for_score(score)
    color_hint, bg_hint = _HINTS[level]
    return RiskScore(score=score, level=level, color_hint=color_hint, bg_hint=bg_hint)


def score_optional(likelihood: int | None, consequence: int | None) -> RiskScore | None:
    """Residual risk is only scored once both values are set."""
    if likelihood is None or consequence is None:
        return None
    return score_risk(likelihood, consequence)
