"""
Review date arithmetic for governed records.

Month steps use calendar months via dateutil's relativedelta. When the
target month is shorter, the day is clamped to its last day
(2025-01-31 + 1 month = 2025-02-28).
"""

from __future__ import annotations

from datetime import date, timedelta

from dateutil.relativedelta import relativedelta

from hmsnova.core.errors import InvalidReviewInterval
from hmsnova.db.models.risk import ReviewFrequency

DEFAULT_FREQUENCY_STEP = relativedelta(months=12)

_FREQUENCY_STEPS: dict[ReviewFrequency, timedelta | relativedelta] = {
    ReviewFrequency.WEEKLY: timedelta(days=7),
    ReviewFrequency.MONTHLY: relativedelta(months=1),
    ReviewFrequency.QUARTERLY: relativedelta(months=3),
    ReviewFrequency.ANNUAL: relativedelta(months=12),
    ReviewFrequency.BIENNIAL: relativedelta(months=24),
}


def next_review_date(effective_from: date, interval_months: int) -> date:
    """
    Return effective_from advanced by interval_months calendar months.

    Raises:
        InvalidReviewInterval: interval is not a positive integer.
    """
    if isinstance(interval_months, bool) or not isinstance(interval_months, int):
        raise InvalidReviewInterval(interval_months)
    if interval_months <= 0:
        raise InvalidReviewInterval(interval_months)
    return effective_from + relativedelta(months=interval_months)


def next_review_for_frequency(frequency: ReviewFrequency | str | None, now: date) -> date:
    """Map a named review frequency to a concrete date counted from ``now``."""
    try:
        step = _FREQUENCY_STEPS.get(ReviewFrequency(frequency), DEFAULT_FREQUENCY_STEP)
    except ValueError:
        step = DEFAULT_FREQUENCY_STEP
    return now + step
