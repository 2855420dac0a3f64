"""
Eligibility Engine
==================
Turns a student's attendance period count into a percentage and a verdict.

Pure functions of (policy, today, period count): no database access, no clock
reads. Callers pass the date they want to evaluate against.
"""

import math
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable

from .policy import AttendancePolicy


@dataclass(frozen=True)
class EligibilityResult:
    percentage: int          # rounded for reporting
    raw_percentage: float
    is_eligible: bool
    possible_days: int
    attended: int

    def to_dict(self) -> dict:
        return {
            "percentage_attendance": self.percentage,
            "is_eligible": self.is_eligible,
            "possible_days": self.possible_days,
            "total_attendances": self.attended,
        }


def count_weekdays(window_days: int, today: date) -> int:
    """Number of Monday-Friday dates among the `window_days` days ending today."""
    return sum(
        1 for offset in range(window_days)
        if (today - timedelta(days=offset)).weekday() < 5
    )


def round_half_up(value: float) -> int:
    # round() would use banker's rounding: 32.5 -> 32
    return int(math.floor(value + 0.5))


class EligibilityEngine:
    """
    Usage:
        engine = EligibilityEngine(AttendancePolicy())
        result = engine.compute(periods=7, today=date(2026, 10, 14))
    """

    def __init__(self, policy: AttendancePolicy):
        self.policy = policy

    def possible_days(self, today: date) -> int:
        if self.policy.demo_mode:
            return self.policy.demo_window_periods
        return count_weekdays(self.policy.calendar_window_days, today)

    def compute(self, periods: int, today: date) -> EligibilityResult:
        possible = self.possible_days(today)
        raw = min(100.0, periods / possible * 100) if possible > 0 else 0.0
        return EligibilityResult(
            percentage=round_half_up(raw),
            raw_percentage=raw,
            is_eligible=raw >= self.policy.eligibility_threshold,
            possible_days=possible,
            attended=periods,
        )

    def count_eligible(self, period_counts: Iterable[int], today: date) -> int:
        """How many of the given students meet the threshold."""
        return sum(1 for periods in period_counts if self.compute(periods, today).is_eligible)
