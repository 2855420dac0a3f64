"""
Timing policy shared by the attendance recorder and the eligibility engine.

Two mutually exclusive modes:
- calendar-day: sign-ins on the same date merge into one period, and the
  eligibility denominator is the weekday count of a trailing window
- accelerated demo: every sign-in is a new period, and the denominator is a
  fixed number of periods
"""

import logging
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)

DEFAULT_DEMO_WINDOW_PERIODS = 10
DEFAULT_CALENDAR_WINDOW_DAYS = 30
DEFAULT_ELIGIBILITY_THRESHOLD = 65.0


@dataclass(frozen=True)
class AttendancePolicy:
    demo_mode: bool = False
    demo_window_periods: int = DEFAULT_DEMO_WINDOW_PERIODS
    calendar_window_days: int = DEFAULT_CALENDAR_WINDOW_DAYS
    eligibility_threshold: float = DEFAULT_ELIGIBILITY_THRESHOLD

    @property
    def mode(self) -> str:
        return "demo" if self.demo_mode else "calendar"


PolicyProvider = Callable[[], AttendancePolicy]


def load_policy(db) -> AttendancePolicy:
    """Read the current policy from the system_config table."""
    policy = AttendancePolicy(
        demo_mode=db.get_config_bool("demo_mode", False),
        demo_window_periods=db.get_config_int("demo_window_periods", DEFAULT_DEMO_WINDOW_PERIODS),
        calendar_window_days=db.get_config_int("calendar_window_days", DEFAULT_CALENDAR_WINDOW_DAYS),
        eligibility_threshold=db.get_config_float("eligibility_threshold", DEFAULT_ELIGIBILITY_THRESHOLD),
    )
    logger.debug(f"Policy loaded: {policy}")
    return policy


def static_policy(policy: AttendancePolicy) -> PolicyProvider:
    """Wrap a fixed policy as a provider."""
    return lambda: policy


def database_policy(db) -> PolicyProvider:
    """Provider that re-reads system_config on every call."""
    return lambda: load_policy(db)
