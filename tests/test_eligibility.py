from datetime import date

from fingerprint_attendance.eligibility import EligibilityEngine, count_weekdays, round_half_up
from fingerprint_attendance.policy import AttendancePolicy

WEDNESDAY = date(2026, 10, 14)
SATURDAY = date(2026, 10, 17)


def test_weekdays_in_trailing_window():
    assert count_weekdays(30, WEDNESDAY) == 22
    assert count_weekdays(30, SATURDAY) == 21
    assert count_weekdays(7, SATURDAY) == 5
    assert count_weekdays(1, SATURDAY) == 0


def test_calendar_policy_uses_weekday_denominator():
    engine = EligibilityEngine(AttendancePolicy(demo_mode=False))

    result = engine.compute(7, WEDNESDAY)

    assert result.possible_days == 22
    assert result.percentage == 32
    assert result.is_eligible is False


def test_calendar_policy_caps_at_100():
    result = EligibilityEngine(AttendancePolicy()).compute(40, WEDNESDAY)

    assert result.percentage == 100
    assert result.is_eligible is True


def test_demo_policy_uses_fixed_window():
    engine = EligibilityEngine(AttendancePolicy(demo_mode=True))

    assert engine.compute(10, WEDNESDAY).percentage == 100
    assert engine.compute(10, WEDNESDAY).is_eligible is True
    assert engine.compute(15, WEDNESDAY).percentage == 100
    assert engine.compute(6, WEDNESDAY).is_eligible is False
    assert engine.compute(7, WEDNESDAY).is_eligible is True
    assert engine.compute(0, WEDNESDAY).percentage == 0


def test_threshold_and_windows_are_overridable():
    policy = AttendancePolicy(demo_mode=True, demo_window_periods=4, eligibility_threshold=50)
    engine = EligibilityEngine(policy)

    assert engine.compute(2, WEDNESDAY).percentage == 50
    assert engine.compute(2, WEDNESDAY).is_eligible is True
    assert engine.compute(1, WEDNESDAY).is_eligible is False


def test_verdict_uses_unrounded_percentage():
    # 14 / 22 = 63.6% reports as 64 but stays below a 64 threshold
    engine = EligibilityEngine(AttendancePolicy(eligibility_threshold=64))

    result = engine.compute(14, WEDNESDAY)

    assert result.percentage == 64
    assert result.is_eligible is False


def test_empty_window_gives_zero():
    engine = EligibilityEngine(AttendancePolicy(calendar_window_days=0))

    result = engine.compute(5, WEDNESDAY)

    assert result.possible_days == 0
    assert result.percentage == 0
    assert result.is_eligible is False


def test_count_eligible():
    engine = EligibilityEngine(AttendancePolicy(demo_mode=True))

    assert engine.count_eligible([10, 7, 6, 0, 12], WEDNESDAY) == 3


def test_round_half_up():
    assert round_half_up(32.5) == 33
    assert round_half_up(31.818) == 32
    assert round_half_up(0.0) == 0
