from __future__ import annotations

from datetime import datetime

import pytest

from fingerprint_attendance.database import EnrollmentService, PendingRegistration, Student
from fingerprint_attendance.exceptions import ConflictError, NotFoundError


def _open_rows(db, fingerprint_id):
    with db.get_session() as session:
        return session.query(PendingRegistration).filter_by(
            fingerprint_id=fingerprint_id, is_completed=False
        ).count()


def test_detect_is_idempotent(db):
    service = EnrollmentService(db)

    assert service.detect("FP1") == "FP1"
    assert service.detect("FP1") == "FP1"

    assert _open_rows(db, "FP1") == 1


def test_detect_race_is_absorbed_by_unique_index(db, monkeypatch):
    service = EnrollmentService(db)
    service.detect("FP1")

    # Pretend the lookup ran before the other scan committed
    monkeypatch.setattr(EnrollmentService, "_find_open", staticmethod(lambda session, fingerprint_id: None))

    assert service.detect("FP1") == "FP1"
    assert _open_rows(db, "FP1") == 1


def test_poll_returns_none_when_nothing_pending(db):
    assert EnrollmentService(db).poll_next() is None


def test_poll_returns_oldest_pending_first(db):
    service = EnrollmentService(db)
    service.detect("FP2", now=datetime(2026, 10, 14, 9, 0))
    service.detect("FP1", now=datetime(2026, 10, 14, 9, 5))

    assert service.poll_next() == "FP2"
    # Polling does not consume
    assert service.poll_next() == "FP2"


def test_poll_breaks_timestamp_ties_by_insertion_order(db):
    service = EnrollmentService(db)
    same = datetime(2026, 10, 14, 9, 0)
    service.detect("FPB", now=same)
    service.detect("FPA", now=same)

    assert service.poll_next() == "FPB"


def test_complete_retires_pending_and_poll_moves_on(db):
    service = EnrollmentService(db)
    service.detect("FP1", now=datetime(2026, 10, 14, 9, 0))
    service.detect("FP2", now=datetime(2026, 10, 14, 9, 1))

    service.complete("FP1", "Ada", "M1", "/uploads/students/ada.png")
    assert service.poll_next() == "FP2"

    service.complete("FP2", "Bola", "M2")
    assert service.poll_next() is None


def test_complete_creates_student_and_keeps_history(db):
    service = EnrollmentService(db)
    service.detect("FP1")

    student = service.complete("FP1", "Ada", "M1", "/uploads/students/ada.png")

    assert student["fingerprint_id"] == "FP1"
    assert student["matric"] == "M1"
    assert student["image"] == "/uploads/students/ada.png"

    with db.get_session() as session:
        pending = session.query(PendingRegistration).filter_by(fingerprint_id="FP1").one()
        assert pending.is_completed is True
        assert pending.name == "Ada"
        assert pending.matric == "M1"
        assert session.query(Student).count() == 1


def test_complete_without_pending_is_not_found(db):
    with pytest.raises(NotFoundError):
        EnrollmentService(db).complete("FP404", "Ada", "M1")


def test_complete_twice_is_not_found(db):
    service = EnrollmentService(db)
    service.detect("FP1")
    service.complete("FP1", "Ada", "M1")

    with pytest.raises(NotFoundError):
        service.complete("FP1", "Ada", "M1")


def test_duplicate_matric_with_new_fingerprint_conflicts(db, enroll):
    enroll("FP1", "M1")
    service = EnrollmentService(db)
    service.detect("FP2")

    with pytest.raises(ConflictError) as exc:
        service.complete("FP2", "Other", "M1")

    assert exc.value.field == "matric"
    # The registration stays open so the operator can fix the form
    assert service.poll_next() == "FP2"


def test_duplicate_fingerprint_with_new_matric_conflicts(db, enroll):
    enroll("FP1", "M1")
    service = EnrollmentService(db)
    # Completed history does not block a fresh pending row
    service.detect("FP1")

    with pytest.raises(ConflictError) as exc:
        service.complete("FP1", "Other", "M2")

    assert exc.value.field == "fingerprint_id"


def test_pending_history_lists_open_and_completed(db, enroll):
    enroll("FP1", "M1")
    EnrollmentService(db).detect("FP2")

    history = EnrollmentService(db).get_pending_history()

    assert {row["fingerprint_id"]: row["is_completed"] for row in history} == {"FP1": True, "FP2": False}


@pytest.fixture
def late_unique_check(monkeypatch):
    """Skip the first uniqueness check, as if a racing completion committed right after it."""
    real_check = EnrollmentService._check_unique
    calls = []

    def check(self, session, fingerprint_id, matric):
        calls.append(fingerprint_id)
        if len(calls) > 1:
            real_check(self, session, fingerprint_id, matric)

    monkeypatch.setattr(EnrollmentService, "_check_unique", check)
    return calls


def test_racing_duplicate_matric_names_matric(db, enroll, late_unique_check):
    enroll("FP1", "M1")
    service = EnrollmentService(db)
    service.detect("FP2")
    late_unique_check.clear()

    with pytest.raises(ConflictError) as exc:
        service.complete("FP2", "Other", "M1")

    assert exc.value.field == "matric"
    assert len(late_unique_check) == 2
    assert service.poll_next() == "FP2"
    assert _open_rows(db, "FP2") == 1


def test_racing_duplicate_fingerprint_names_fingerprint(db, enroll, late_unique_check):
    enroll("FP1", "M1")
    service = EnrollmentService(db)
    service.detect("FP1")
    late_unique_check.clear()

    with pytest.raises(ConflictError) as exc:
        service.complete("FP1", "Other", "M2")

    assert exc.value.field == "fingerprint_id"
    assert _open_rows(db, "FP1") == 1
    with db.get_session() as session:
        assert session.query(Student).count() == 1
