from __future__ import annotations

from datetime import datetime

import pytest

from fingerprint_attendance.database import DatabaseManager, EnrollmentService


@pytest.fixture
def db(tmp_path):
    manager = DatabaseManager(f"sqlite:///{tmp_path / 'attendance.db'}", demo_mode=False)
    manager.initialize()
    yield manager
    manager.close()


@pytest.fixture
def fixed_now():
    # Wednesday: the 30 days ending here contain 22 weekdays
    return datetime(2026, 10, 14, 8, 30, 0)


@pytest.fixture
def enroll(db):
    """Run the scan -> complete handshake for a student."""
    service = EnrollmentService(db)

    def _enroll(fingerprint_id: str, matric: str, name: str = "Test Student", image=None) -> dict:
        service.detect(fingerprint_id)
        return service.complete(fingerprint_id, name, matric, image)

    return _enroll
