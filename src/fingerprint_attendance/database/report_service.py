"""
Reporting queries: eligibility, dashboard statistics and student lookups.
"""

import logging
from datetime import date
from typing import Optional

from sqlalchemy import func

from .db_manager import get_db_manager, DatabaseManager
from .models import Student, AttendancePeriod
from ..eligibility import EligibilityEngine
from ..exceptions import NotFoundError
from ..policy import PolicyProvider, database_policy

logger = logging.getLogger(__name__)


class ReportService:

    def __init__(
        self,
        db_manager: Optional[DatabaseManager] = None,
        policy_provider: Optional[PolicyProvider] = None
    ):
        self.db = db_manager or get_db_manager()
        self._policy = policy_provider or database_policy(self.db)

    def _engine(self) -> EligibilityEngine:
        return EligibilityEngine(self._policy())

    def _students_with_counts(self, session):
        return session.query(
            Student,
            func.count(AttendancePeriod.id)
        ).outerjoin(
            AttendancePeriod, AttendancePeriod.student_id == Student.id
        ).group_by(Student.id).order_by(Student.id).all()

    def eligibility_report(self, today: Optional[date] = None) -> dict:
        """Percentage and verdict for every student, plus the eligible count."""
        today = today or date.today()
        engine = self._engine()

        with self.db.get_session() as session:
            rows = self._students_with_counts(session)
            eligibility = []
            for student, periods in rows:
                result = engine.compute(periods, today)
                eligibility.append({
                    "name": student.name,
                    "matric": student.matric,
                    "image": student.image,
                    "percentage_attendance": result.percentage,
                    "is_eligible": result.is_eligible,
                })

        eligible = sum(1 for row in eligibility if row["is_eligible"])
        logger.info(
            f"[ELIGIBILITY] report: mode={engine.policy.mode} students={len(eligibility)} eligible={eligible}"
        )
        return {"eligibility": eligibility, "number_of_eligible_students": eligible}

    def quick_stats(self, today: Optional[date] = None) -> dict:
        today = today or date.today()
        engine = self._engine()

        with self.db.get_session() as session:
            counts = [periods for _, periods in self._students_with_counts(session)]
            number_of_attendance = session.query(AttendancePeriod).count()

        return {
            "number_of_students": len(counts),
            "number_of_attendance": number_of_attendance,
            "number_of_eligible_students": engine.count_eligible(counts, today),
        }

    def student_by_fingerprint(self, fingerprint_id: str, today: Optional[date] = None) -> dict:
        engine = self._engine()
        with self.db.get_session() as session:
            student = session.query(Student).filter_by(fingerprint_id=fingerprint_id).first()
            if not student:
                raise NotFoundError(
                    "Student",
                    fingerprint_id,
                    f"Student with fingerprint ID {fingerprint_id} not found. "
                    f"Please check the fingerprint ID and try again."
                )
            return self._student_detail(student, engine, today or date.today())

    def student_by_id(self, student_id: int, today: Optional[date] = None) -> dict:
        engine = self._engine()
        with self.db.get_session() as session:
            student = session.get(Student, student_id)
            if not student:
                raise NotFoundError("Student", str(student_id), f"Student with ID {student_id} not found.")
            return self._student_detail(student, engine, today or date.today())

    def _student_detail(self, student: Student, engine: EligibilityEngine, today: date) -> dict:
        periods = [period.to_dict() for period in student.periods]
        result = engine.compute(len(periods), today)

        detail = student.to_dict()
        detail.update(result.to_dict())
        detail["attendances"] = periods
        return detail
