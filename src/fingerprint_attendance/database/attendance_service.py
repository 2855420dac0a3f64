"""
Attendance Service for Fingerprint Attendance
=============================================
Core business logic for recording sign-ins of enrolled students.

Features:
- Calendar-day merge: all sign-ins of a date land in one attendance period
- Accelerated demo timing: every sign-in opens a new period
- Race-safe writes through the (student, date) unique constraint and
  row-locked merges
"""

import logging
from datetime import datetime, date, timedelta
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from .db_manager import get_db_manager, DatabaseManager
from .models import Student, AttendancePeriod
from ..exceptions import NotFoundError, StorageError
from ..policy import PolicyProvider, database_policy

logger = logging.getLogger(__name__)

# Insert conflicts tolerated per mark before giving up
MAX_WRITE_ATTEMPTS = 5


class MarkResult:
    """
    Result of a mark operation.
    Provides a structured response for API endpoints.
    """

    def __init__(
        self,
        message: str,
        period: dict,
        student: dict,
        is_first_sign_in: bool,
        mode: str
    ):
        self.message = message
        self.period = period
        self.student = student
        self.is_first_sign_in = is_first_sign_in
        self.mode = mode

    @property
    def sign_in_count(self) -> int:
        return self.period["sign_in_count"]

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "message": self.message,
            "is_first_sign_in": self.is_first_sign_in,
            "mode": self.mode,
            "student": self.student,
            "attendance": self.period,
        }


class AttendanceService:
    """
    Main service for recording attendance.

    Usage:
        service = AttendanceService(db_manager)
        result = service.mark_attendance("FP001")
        print(result.message)
    """

    def __init__(
        self,
        db_manager: Optional[DatabaseManager] = None,
        policy_provider: Optional[PolicyProvider] = None
    ):
        """
        Args:
            db_manager: Optional DatabaseManager instance. Uses global if not provided.
            policy_provider: Returns the timing policy; called once per mark.
                Defaults to reading the system_config table.
        """
        self.db = db_manager or get_db_manager()
        self._policy = policy_provider or database_policy(self.db)

    def mark_attendance(self, fingerprint_id: str, now: Optional[datetime] = None) -> MarkResult:
        """
        Record a sign-in for the student enrolled with `fingerprint_id`.

        Args:
            fingerprint_id: Fingerprint ID reported by the scanner
            now: Optional timestamp (defaults to now)

        Returns:
            MarkResult with the resulting period and a status message

        Raises:
            NotFoundError: no student has this fingerprint ID
        """
        now = now or datetime.now()
        policy = self._policy()
        student = self._get_student(fingerprint_id)

        if policy.demo_mode:
            result = self._open_demo_period(student, now)
        else:
            result = self._merge_calendar_period(student, now)

        logger.info(
            f"[ATTENDANCE] mark: fingerprint_id={fingerprint_id} mode={policy.mode} "
            f"date={result.period['attendance_date']} count={result.sign_in_count} outcome="
            f"{'created' if result.is_first_sign_in else 'merged'}"
        )
        return result

    def _get_student(self, fingerprint_id: str) -> dict:
        with self.db.get_session() as session:
            student = session.query(Student).filter_by(fingerprint_id=fingerprint_id).first()
            if not student:
                logger.warning(f"[ATTENDANCE] mark: fingerprint_id={fingerprint_id} outcome=unknown_student")
                raise NotFoundError(
                    "Student",
                    fingerprint_id,
                    f"Student with fingerprint ID {fingerprint_id} not found. "
                    f"Please check the fingerprint ID and try again."
                )
            return student.to_dict()

    @staticmethod
    def _find_period(session, student_id: int, day: date) -> Optional[AttendancePeriod]:
        # FOR UPDATE holds the row until commit; SQLite already holds the
        # database write lock from BEGIN IMMEDIATE
        return session.query(AttendancePeriod).filter_by(
            student_id=student_id,
            attendance_date=day
        ).with_for_update().first()

    def _merge_calendar_period(self, student: dict, now: datetime) -> MarkResult:
        """Create today's period or fold this sign-in into it."""
        today = now.date()
        time_str = now.strftime("%I:%M %p")

        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            with self.db.get_session() as session:
                period = self._find_period(session, student["id"], today)

                if period is None:
                    period = AttendancePeriod(
                        student_id=student["id"],
                        attendance_date=today,
                        first_sign_in=now,
                        last_sign_in=now,
                        sign_in_count=1,
                        sign_ins=[now.isoformat()]
                    )
                    session.add(period)
                    try:
                        session.commit()
                    except IntegrityError:
                        # Another sign-in created today's period first: merge into it
                        session.rollback()
                        logger.debug(f"[ATTENDANCE] period insert conflict for student={student['id']} attempt={attempt}")
                        continue

                    return MarkResult(
                        message=f"Attendance marked! First sign-in at {time_str}",
                        period=period.to_dict(),
                        student=student,
                        is_first_sign_in=True,
                        mode="calendar"
                    )

                period.first_sign_in = min(period.first_sign_in, now)
                period.last_sign_in = max(period.last_sign_in, now)
                period.sign_in_count = period.sign_in_count + 1
                period.sign_ins = sorted(list(period.sign_ins or []) + [now.isoformat()])
                session.commit()

                return MarkResult(
                    message=f"Attendance updated! Sign-in #{period.sign_in_count} at {time_str}",
                    period=period.to_dict(),
                    student=student,
                    is_first_sign_in=False,
                    mode="calendar"
                )

        logger.error(f"[ATTENDANCE] mark: student={student['id']} outcome=gave_up attempts={MAX_WRITE_ATTEMPTS}")
        raise StorageError(
            f"Could not record attendance for {student['fingerprint_id']} "
            f"after {MAX_WRITE_ATTEMPTS} conflicting inserts"
        )

    def _open_demo_period(self, student: dict, now: datetime) -> MarkResult:
        """
        Open a new period on the next synthetic day.

        The first period is dated today, each later one the day after the
        student's latest period, so the (student, date) constraint holds.
        """
        today = now.date()
        time_str = now.strftime("%I:%M %p")

        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            with self.db.get_session() as session:
                latest = session.query(func.max(AttendancePeriod.attendance_date)).filter(
                    AttendancePeriod.student_id == student["id"]
                ).scalar()
                day = today if latest is None or latest < today else latest + timedelta(days=1)

                period = AttendancePeriod(
                    student_id=student["id"],
                    attendance_date=day,
                    first_sign_in=now,
                    last_sign_in=now,
                    sign_in_count=1,
                    sign_ins=[now.isoformat()]
                )
                session.add(period)
                try:
                    session.commit()
                except IntegrityError:
                    session.rollback()
                    logger.debug(f"[ATTENDANCE] demo day {day} taken for student={student['id']} attempt={attempt}")
                    continue

                day_number = session.query(AttendancePeriod).filter_by(student_id=student["id"]).count()

                return MarkResult(
                    message=f"Day {day_number} attendance marked at {time_str}",
                    period=period.to_dict(),
                    student=student,
                    is_first_sign_in=True,
                    mode="demo"
                )

        logger.error(f"[ATTENDANCE] mark: student={student['id']} outcome=gave_up attempts={MAX_WRITE_ATTEMPTS}")
        raise StorageError(
            f"Could not record attendance for {student['fingerprint_id']} "
            f"after {MAX_WRITE_ATTEMPTS} conflicting writes"
        )

    # ============== Query Methods ==============

    def get_periods_for_date(self, day: date) -> list:
        """All periods dated `day`, joined with their students."""
        with self.db.get_session() as session:
            rows = session.query(AttendancePeriod, Student).join(
                Student, AttendancePeriod.student_id == Student.id
            ).filter(
                AttendancePeriod.attendance_date == day
            ).order_by(AttendancePeriod.first_sign_in.asc()).all()

            return [
                {
                    "name": student.name,
                    "matric": student.matric,
                    "image": student.image,
                    "first_sign_in": period.first_sign_in.isoformat(),
                    "last_sign_in": period.last_sign_in.isoformat(),
                    "sign_in_count": period.sign_in_count,
                    "sign_ins": list(period.sign_ins or []),
                }
                for period, student in rows
            ]

    def get_daily_counts(self, today: Optional[date] = None, days: int = 7) -> list:
        """Number of periods per date over the last `days` days, oldest first."""
        today = today or date.today()
        since = today - timedelta(days=days - 1)

        with self.db.get_session() as session:
            rows = session.query(
                AttendancePeriod.attendance_date,
                func.count(AttendancePeriod.id)
            ).filter(
                AttendancePeriod.attendance_date >= since,
                AttendancePeriod.attendance_date <= today
            ).group_by(
                AttendancePeriod.attendance_date
            ).order_by(
                AttendancePeriod.attendance_date.asc()
            ).all()

            return [{"date": day.isoformat(), "count": count} for day, count in rows]
