"""
Enrollment Service for Fingerprint Attendance
=============================================
Bridges an unattended fingerprint scan to a later operator-submitted form.

Flow:
1. Scanner reports an unknown fingerprint -> detect() parks a pending registration
2. Registration UI polls poll_next() until a fingerprint shows up
3. Operator submits name/matric/image -> complete() enrolls the student

Pending registrations are persisted so a poll cycle missed by the UI loses
nothing. Uniqueness of the open registration per fingerprint is enforced by a
partial unique index; a losing concurrent insert is treated as "already
pending".
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError

from .db_manager import get_db_manager, DatabaseManager
from .models import PendingRegistration, Student
from ..exceptions import NotFoundError, ConflictError

logger = logging.getLogger(__name__)


class EnrollmentService:
    """
    Usage:
        service = EnrollmentService(db_manager)
        service.detect("FP001")
        fingerprint_id = service.poll_next()
        student = service.complete("FP001", "Ada Obi", "2020/19877", "/uploads/students/a.jpg")
    """

    def __init__(self, db_manager: Optional[DatabaseManager] = None):
        self.db = db_manager or get_db_manager()

    @staticmethod
    def _find_open(session, fingerprint_id: str) -> Optional[PendingRegistration]:
        return session.query(PendingRegistration).filter_by(
            fingerprint_id=fingerprint_id,
            is_completed=False
        ).first()

    def detect(self, fingerprint_id: str, now: Optional[datetime] = None) -> str:
        """
        Record a scan of a not-yet-enrolled fingerprint.

        Idempotent: repeated scans of the same finger leave exactly one open
        registration.

        Returns:
            The fingerprint ID, echoed back to the device
        """
        with self.db.get_session() as session:
            if self._find_open(session, fingerprint_id):
                logger.info(f"[ENROLLMENT] detect: fingerprint_id={fingerprint_id} outcome=already_pending")
                return fingerprint_id

            session.add(PendingRegistration(
                fingerprint_id=fingerprint_id,
                is_completed=False,
                created_at=now or datetime.utcnow()
            ))
            try:
                session.commit()
            except IntegrityError:
                # Lost the race against another scan of the same finger
                session.rollback()
                logger.info(f"[ENROLLMENT] detect: fingerprint_id={fingerprint_id} outcome=already_pending concurrent=true")
                return fingerprint_id

        logger.info(f"[ENROLLMENT] detect: fingerprint_id={fingerprint_id} outcome=created")
        return fingerprint_id

    def poll_next(self) -> Optional[str]:
        """
        Fingerprint ID of the oldest open registration, or None.

        Read-only; safe to call on every UI poll tick.
        """
        with self.db.get_session() as session:
            pending = session.query(PendingRegistration).filter_by(
                is_completed=False
            ).order_by(
                PendingRegistration.created_at.asc(),
                PendingRegistration.id.asc()
            ).first()

            fingerprint_id = pending.fingerprint_id if pending else None

        logger.debug(f"[ENROLLMENT] poll: outcome={'found' if fingerprint_id else 'empty'} fingerprint_id={fingerprint_id}")
        return fingerprint_id

    def complete(
        self,
        fingerprint_id: str,
        name: str,
        matric: str,
        image: Optional[str] = None
    ) -> dict:
        """
        Turn the open registration for `fingerprint_id` into a Student.

        Args:
            fingerprint_id: Fingerprint ID obtained from poll_next()
            name: Student's full name
            matric: Matriculation number (unique)
            image: Stored image reference, if any

        Returns:
            Summary of the created student

        Raises:
            NotFoundError: no open registration for this fingerprint
            ConflictError: matric or fingerprint already belongs to a student
        """
        with self.db.get_session() as session:
            pending = self._find_open(session, fingerprint_id)
            if not pending:
                logger.warning(f"[ENROLLMENT] complete: fingerprint_id={fingerprint_id} outcome=no_pending")
                raise NotFoundError(
                    "PendingRegistration",
                    fingerprint_id,
                    "No pending registration found for this fingerprint. Please scan your fingerprint again."
                )

            self._check_unique(session, fingerprint_id, matric)

            student = Student(
                name=name,
                matric=matric,
                fingerprint_id=fingerprint_id,
                image=image
            )
            session.add(student)

            # Keep the pending row as enrollment history
            pending.is_completed = True
            pending.name = name
            pending.matric = matric
            pending.image = image

            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                # A concurrent completion got there first; report which field
                self._check_unique(session, fingerprint_id, matric)
                raise ConflictError(
                    "fingerprint_id",
                    fingerprint_id,
                    f'A student with fingerprint ID "{fingerprint_id}" is already registered.'
                )

            summary = student.to_dict()

        logger.info(
            f"[ENROLLMENT] complete: fingerprint_id={fingerprint_id} matric={matric} "
            f"student_id={summary['id']} outcome=enrolled"
        )
        return summary

    def _check_unique(self, session, fingerprint_id: str, matric: str):
        if session.query(Student).filter_by(matric=matric).first():
            logger.warning(f"[ENROLLMENT] complete: fingerprint_id={fingerprint_id} outcome=conflict field=matric")
            raise ConflictError(
                "matric",
                matric,
                f'A student with matriculation number "{matric}" is already registered. '
                f'Please use a different matriculation number.'
            )

        if session.query(Student).filter_by(fingerprint_id=fingerprint_id).first():
            logger.warning(f"[ENROLLMENT] complete: fingerprint_id={fingerprint_id} outcome=conflict field=fingerprint_id")
            raise ConflictError(
                "fingerprint_id",
                fingerprint_id,
                f'A student with fingerprint ID "{fingerprint_id}" is already registered. '
                f'This fingerprint has already been used.'
            )

    def get_pending_history(self, limit: int = 100) -> list:
        """Most recent registrations, open and completed."""
        with self.db.get_session() as session:
            rows = session.query(PendingRegistration).order_by(
                PendingRegistration.created_at.desc(),
                PendingRegistration.id.desc()
            ).limit(limit).all()
            return [row.to_dict() for row in rows]
