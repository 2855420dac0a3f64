"""
Database Models for Fingerprint Attendance
==========================================
SQLAlchemy ORM models for enrollment and attendance tracking.

Tables:
- pending_registrations: Unmatched fingerprint scans awaiting an operator form
- students: Enrolled students (one fingerprint ID each)
- attendance_periods: One row per student per attendance day
- system_config: Configurable runtime parameters
"""

from datetime import datetime

from sqlalchemy import (
    Column, String, Integer, Boolean, DateTime, Date, Text, JSON,
    ForeignKey, Index, UniqueConstraint, text
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class PendingRegistration(Base):
    """
    A fingerprint scan with no enrolled student yet.
    Completed rows are kept as enrollment history.
    """
    __tablename__ = 'pending_registrations'

    id = Column(Integer, primary_key=True, autoincrement=True)
    fingerprint_id = Column(String(100), nullable=False, index=True)
    name = Column(String(100), nullable=True)
    matric = Column(String(50), nullable=True)
    image = Column(String(255), nullable=True)
    is_completed = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    # At most one open registration per fingerprint
    __table_args__ = (
        Index(
            'uq_pending_open_fingerprint',
            'fingerprint_id',
            unique=True,
            sqlite_where=text('is_completed = 0'),
            postgresql_where=text('is_completed = false'),
        ),
    )

    def __repr__(self):
        return f"<PendingRegistration(id={self.id}, fingerprint={self.fingerprint_id}, completed={self.is_completed})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "fingerprint_id": self.fingerprint_id,
            "name": self.name,
            "matric": self.matric,
            "image": self.image,
            "is_completed": self.is_completed,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class Student(Base):
    """Permanently enrolled student."""
    __tablename__ = 'students'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    matric = Column(String(50), nullable=False, unique=True)
    fingerprint_id = Column(String(100), nullable=False, unique=True)
    image = Column(String(255), nullable=True)
    registered_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    periods = relationship(
        "AttendancePeriod",
        back_populates="student",
        cascade="all, delete-orphan",
        order_by="AttendancePeriod.attendance_date",
    )

    def __repr__(self):
        return f"<Student(id={self.id}, matric={self.matric}, fingerprint={self.fingerprint_id})>"

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "id": self.id,
            "name": self.name,
            "matric": self.matric,
            "fingerprint_id": self.fingerprint_id,
            "image": self.image,
        }


class AttendancePeriod(Base):
    """
    One attendance day for one student.
    Every sign-in of that day is merged into the same row.
    """
    __tablename__ = 'attendance_periods'

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(Integer, ForeignKey('students.id', ondelete='CASCADE'), nullable=False, index=True)
    attendance_date = Column(Date, nullable=False, index=True)
    first_sign_in = Column(DateTime, nullable=False)
    last_sign_in = Column(DateTime, nullable=False)
    sign_in_count = Column(Integer, default=1, nullable=False)
    sign_ins = Column(JSON, nullable=False, default=list)  # ISO timestamps, oldest first

    student = relationship("Student", back_populates="periods")

    __table_args__ = (
        UniqueConstraint('student_id', 'attendance_date', name='uq_period_student_date'),
    )

    def __repr__(self):
        return f"<AttendancePeriod(student={self.student_id}, date={self.attendance_date}, count={self.sign_in_count})>"

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "id": self.id,
            "student_id": self.student_id,
            "attendance_date": self.attendance_date.isoformat() if self.attendance_date else None,
            "first_sign_in": self.first_sign_in.isoformat() if self.first_sign_in else None,
            "last_sign_in": self.last_sign_in.isoformat() if self.last_sign_in else None,
            "sign_in_count": self.sign_in_count,
            "sign_ins": list(self.sign_ins or []),
        }


class SystemConfig(Base):
    """
    System configuration parameters.
    Allows runtime configuration without code changes.
    """
    __tablename__ = 'system_config'

    key = Column(String(100), primary_key=True)
    value = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<SystemConfig(key={self.key}, value={self.value})>"

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "value": self.value,
            "description": self.description,
        }


# Default configuration values
DEFAULT_CONFIG = {
    "demo_mode": ("false", "Accelerated demo timing: every mark is a new day"),
    "demo_window_periods": ("10", "Eligibility denominator in demo mode"),
    "calendar_window_days": ("30", "Trailing calendar days whose weekdays form the denominator"),
    "eligibility_threshold": ("65", "Minimum attendance percentage to be eligible"),
}
