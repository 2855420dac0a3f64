"""
Database Module for Fingerprint Attendance
==========================================
Provides SQLAlchemy-backed enrollment and attendance tracking with:
- Pending registrations bridging scanner and operator form
- Calendar-day merge of sign-ins
- Eligibility reporting
"""

from .models import PendingRegistration, Student, AttendancePeriod, SystemConfig
from .db_manager import DatabaseManager, get_db_manager, reset_db_manager
from .enrollment_service import EnrollmentService
from .attendance_service import AttendanceService, MarkResult
from .report_service import ReportService

__all__ = [
    'PendingRegistration',
    'Student',
    'AttendancePeriod',
    'SystemConfig',
    'DatabaseManager',
    'get_db_manager',
    'reset_db_manager',
    'EnrollmentService',
    'AttendanceService',
    'MarkResult',
    'ReportService'
]
