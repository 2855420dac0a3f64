"""
Fingerprint Attendance Backend
==============================
Flow:
1. Scanner reports an unknown fingerprint      -> POST /api/hardware/detect
2. Registration UI polls for it                -> GET  /api/addStudent
3. Operator submits name/matric/photo          -> POST /api/addStudent
4. Later scans of the enrolled finger          -> POST /api/markAttendance/{fingerprint_id}
5. Dashboards read eligibility and statistics  -> GET  /api/eligibility, /api/quickstats, ...
"""

import io
import logging
import secrets
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Optional, Dict, Any, List

from fastapi import FastAPI, File, Form, UploadFile, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel, Field

from . import config
from .database import (
    DatabaseManager, EnrollmentService, AttendanceService, ReportService
)
from .database.models import DEFAULT_CONFIG
from .exceptions import NotFoundError, ConflictError, StorageError
from .policy import PolicyProvider

# Configure logging
logging.basicConfig(level=config.LOG_LEVEL, format=config.LOG_FORMAT)
logger = logging.getLogger(__name__)


# ============== Request / Response Models ==============
class DetectRequest(BaseModel):
    fingerprint_id: str = Field(..., min_length=1, description="ID from fingerprint scanner")


class NewUserResponse(BaseModel):
    id: str = Field(..., description="Fingerprint ID, empty when nothing is pending")


class StudentSummary(BaseModel):
    id: int
    name: str
    matric: str
    fingerprint_id: str
    image: Optional[str] = None


class AddStudentResponse(BaseModel):
    message: str
    student: StudentSummary


class PeriodSummary(BaseModel):
    id: int
    student_id: int
    attendance_date: str
    first_sign_in: str
    last_sign_in: str
    sign_in_count: int
    sign_ins: List[str]


class MarkAttendanceResponse(BaseModel):
    message: str = Field(..., description="Human-readable status message")
    is_first_sign_in: bool = Field(..., description="True when this sign-in opened a new period")
    mode: str = Field(..., description="calendar or demo")
    student: StudentSummary
    attendance: PeriodSummary


class EligibilityRecord(BaseModel):
    name: str
    matric: str
    image: Optional[str] = None
    percentage_attendance: int
    is_eligible: bool


class EligibilityResponse(BaseModel):
    eligibility: List[EligibilityRecord]
    number_of_eligible_students: int


class QuickStats(BaseModel):
    number_of_students: int
    number_of_attendance: int
    number_of_eligible_students: int


class ConfigUpdate(BaseModel):
    value: str = Field(..., min_length=1)


def _conflict(e: ConflictError) -> HTTPException:
    return HTTPException(status_code=409, detail={"message": str(e), "field": e.field})


def _unavailable(e: StorageError) -> HTTPException:
    logger.error(f"Storage error: {e}")
    return HTTPException(status_code=503, detail="Attendance database not available")


def save_upload(image: UploadFile, upload_dir: Path, max_bytes: Optional[int] = None) -> str:
    """
    Validate an uploaded photo and store it under a random name.

    Returns:
        Public reference, e.g. /uploads/students/<hex>.jpg
    """
    max_bytes = max_bytes or config.MAX_UPLOAD_BYTES
    contents = image.file.read(max_bytes + 1)
    if len(contents) > max_bytes:
        raise HTTPException(status_code=413, detail=f"Image larger than {max_bytes} bytes")

    try:
        Image.open(io.BytesIO(contents)).verify()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError):
        raise HTTPException(status_code=400, detail="Invalid image data")

    upload_dir.mkdir(parents=True, exist_ok=True)
    filename = f"{secrets.token_hex(16)}{Path(image.filename or '').suffix.lower()}"
    (upload_dir / filename).write_bytes(contents)
    logger.info(f"Stored upload: {filename} ({len(contents)} bytes)")
    return f"{config.UPLOAD_URL_PREFIX}/{filename}"


def create_app(
    db_manager: Optional[DatabaseManager] = None,
    policy_provider: Optional[PolicyProvider] = None,
    upload_dir: Optional[Path] = None
) -> FastAPI:
    """
    Build the API.

    Args:
        db_manager: Database to use. Defaults to config.DATABASE_URL
        policy_provider: Timing policy source. Defaults to the system_config table
        upload_dir: Where student photos go. Defaults to config.UPLOAD_DIR
    """
    db = db_manager or DatabaseManager(echo=config.SQL_ECHO)
    upload_dir = Path(upload_dir or config.UPLOAD_DIR)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("=" * 60)
        logger.info("Starting Fingerprint Attendance Backend")
        db.initialize()
        stats = db.get_stats()
        logger.info(
            f"Database: ✓ Initialized ({stats['total_students']} students, "
            f"{stats['pending_registrations']} pending, {stats['total_periods']} periods)"
        )
        logger.info("=" * 60)
        yield
        db.close()

    app = FastAPI(
        title="Fingerprint Attendance API",
        description="Fingerprint enrollment handshake, attendance recording and eligibility reporting",
        version="1.0.0",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.db = db
    app.state.upload_dir = upload_dir
    app.state.enrollment = EnrollmentService(db)
    app.state.attendance = AttendanceService(db, policy_provider)
    app.state.reports = ReportService(db, policy_provider)

    register_routes(app)
    return app


def register_routes(app: FastAPI):

    @app.get("/")
    def root(request: Request):
        """Health check endpoint."""
        try:
            stats = request.app.state.db.get_stats()
        except StorageError:
            stats = None
        return {
            "status": "online",
            "service": "Fingerprint Attendance API",
            "database": stats is not None,
            "stats": stats
        }

    # ============== Enrollment Endpoints ==============

    @app.post("/api/hardware/detect", response_model=NewUserResponse, status_code=201)
    def hardware_detect(body: DetectRequest, request: Request):
        """Scanner reports a fingerprint that has no student yet."""
        try:
            return {"id": request.app.state.enrollment.detect(body.fingerprint_id)}
        except StorageError as e:
            raise _unavailable(e)

    @app.get("/api/addStudent", response_model=NewUserResponse)
    def poll_new_users(request: Request):
        """Registration UI polls for the oldest pending fingerprint."""
        try:
            fingerprint_id = request.app.state.enrollment.poll_next()
        except StorageError as e:
            raise _unavailable(e)
        return {"id": fingerprint_id or ""}

    @app.post("/api/addStudent", response_model=AddStudentResponse, status_code=201)
    def add_student(
        request: Request,
        fingerprint_id: str = Form(..., min_length=1),
        name: str = Form(..., min_length=1),
        matric: str = Form(..., min_length=1),
        image: Optional[UploadFile] = File(None)
    ):
        """Complete a pending registration with the operator's form data."""
        image_ref = None
        stored = None
        if image is not None and image.filename:
            image_ref = save_upload(image, request.app.state.upload_dir)
            stored = request.app.state.upload_dir / Path(image_ref).name

        try:
            student = request.app.state.enrollment.complete(fingerprint_id, name, matric, image_ref)
        except (NotFoundError, ConflictError, StorageError) as e:
            if stored is not None:
                stored.unlink(missing_ok=True)
            if isinstance(e, NotFoundError):
                raise HTTPException(status_code=404, detail=str(e))
            if isinstance(e, ConflictError):
                raise _conflict(e)
            raise _unavailable(e)

        return {"message": "Student created successfully", "student": student}

    @app.get("/api/pending")
    def pending_history(request: Request, limit: int = Query(100, ge=1, le=1000)):
        """Recent registrations, open and completed."""
        try:
            rows = request.app.state.enrollment.get_pending_history(limit=limit)
        except StorageError as e:
            raise _unavailable(e)
        return {"pending": rows, "count": len(rows)}

    # ============== Attendance Endpoints ==============

    @app.post("/api/markAttendance/{fingerprint_id}", response_model=MarkAttendanceResponse, status_code=201)
    def mark_attendance(fingerprint_id: str, request: Request):
        """Record a sign-in for an enrolled fingerprint."""
        try:
            result = request.app.state.attendance.mark_attendance(fingerprint_id)
        except NotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except StorageError as e:
            raise _unavailable(e)
        return result.to_dict()

    @app.get("/api/attendance")
    def attendance_by_date(
        request: Request,
        date: Optional[str] = Query(None, description="Date in YYYY-MM-DD format")
    ):
        """Attendance periods recorded on a date (default today)."""
        try:
            day = datetime.strptime(date, "%Y-%m-%d").date() if date else datetime.now().date()
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid date format. Use YYYY-MM-DD")

        try:
            rows = request.app.state.attendance.get_periods_for_date(day)
        except StorageError as e:
            raise _unavailable(e)
        return {"date": day.isoformat(), "attendance": rows}

    @app.get("/api/graphData")
    def graph_data(request: Request, days: int = Query(7, ge=1, le=90)):
        """Periods per day over the last `days` days."""
        try:
            return {"data": request.app.state.attendance.get_daily_counts(days=days)}
        except StorageError as e:
            raise _unavailable(e)

    # ============== Reporting Endpoints ==============

    @app.get("/api/eligibility", response_model=EligibilityResponse)
    def eligibility(request: Request):
        try:
            return request.app.state.reports.eligibility_report()
        except StorageError as e:
            raise _unavailable(e)

    @app.get("/api/quickstats", response_model=QuickStats)
    def quick_stats(request: Request):
        try:
            return request.app.state.reports.quick_stats()
        except StorageError as e:
            raise _unavailable(e)

    @app.get("/api/student/fingerprint/{fingerprint_id}")
    def student_by_fingerprint(fingerprint_id: str, request: Request):
        try:
            return request.app.state.reports.student_by_fingerprint(fingerprint_id)
        except NotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except StorageError as e:
            raise _unavailable(e)

    @app.get("/api/student/{student_id}")
    def student_by_id(student_id: int, request: Request):
        try:
            return request.app.state.reports.student_by_id(student_id)
        except NotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except StorageError as e:
            raise _unavailable(e)

    # ============== Configuration Endpoints ==============

    @app.get("/api/config")
    def get_config(request: Request) -> Dict[str, Any]:
        try:
            return {"config": request.app.state.db.get_all_config()}
        except StorageError as e:
            raise _unavailable(e)

    @app.put("/api/config/{key}")
    def set_config(key: str, body: ConfigUpdate, request: Request):
        """Change a runtime parameter, e.g. demo_mode=true."""
        if key not in DEFAULT_CONFIG:
            raise HTTPException(status_code=404, detail=f"Unknown config key: {key}")
        try:
            request.app.state.db.set_config(key, body.value)
        except StorageError as e:
            raise _unavailable(e)
        return {"success": True, "key": key, "value": body.value}

    @app.get("/api/stats")
    def stats(request: Request):
        """Database statistics."""
        try:
            return {"success": True, "stats": request.app.state.db.get_stats()}
        except StorageError as e:
            raise _unavailable(e)


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=config.HOST, port=config.PORT)
