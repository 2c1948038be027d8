"""
Attendance service.
One row per employee, project and work day; the day key is always written
through normalize_attendance_date.
"""
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from ..models.models import Attendance, Employee, Project, WorkerTaskAssignment
from .geofence import GeofenceResult, project_geofence, validate_geofence
from .location_log import record_location
from .time_rules import local_work_day, normalize_attendance_date, utc_now


logger = structlog.get_logger(__name__)


class AttendanceError(Exception):
    def __init__(self, message: str, code: str, result: Optional[GeofenceResult] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.result = result


def find_attendance(db: Session, employee_id, project_id, day_key: datetime) -> Optional[Attendance]:
    return (
        db.query(Attendance)
        .filter(
            Attendance.employee_id == employee_id,
            Attendance.project_id == project_id,
            Attendance.date == day_key,
        )
        .first()
    )


def _require_assignment(db: Session, employee: Employee, project: Project, now: datetime) -> None:
    work_day = local_work_day(now, project.timezone)
    assignment = (
        db.query(WorkerTaskAssignment)
        .filter(
            WorkerTaskAssignment.employee_id == employee.id,
            WorkerTaskAssignment.project_id == project.id,
            WorkerTaskAssignment.date == work_day,
        )
        .first()
    )
    if not assignment:
        raise AttendanceError("No task assigned for this project today", "NO_ASSIGNMENT")


def _validate_position(project: Project, latitude: float, longitude: float, accuracy_m: Optional[float]) -> GeofenceResult:
    result = validate_geofence(latitude, longitude, project_geofence(project), accuracy_m)
    if not result.is_valid:
        raise AttendanceError("Outside project geofence", "GEOFENCE_VALIDATION_FAILED", result)
    return result


def check_in(
    db: Session,
    employee: Employee,
    project: Project,
    latitude: float,
    longitude: float,
    accuracy_m: Optional[float] = None,
    now: Optional[datetime] = None,
) -> Attendance:
    now = now or utc_now()
    _require_assignment(db, employee, project, now)
    result = _validate_position(project, latitude, longitude, accuracy_m)

    day_key = normalize_attendance_date(now, project.timezone)
    attendance = find_attendance(db, employee.id, project.id, day_key)
    if attendance and attendance.check_in:
        raise AttendanceError("Already checked in today", "ALREADY_CHECKED_IN")
    if attendance is None:
        attendance = Attendance(employee_id=employee.id, project_id=project.id, date=day_key)
        db.add(attendance)

    attendance.check_in = now
    attendance.pending_checkout = True
    attendance.inside_geofence_at_checkin = result.inside_geofence
    attendance.check_in_lat = latitude
    attendance.check_in_lng = longitude
    attendance.updated_at = now
    record_location(
        db,
        employee_id=employee.id,
        project_id=project.id,
        latitude=latitude,
        longitude=longitude,
        accuracy_m=accuracy_m,
        log_type="CHECK_IN",
        result=result,
    )
    db.flush()
    logger.info("attendance_check_in", employee_id=str(employee.id), project_id=str(project.id), date=day_key.isoformat())
    return attendance


def check_out(
    db: Session,
    employee: Employee,
    project: Project,
    latitude: float,
    longitude: float,
    accuracy_m: Optional[float] = None,
    now: Optional[datetime] = None,
) -> Attendance:
    now = now or utc_now()
    day_key = normalize_attendance_date(now, project.timezone)
    attendance = find_attendance(db, employee.id, project.id, day_key)
    if not attendance or not attendance.check_in:
        raise AttendanceError("Cannot check out before checking in", "NOT_CHECKED_IN")
    if attendance.check_out:
        raise AttendanceError("Already checked out today", "ALREADY_CHECKED_OUT")
    result = _validate_position(project, latitude, longitude, accuracy_m)

    attendance.check_out = now
    attendance.pending_checkout = False
    attendance.inside_geofence_at_checkout = result.inside_geofence
    attendance.check_out_lat = latitude
    attendance.check_out_lng = longitude
    attendance.updated_at = now
    record_location(
        db,
        employee_id=employee.id,
        project_id=project.id,
        latitude=latitude,
        longitude=longitude,
        accuracy_m=accuracy_m,
        log_type="CHECK_OUT",
        result=result,
    )
    db.flush()
    logger.info("attendance_check_out", employee_id=str(employee.id), project_id=str(project.id), date=day_key.isoformat())
    return attendance


def today_status(db: Session, employee: Employee, project: Project, now: Optional[datetime] = None) -> dict:
    now = now or utc_now()
    day_key = normalize_attendance_date(now, project.timezone)
    attendance = find_attendance(db, employee.id, project.id, day_key)
    if not attendance or not attendance.check_in:
        status = "not_checked_in"
    elif attendance.check_out:
        status = "checked_out"
    else:
        status = "checked_in"
    return {
        "status": status,
        "date": day_key.isoformat(),
        "check_in": attendance.check_in.isoformat() if attendance and attendance.check_in else None,
        "check_out": attendance.check_out.isoformat() if attendance and attendance.check_out else None,
    }
