"""
Attendance routes: geofence pre-check, check-in/check-out and today's status.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..auth.security import get_current_employee
from ..db import get_db
from ..models.models import Employee, Project
from ..schemas.attendance import AttendanceSession, AttendanceSubmitRequest, GeofenceCheckRequest
from ..services.attendance import AttendanceError, check_in, check_out, today_status
from ..services.geofence import project_geofence, validate_geofence
from ..services.location_log import record_location
from ..services.time_rules import utc_now
from .worker import geofence_detail, parse_uuid


router = APIRouter(prefix="/attendance", tags=["attendance"])


def _get_project(project_id, db: Session) -> Project:
    project = db.query(Project).filter(Project.id == project_id).first()
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


def _serialize_attendance(attendance) -> dict:
    return {
        "id": str(attendance.id),
        "employee_id": str(attendance.employee_id),
        "project_id": str(attendance.project_id),
        "date": attendance.date.isoformat(),
        "check_in": attendance.check_in.isoformat() if attendance.check_in else None,
        "check_out": attendance.check_out.isoformat() if attendance.check_out else None,
        "pending_checkout": attendance.pending_checkout,
        "inside_geofence_at_checkin": attendance.inside_geofence_at_checkin,
        "inside_geofence_at_checkout": attendance.inside_geofence_at_checkout,
    }


@router.post("/validate-geofence")
def validate_attendance_geofence(
    payload: GeofenceCheckRequest,
    db: Session = Depends(get_db),
    employee: Employee = Depends(get_current_employee),
):
    project = _get_project(payload.project_id, db)
    result = validate_geofence(payload.latitude, payload.longitude, project_geofence(project), payload.accuracy)
    record_location(
        db,
        employee_id=employee.id,
        project_id=project.id,
        latitude=payload.latitude,
        longitude=payload.longitude,
        accuracy_m=payload.accuracy,
        log_type="GEOFENCE_VALIDATION",
        result=result,
    )
    db.commit()
    return {
        "inside_geofence": result.inside_geofence,
        "distance": result.distance_m,
        "can_proceed": result.is_valid,
        "message": result.message,
        "accuracy": payload.accuracy,
        "accuracy_warning": result.accuracy_warning,
        "allowed_radius": result.allowed_radius_m,
    }


@router.post("/submit")
def submit_attendance(
    payload: AttendanceSubmitRequest,
    db: Session = Depends(get_db),
    employee: Employee = Depends(get_current_employee),
):
    project = _get_project(payload.project_id, db)
    handler = check_in if payload.session == AttendanceSession.checkin else check_out
    try:
        attendance = handler(db, employee, project, payload.latitude, payload.longitude, payload.accuracy)
    except AttendanceError as exc:
        db.rollback()
        if exc.result is not None:
            record_location(
                db,
                employee_id=employee.id,
                project_id=project.id,
                latitude=payload.latitude,
                longitude=payload.longitude,
                accuracy_m=payload.accuracy,
                log_type="GEOFENCE_VIOLATION",
                result=exc.result,
            )
            db.commit()
            detail = geofence_detail(exc.result)
        else:
            detail = exc.message
        raise HTTPException(status_code=400, detail=detail) from exc
    db.commit()
    db.refresh(attendance)
    return {
        "session": payload.session.value,
        "attendance": _serialize_attendance(attendance),
        "timestamp": utc_now().isoformat(),
    }


@router.get("/today")
def get_today_attendance(
    project_id: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
    employee: Employee = Depends(get_current_employee),
):
    if not project_id:
        raise HTTPException(status_code=400, detail="project_id is required")
    project = _get_project(parse_uuid(project_id, "project"), db)
    data = today_status(db, employee, project)
    data["project_id"] = str(project.id)
    return data
