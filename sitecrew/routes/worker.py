"""
Worker API routes.
Today's tasks, task lifecycle actions and geofence validation for the mobile app.
"""
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..auth.security import get_current_employee
from ..db import get_db
from ..models.models import Employee, Project, WorkerTaskAssignment
from ..schemas.tasks import ProgressUpdate, TaskLocationPayload
from ..services import task_lifecycle
from ..services.geofence import GeofenceResult, InvalidCoordinates, project_geofence, validate_coordinates, validate_geofence
from ..services.location_log import record_location
from ..services.task_lifecycle import GeofenceViolation, TaskLifecycleError, progress_today
from ..services.time_rules import ensure_utc, local_work_day, utc_now


router = APIRouter(prefix="/worker", tags=["worker"])


def parse_uuid(value: str, label: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {label} id") from exc


def geofence_detail(result: GeofenceResult) -> Dict[str, Any]:
    return {
        "message": result.message,
        "distance": result.distance_m,
        "allowed_radius": result.allowed_radius_m,
        "inside_geofence": result.inside_geofence,
        "strict_mode": result.strict_mode,
    }


def lifecycle_http_error(exc: TaskLifecycleError) -> HTTPException:
    if isinstance(exc, GeofenceViolation):
        return HTTPException(status_code=400, detail=geofence_detail(exc.result))
    return HTTPException(status_code=exc.status_code, detail=exc.message)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_assignment(assignment: WorkerTaskAssignment) -> Dict[str, Any]:
    task = assignment.task
    project = assignment.project
    employee = assignment.employee
    return {
        "id": str(assignment.id),
        "employee": {
            "id": str(assignment.employee_id),
            "name": employee.full_name if employee else None,
        },
        "task": {
            "id": str(assignment.task_id),
            "name": task.name if task else None,
            "description": task.description if task else None,
        },
        "project": {
            "id": str(assignment.project_id),
            "name": project.name if project else None,
            "code": project.code if project else None,
            "geofence": project_geofence(project).to_dict() if project else None,
        },
        "supervisor_id": str(assignment.supervisor_id) if assignment.supervisor_id else None,
        "date": assignment.date.isoformat(),
        "sequence": assignment.sequence,
        "status": assignment.status,
        "daily_target": assignment.daily_target,
        "progress_percent": assignment.progress_percent or 0,
        "actual_output": assignment.actual_output or 0,
        "progress_today": progress_today(assignment),
        "start_time": _iso(assignment.start_time),
        "end_time": _iso(assignment.end_time),
        "pause_history": assignment.pause_history or [],
        "geofence_validation": assignment.geofence_validation,
        "updated_at": _iso(assignment.updated_at),
        "permissions": {
            "can_start": task_lifecycle.can_transition(assignment.status, "start"),
            "can_pause": task_lifecycle.can_transition(assignment.status, "pause"),
            "can_resume": task_lifecycle.can_transition(assignment.status, "resume"),
            "can_complete": task_lifecycle.can_transition(assignment.status, "complete"),
        },
    }


def status_summary(assignments) -> Dict[str, int]:
    summary = {"total": len(assignments), "queued": 0, "in_progress": 0, "paused": 0, "completed": 0}
    for assignment in assignments:
        if assignment.status in summary:
            summary[assignment.status] += 1
    return summary


def _get_assignment(assignment_id: str, employee: Employee, db: Session) -> WorkerTaskAssignment:
    assignment_uuid = parse_uuid(assignment_id, "task assignment")
    assignment = db.query(WorkerTaskAssignment).filter(WorkerTaskAssignment.id == assignment_uuid).first()
    if not assignment:
        raise HTTPException(status_code=404, detail="Task assignment not found")
    if assignment.employee_id != employee.id:
        raise HTTPException(status_code=403, detail="Task assignment belongs to another employee")
    return assignment


def today_assignments(db: Session, employee_id: uuid.UUID, now: Optional[datetime] = None) -> List[WorkerTaskAssignment]:
    """Assignments dated on the current local work day of their own project."""
    now = now or utc_now()
    utc_day = ensure_utc(now).date()
    # Local days are never more than one calendar day away from the UTC day
    candidates = (
        db.query(WorkerTaskAssignment)
        .join(Project, WorkerTaskAssignment.project_id == Project.id)
        .filter(
            WorkerTaskAssignment.employee_id == employee_id,
            WorkerTaskAssignment.date.between(utc_day - timedelta(days=1), utc_day + timedelta(days=1)),
        )
        .order_by(WorkerTaskAssignment.sequence, WorkerTaskAssignment.created_at)
        .all()
    )
    return [a for a in candidates if a.date == local_work_day(now, a.project.timezone)]


@router.get("/tasks/today")
def list_today_tasks(db: Session = Depends(get_db), employee: Employee = Depends(get_current_employee)):
    assignments = today_assignments(db, employee.id)
    return {
        "dates": sorted({a.date.isoformat() for a in assignments}),
        "employee": {"id": str(employee.id), "name": employee.full_name},
        "tasks": [serialize_assignment(a) for a in assignments],
        "summary": status_summary(assignments),
    }


@router.get("/tasks/{assignment_id}")
def get_task(assignment_id: str, db: Session = Depends(get_db), employee: Employee = Depends(get_current_employee)):
    return serialize_assignment(_get_assignment(assignment_id, employee, db))


def _activate(action: str, assignment_id: str, payload: TaskLocationPayload, db: Session, employee: Employee):
    assignment = _get_assignment(assignment_id, employee, db)
    location = payload.location
    handler = task_lifecycle.start_task if action == "start" else task_lifecycle.resume_task
    log_fields = dict(
        employee_id=employee.id,
        project_id=assignment.project_id,
        task_assignment_id=assignment.id,
        latitude=location.latitude,
        longitude=location.longitude,
        accuracy_m=location.accuracy,
    )
    try:
        result, paused = handler(db, assignment, location.latitude, location.longitude, location.accuracy)
    except GeofenceViolation as exc:
        record_location(db, log_type="GEOFENCE_VIOLATION", result=exc.result, **log_fields)
        db.commit()
        raise lifecycle_http_error(exc) from exc
    except TaskLifecycleError as exc:
        raise lifecycle_http_error(exc) from exc
    record_location(
        db,
        log_type="TASK_START" if action == "start" else "TASK_RESUME",
        result=result,
        **log_fields,
    )
    db.commit()
    db.refresh(assignment)
    return {
        "assignment": serialize_assignment(assignment),
        "paused_assignments": [str(a.id) for a in paused],
        "geofence_validation": result.to_dict(),
    }


@router.post("/tasks/{assignment_id}/start")
def start_task(
    assignment_id: str,
    payload: TaskLocationPayload,
    db: Session = Depends(get_db),
    employee: Employee = Depends(get_current_employee),
):
    return _activate("start", assignment_id, payload, db, employee)


@router.post("/tasks/{assignment_id}/resume")
def resume_task(
    assignment_id: str,
    payload: TaskLocationPayload,
    db: Session = Depends(get_db),
    employee: Employee = Depends(get_current_employee),
):
    return _activate("resume", assignment_id, payload, db, employee)


@router.post("/tasks/{assignment_id}/pause")
def pause_task(assignment_id: str, db: Session = Depends(get_db), employee: Employee = Depends(get_current_employee)):
    assignment = _get_assignment(assignment_id, employee, db)
    try:
        task_lifecycle.pause_task(db, assignment)
    except TaskLifecycleError as exc:
        raise lifecycle_http_error(exc) from exc
    db.commit()
    db.refresh(assignment)
    return serialize_assignment(assignment)


@router.put("/tasks/{assignment_id}/progress")
def update_progress(
    assignment_id: str,
    payload: ProgressUpdate,
    db: Session = Depends(get_db),
    employee: Employee = Depends(get_current_employee),
):
    assignment = _get_assignment(assignment_id, employee, db)
    try:
        task_lifecycle.update_progress(db, assignment, payload.progress_percent, payload.actual_output)
    except TaskLifecycleError as exc:
        raise lifecycle_http_error(exc) from exc
    db.commit()
    db.refresh(assignment)
    return serialize_assignment(assignment)


@router.post("/tasks/{assignment_id}/complete")
def complete_task(assignment_id: str, db: Session = Depends(get_db), employee: Employee = Depends(get_current_employee)):
    assignment = _get_assignment(assignment_id, employee, db)
    try:
        task_lifecycle.complete_task(db, assignment)
    except TaskLifecycleError as exc:
        raise lifecycle_http_error(exc) from exc
    db.commit()
    db.refresh(assignment)
    return serialize_assignment(assignment)


@router.get("/geofence/validate")
def validate_worker_geofence(
    latitude: float = Query(...),
    longitude: float = Query(...),
    project_id: Optional[str] = Query(default=None),
    accuracy: Optional[float] = Query(default=None, ge=0),
    db: Session = Depends(get_db),
    employee: Employee = Depends(get_current_employee),
):
    try:
        lat, lng = validate_coordinates(latitude, longitude)
    except InvalidCoordinates as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    if project_id:
        target_project_id = parse_uuid(project_id, "project")
    else:
        # Fall back to the project of today's first assignment
        assignments = today_assignments(db, employee.id)
        if not assignments:
            raise HTTPException(status_code=404, detail="No active project assignment found for today")
        target_project_id = assignments[0].project_id

    project = db.query(Project).filter(Project.id == target_project_id).first()
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")

    geofence = project_geofence(project)
    result = validate_geofence(lat, lng, geofence, accuracy)
    record_location(
        db,
        employee_id=employee.id,
        project_id=project.id,
        latitude=lat,
        longitude=lng,
        accuracy_m=accuracy,
        log_type="GEOFENCE_VALIDATION",
        result=result,
    )
    db.commit()
    return {
        "inside_geofence": result.inside_geofence,
        "distance": result.distance_m,
        "geofence": geofence.to_dict(),
        "can_start_tasks": result.is_valid,
        "message": result.message,
        "strict_mode": result.strict_mode,
        "allowed_variance": result.allowed_variance_m,
        "gps_accuracy": accuracy,
        "accuracy_warning": result.accuracy_warning,
        "validation_timestamp": utc_now().isoformat(),
    }
