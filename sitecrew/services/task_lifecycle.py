"""
Worker task lifecycle.

queued -> in_progress -> paused -> in_progress (resume) -> completed

An employee has at most one in_progress assignment. Starting or resuming a
task pauses the employee's other in_progress assignments in the same
transaction; the partial unique index on worker_task_assignments rejects any
writer that races past the row lock.
"""
from datetime import datetime
from typing import List, Optional, Tuple

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models.models import WorkerTaskAssignment
from .geofence import GeofenceResult, project_geofence, validate_geofence
from .time_rules import utc_now


logger = structlog.get_logger(__name__)


QUEUED = "queued"
IN_PROGRESS = "in_progress"
PAUSED = "paused"
COMPLETED = "completed"

# action -> (allowed from-status, resulting status)
TRANSITIONS = {
    "start": (QUEUED, IN_PROGRESS),
    "pause": (IN_PROGRESS, PAUSED),
    "resume": (PAUSED, IN_PROGRESS),
    "complete": (IN_PROGRESS, COMPLETED),
}


class TaskLifecycleError(Exception):
    status_code = 400

    def __init__(self, message: str, code: str):
        super().__init__(message)
        self.message = message
        self.code = code


class InvalidTransition(TaskLifecycleError):
    pass


class GeofenceViolation(TaskLifecycleError):
    def __init__(self, result: GeofenceResult):
        super().__init__(result.message, "GEOFENCE_VALIDATION_FAILED")
        self.result = result


class ConcurrentTaskStart(TaskLifecycleError):
    status_code = 409


def can_transition(status: str, action: str) -> bool:
    allowed_from, _ = TRANSITIONS[action]
    return status == allowed_from


def _check_transition(assignment: WorkerTaskAssignment, action: str) -> str:
    allowed_from, target = TRANSITIONS[action]
    status = assignment.status
    if status == allowed_from:
        return target
    if status == COMPLETED:
        raise InvalidTransition("Task is already completed", "TASK_ALREADY_COMPLETED")
    if action in ("start", "resume") and status == IN_PROGRESS:
        raise InvalidTransition("Task is already in progress", "TASK_ALREADY_STARTED")
    if action == "start" and status == PAUSED:
        raise InvalidTransition("Task is paused, resume it instead", "TASK_PAUSED")
    if action == "resume":
        raise InvalidTransition("Only a paused task can be resumed", "TASK_NOT_PAUSED")
    if action in ("pause", "complete"):
        verb = "paused" if action == "pause" else "completed"
        raise InvalidTransition(f"Only a task in progress can be {verb}", "TASK_NOT_IN_PROGRESS")
    raise InvalidTransition(f"Task cannot be started from status '{status}'", "INVALID_STATUS")


def _iso(dt: datetime) -> str:
    return dt.isoformat()


def append_pause(assignment: WorkerTaskAssignment, now: datetime) -> None:
    # Reassign the list so the JSON column is marked dirty
    history = list(assignment.pause_history or [])
    history.append({"pausedAt": _iso(now), "resumedAt": None})
    assignment.pause_history = history


def close_pause(assignment: WorkerTaskAssignment, now: datetime) -> None:
    history = [dict(entry) for entry in (assignment.pause_history or [])]
    if history and not history[-1].get("resumedAt"):
        history[-1]["resumedAt"] = _iso(now)
    assignment.pause_history = history


def _set_status(assignment: WorkerTaskAssignment, status: str, now: datetime) -> None:
    previous = assignment.status
    assignment.status = status
    assignment.updated_at = now
    logger.info(
        "task_transition",
        assignment_id=str(assignment.id),
        employee_id=str(assignment.employee_id),
        from_status=previous,
        to_status=status,
    )


def pause_other_active(db: Session, assignment: WorkerTaskAssignment, now: datetime) -> List[WorkerTaskAssignment]:
    """Pause every other in_progress assignment of the same employee."""
    others = (
        db.query(WorkerTaskAssignment)
        .filter(
            WorkerTaskAssignment.employee_id == assignment.employee_id,
            WorkerTaskAssignment.status == IN_PROGRESS,
            WorkerTaskAssignment.id != assignment.id,
        )
        .with_for_update()
        .all()
    )
    for other in others:
        _set_status(other, PAUSED, now)
        append_pause(other, now)
        logger.info(
            "task_auto_paused",
            assignment_id=str(other.id),
            employee_id=str(other.employee_id),
            activated_assignment_id=str(assignment.id),
        )
    if others:
        # Paused rows must reach the database before the new in_progress row
        db.flush()
    return others


def check_location(
    assignment: WorkerTaskAssignment,
    latitude: float,
    longitude: float,
    accuracy_m: Optional[float] = None,
) -> GeofenceResult:
    result = validate_geofence(latitude, longitude, project_geofence(assignment.project), accuracy_m)
    if not result.is_valid:
        logger.info(
            "geofence_rejected",
            assignment_id=str(assignment.id),
            distance_m=result.distance_m,
            allowed_radius_m=result.allowed_radius_m,
        )
        raise GeofenceViolation(result)
    return result


def _activate(
    db: Session,
    assignment: WorkerTaskAssignment,
    action: str,
    latitude: float,
    longitude: float,
    accuracy_m: Optional[float],
    now: Optional[datetime],
) -> Tuple[GeofenceResult, List[WorkerTaskAssignment]]:
    target = _check_transition(assignment, action)
    result = check_location(assignment, latitude, longitude, accuracy_m)
    now = now or utc_now()
    try:
        paused = pause_other_active(db, assignment, now)
        if action == "resume":
            close_pause(assignment, now)
        elif assignment.start_time is None:
            assignment.start_time = now
        _set_status(assignment, target, now)
        assignment.geofence_validation = {
            "lastValidated": _iso(now),
            "latitude": latitude,
            "longitude": longitude,
            "insideGeofence": result.inside_geofence,
            "distance": result.distance_m,
        }
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise ConcurrentTaskStart(
            "Another task was started for this employee at the same time", "CONCURRENT_TASK_START"
        ) from exc
    return result, paused


def start_task(
    db: Session,
    assignment: WorkerTaskAssignment,
    latitude: float,
    longitude: float,
    accuracy_m: Optional[float] = None,
    now: Optional[datetime] = None,
) -> Tuple[GeofenceResult, List[WorkerTaskAssignment]]:
    """Start a queued task. Returns the geofence result and the tasks that were paused."""
    return _activate(db, assignment, "start", latitude, longitude, accuracy_m, now)


def resume_task(
    db: Session,
    assignment: WorkerTaskAssignment,
    latitude: float,
    longitude: float,
    accuracy_m: Optional[float] = None,
    now: Optional[datetime] = None,
) -> Tuple[GeofenceResult, List[WorkerTaskAssignment]]:
    """Resume a paused task, pausing whatever else the employee had running."""
    return _activate(db, assignment, "resume", latitude, longitude, accuracy_m, now)


def pause_task(db: Session, assignment: WorkerTaskAssignment, now: Optional[datetime] = None) -> WorkerTaskAssignment:
    target = _check_transition(assignment, "pause")
    now = now or utc_now()
    _set_status(assignment, target, now)
    append_pause(assignment, now)
    db.flush()
    return assignment


def complete_task(db: Session, assignment: WorkerTaskAssignment, now: Optional[datetime] = None) -> WorkerTaskAssignment:
    target = _check_transition(assignment, "complete")
    now = now or utc_now()
    _set_status(assignment, target, now)
    assignment.end_time = now
    assignment.progress_percent = 100
    db.flush()
    return assignment


def update_progress(
    db: Session,
    assignment: WorkerTaskAssignment,
    progress_percent: float,
    actual_output: Optional[float] = None,
    now: Optional[datetime] = None,
) -> WorkerTaskAssignment:
    if assignment.status != IN_PROGRESS:
        raise InvalidTransition("Progress can only be updated on a task in progress", "TASK_NOT_IN_PROGRESS")
    assignment.progress_percent = min(max(float(progress_percent), 0.0), 100.0)
    if actual_output is not None:
        assignment.actual_output = max(float(actual_output), 0.0)
    assignment.updated_at = now or utc_now()
    db.flush()
    return assignment


def progress_today(assignment: WorkerTaskAssignment) -> Optional[dict]:
    target = assignment.daily_target or {}
    quantity = target.get("quantity")
    if not quantity:
        return None
    completed = assignment.actual_output or 0
    percentage = round(completed / float(quantity) * 100) if quantity > 0 else 0
    return {"completed": completed, "target": quantity, "percentage": min(percentage, 100)}
