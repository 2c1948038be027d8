"""
Data inspection and repair routines behind the scripts/ entry points.

Every repair takes an ``apply`` flag: without it the changes are computed and
reported but the session is rolled back by the caller.
"""
import uuid
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional

import structlog
from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from ..models.models import (
    Attendance,
    Project,
    SINGLE_ACTIVE_TASK_INDEX,
    WorkerTaskAssignment,
)
from .geofence import project_geofence, validate_geofence
from .task_lifecycle import IN_PROGRESS, PAUSED, append_pause
from .time_rules import ensure_utc, is_utc_midnight, normalize_attendance_date, utc_now


logger = structlog.get_logger(__name__)


class MaintenanceError(Exception):
    pass


def find_multiple_in_progress(db: Session) -> Dict[uuid.UUID, List[WorkerTaskAssignment]]:
    """Employees with more than one in_progress assignment, most recently started first."""
    rows = db.query(WorkerTaskAssignment).filter(WorkerTaskAssignment.status == IN_PROGRESS).all()
    grouped: Dict[uuid.UUID, List[WorkerTaskAssignment]] = defaultdict(list)
    for row in rows:
        grouped[row.employee_id].append(row)
    conflicts = {}
    for employee_id, assignments in grouped.items():
        if len(assignments) > 1:
            assignments.sort(key=_start_sort_key, reverse=True)
            conflicts[employee_id] = assignments
    return conflicts


def _start_sort_key(assignment: WorkerTaskAssignment):
    started = assignment.start_time or assignment.updated_at or assignment.created_at
    return ensure_utc(started or datetime.min)


def repair_multiple_in_progress(db: Session, apply: bool = False, now: Optional[datetime] = None) -> List[dict]:
    """
    Keep the most recently started assignment per employee in progress, pause the rest.

    Returns one report entry per employee with the kept and paused assignment ids.
    """
    now = now or utc_now()
    report = []
    for employee_id, assignments in find_multiple_in_progress(db).items():
        keep, extra = assignments[0], assignments[1:]
        report.append({
            "employee_id": str(employee_id),
            "kept": str(keep.id),
            "paused": [str(a.id) for a in extra],
        })
        if not apply:
            continue
        for assignment in extra:
            assignment.status = PAUSED
            assignment.updated_at = now
            append_pause(assignment, now)
        logger.info("repaired_multiple_in_progress", employee_id=str(employee_id), paused=len(extra))
    if apply:
        db.flush()
    return report


def _normalized_key(row: Attendance, project: Optional[Project]) -> datetime:
    """Day key the row should carry: from its check-in when set, else from the stored date."""
    timezone_str = project.timezone if project else None
    if row.check_in:
        return normalize_attendance_date(row.check_in, timezone_str)
    if is_utc_midnight(row.date):
        return ensure_utc(row.date)
    return normalize_attendance_date(row.date, timezone_str)


def _projects_by_id(db: Session) -> Dict[uuid.UUID, Project]:
    return {p.id: p for p in db.query(Project).all()}


def find_unnormalized_attendance(db: Session) -> List[Attendance]:
    projects = _projects_by_id(db)
    return [
        row for row in db.query(Attendance).all()
        if ensure_utc(row.date) != _normalized_key(row, projects.get(row.project_id))
    ]


def _merge_attendance(target: Attendance, duplicate: Attendance) -> None:
    if duplicate.check_in and (not target.check_in or ensure_utc(duplicate.check_in) < ensure_utc(target.check_in)):
        target.check_in = duplicate.check_in
        target.check_in_lat = duplicate.check_in_lat
        target.check_in_lng = duplicate.check_in_lng
        target.inside_geofence_at_checkin = duplicate.inside_geofence_at_checkin
    if duplicate.check_out and (not target.check_out or ensure_utc(duplicate.check_out) > ensure_utc(target.check_out)):
        target.check_out = duplicate.check_out
        target.check_out_lat = duplicate.check_out_lat
        target.check_out_lng = duplicate.check_out_lng
        target.inside_geofence_at_checkout = duplicate.inside_geofence_at_checkout
    target.pending_checkout = bool(target.check_in and not target.check_out)


def repair_attendance_dates(db: Session, apply: bool = False) -> dict:
    """
    Rewrite attendance day keys to the UTC midnight of the project-local day.

    The local day is taken from the check-in when present, otherwise from the
    stored date. A midnight key that disagrees with its own check-in is moved
    too. Rows that collapse onto the same key are merged.
    """
    projects = _projects_by_id(db)
    rows = db.query(Attendance).order_by(Attendance.created_at).all()

    by_key: Dict[tuple, Attendance] = {}
    pending = []
    for row in rows:
        new_key = _normalized_key(row, projects.get(row.project_id))
        if ensure_utc(row.date) == new_key:
            by_key[(row.employee_id, row.project_id, new_key)] = row
        else:
            pending.append((row, new_key))

    updated, merged = [], []
    for row, new_key in pending:
        key = (row.employee_id, row.project_id, new_key)
        existing = by_key.get(key)
        if existing is not None and existing is not row:
            merged.append({"removed": str(row.id), "into": str(existing.id), "date": new_key.isoformat()})
            if apply:
                _merge_attendance(existing, row)
                db.delete(row)
            continue
        updated.append({"id": str(row.id), "from": ensure_utc(row.date).isoformat(), "to": new_key.isoformat()})
        by_key[key] = row
        if apply:
            row.date = new_key
            row.updated_at = utc_now()
    if apply:
        db.flush()
    return {"updated": updated, "merged": merged}


def _index_names(engine: Engine) -> List[str]:
    return [ix["name"] for ix in inspect(engine).get_indexes(WorkerTaskAssignment.__tablename__)]


def has_single_active_index(engine: Engine) -> bool:
    return SINGLE_ACTIVE_TASK_INDEX in _index_names(engine)


def ensure_single_active_index(engine: Engine) -> bool:
    """
    Create the partial unique index if missing. Returns True when it was created.

    Fails when existing rows already violate it; run the in_progress repair first.
    """
    if has_single_active_index(engine):
        return False
    table = WorkerTaskAssignment.__tablename__
    with engine.begin() as conn:
        duplicates = conn.execute(
            text(
                f"SELECT employee_id, COUNT(*) FROM {table} "
                "WHERE status = 'in_progress' GROUP BY employee_id HAVING COUNT(*) > 1"
            )
        ).fetchall()
        if duplicates:
            raise MaintenanceError(
                f"{len(duplicates)} employee(s) have more than one in_progress task; "
                "run scripts/fix_multiple_in_progress.py --yes first"
            )
        conn.execute(
            text(
                f"CREATE UNIQUE INDEX IF NOT EXISTS {SINGLE_ACTIVE_TASK_INDEX} "
                f"ON {table} (employee_id) WHERE status = 'in_progress'"
            )
        )
    logger.info("single_active_index_created", index=SINGLE_ACTIVE_TASK_INDEX)
    return True


def geofence_report(project: Project, latitude: float, longitude: float, accuracy_m: Optional[float] = None) -> dict:
    geofence = project_geofence(project)
    result = validate_geofence(latitude, longitude, geofence, accuracy_m)
    return {
        "project": {"id": str(project.id), "name": project.name, "code": project.code},
        "geofence": geofence.to_dict(),
        "configured": project.geofence_lat is not None and project.geofence_lng is not None,
        "result": result.to_dict(),
    }
