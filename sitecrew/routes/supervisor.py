"""
Supervisor routes.
Assign tasks, watch active work per project and spot single-active-task conflicts.
"""
from datetime import date as date_type
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..auth.security import require_supervisor
from ..db import get_db
from ..models.models import Employee, Project, Task, User, WorkerTaskAssignment
from ..schemas.tasks import AssignTaskRequest, TaskStatus
from ..services.maintenance import find_multiple_in_progress
from ..services.permissions import can_manage_assignment, get_employee_for_user
from ..services.time_rules import local_work_day, utc_now
from .worker import parse_uuid, serialize_assignment, status_summary, today_assignments


router = APIRouter(prefix="/supervisor", tags=["supervisor"])
logger = structlog.get_logger(__name__)


@router.get("/active-tasks/{project_id}")
def list_active_tasks(
    project_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(require_supervisor),
):
    project_uuid = parse_uuid(project_id, "project")
    project = db.query(Project).filter(Project.id == project_uuid).first()
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")

    today = local_work_day(utc_now(), project.timezone)
    assignments = (
        db.query(WorkerTaskAssignment)
        .filter(
            WorkerTaskAssignment.project_id == project.id,
            WorkerTaskAssignment.date >= today,
            WorkerTaskAssignment.status.in_(
                [TaskStatus.queued.value, TaskStatus.in_progress.value, TaskStatus.paused.value]
            ),
        )
        .order_by(WorkerTaskAssignment.date, WorkerTaskAssignment.employee_id, WorkerTaskAssignment.sequence)
        .all()
    )
    summary = status_summary(assignments)
    return {
        "project": {"id": str(project.id), "name": project.name, "code": project.code},
        "date": today.isoformat(),
        "active_tasks": [serialize_assignment(a) for a in assignments],
        "summary": {
            "total_active": summary["total"],
            "queued": summary["queued"],
            "in_progress": summary["in_progress"],
            "paused": summary["paused"],
        },
    }


@router.post("/assign-task", status_code=201)
def assign_task(
    payload: AssignTaskRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_supervisor),
):
    employee = db.query(Employee).filter(Employee.id == payload.employee_id).first()
    if not employee or (employee.status or "").lower() != "active":
        raise HTTPException(status_code=404, detail="Employee not found")
    project = db.query(Project).filter(Project.id == payload.project_id).first()
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    task = db.query(Task).filter(Task.id == payload.task_id).first()
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    if task.project_id != project.id:
        raise HTTPException(status_code=400, detail="Task does not belong to this project")

    work_day = payload.date or local_work_day(utc_now(), project.timezone)
    sequence = payload.sequence
    if sequence is None:
        current_max = (
            db.query(func.max(WorkerTaskAssignment.sequence))
            .filter(WorkerTaskAssignment.employee_id == employee.id, WorkerTaskAssignment.date == work_day)
            .scalar()
        )
        sequence = (current_max or 0) + 1

    supervisor = get_employee_for_user(db, user)
    now = utc_now()
    assignment = WorkerTaskAssignment(
        employee_id=employee.id,
        project_id=project.id,
        task_id=task.id,
        supervisor_id=supervisor.id if supervisor else None,
        date=work_day,
        sequence=sequence,
        status=TaskStatus.queued.value,
        daily_target=payload.daily_target.model_dump() if payload.daily_target else None,
        pause_history=[],
        created_at=now,
        updated_at=now,
    )
    db.add(assignment)
    db.commit()
    db.refresh(assignment)
    logger.info(
        "task_assigned",
        assignment_id=str(assignment.id),
        employee_id=str(employee.id),
        project_id=str(project.id),
        date=work_day.isoformat(),
    )
    return serialize_assignment(assignment)


@router.delete("/assignments/{assignment_id}")
def delete_assignment(
    assignment_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(require_supervisor),
):
    assignment_uuid = parse_uuid(assignment_id, "task assignment")
    assignment = db.query(WorkerTaskAssignment).filter(WorkerTaskAssignment.id == assignment_uuid).first()
    if not assignment:
        raise HTTPException(status_code=404, detail="Task assignment not found")
    if not can_manage_assignment(user, get_employee_for_user(db, user), assignment):
        raise HTTPException(status_code=403, detail="Forbidden")
    if assignment.status != TaskStatus.queued.value:
        raise HTTPException(status_code=400, detail="Only queued assignments can be removed")
    db.delete(assignment)
    db.commit()
    logger.info("task_unassigned", assignment_id=assignment_id)
    return {"status": "ok"}


@router.get("/workers/{employee_id}/tasks")
def list_worker_tasks(
    employee_id: str,
    date: Optional[date_type] = Query(default=None),
    db: Session = Depends(get_db),
    user: User = Depends(require_supervisor),
):
    employee_uuid = parse_uuid(employee_id, "employee")
    employee = db.query(Employee).filter(Employee.id == employee_uuid).first()
    if not employee:
        raise HTTPException(status_code=404, detail="Employee not found")
    if date is None:
        assignments = today_assignments(db, employee.id)
    else:
        assignments = (
            db.query(WorkerTaskAssignment)
            .filter(WorkerTaskAssignment.employee_id == employee.id, WorkerTaskAssignment.date == date)
            .order_by(WorkerTaskAssignment.sequence, WorkerTaskAssignment.created_at)
            .all()
        )
    return {
        "employee": {"id": str(employee.id), "name": employee.full_name},
        "dates": [date.isoformat()] if date else sorted({a.date.isoformat() for a in assignments}),
        "tasks": [serialize_assignment(a) for a in assignments],
        "summary": status_summary(assignments),
    }


@router.get("/task-conflicts")
def list_task_conflicts(db: Session = Depends(get_db), user: User = Depends(require_supervisor)):
    conflicts = []
    for employee_id, assignments in find_multiple_in_progress(db).items():
        employee = assignments[0].employee
        conflicts.append({
            "employee_id": str(employee_id),
            "employee_name": employee.full_name if employee else None,
            "in_progress": [
                {
                    "id": str(a.id),
                    "task_id": str(a.task_id),
                    "project_id": str(a.project_id),
                    "start_time": a.start_time.isoformat() if a.start_time else None,
                }
                for a in assignments
            ],
        })
    return {"count": len(conflicts), "conflicts": conflicts}
