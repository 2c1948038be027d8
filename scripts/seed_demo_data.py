"""
Seed the local database with a demo project, a supervisor and two workers
with tasks assigned for today.

Usage:
  python scripts/seed_demo_data.py

This script is idempotent: running it multiple times upserts the same
records based on unique fields (username for users, code for projects,
name for tasks within a project).
"""
import sys
import os
from typing import List

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sitecrew.db import SessionLocal, Base, engine
from sitecrew.config import settings
from sitecrew.models.models import Employee, Project, Role, Task, User, WorkerTaskAssignment
from sitecrew.auth.security import get_password_hash
from sitecrew.services.time_rules import local_work_day, utc_now


DEMO_PASSWORD = "password123"


def ensure_role(session, name: str, description: str = "") -> Role:
    role = session.query(Role).filter(Role.name == name).first()
    if role:
        return role
    role = Role(name=name, description=description or name.title())
    session.add(role)
    session.flush()
    return role


def ensure_user(session, username: str, full_name: str, roles: List[str], supervisor: Employee = None) -> Employee:
    user = session.query(User).filter(User.username == username).first()
    if not user:
        user = User(
            username=username,
            email=f"{username}@example.com",
            password_hash=get_password_hash(DEMO_PASSWORD),
            is_active=True,
        )
        session.add(user)
        session.flush()
    for role_name in roles:
        role = ensure_role(session, role_name)
        if role not in user.roles:
            user.roles.append(role)

    employee = session.query(Employee).filter(Employee.user_id == user.id).first()
    if not employee:
        employee = Employee(user_id=user.id, full_name=full_name, status="active")
        session.add(employee)
    employee.supervisor_id = supervisor.id if supervisor else None
    session.flush()
    return employee


def ensure_project(session) -> Project:
    project = session.query(Project).filter(Project.code == "DEMO-001").first()
    if project:
        return project
    project = Project(
        code="DEMO-001",
        name="Demo Tower Site",
        timezone=settings.tz_default,
        geofence_lat=12.9716,
        geofence_lng=77.5946,
        geofence_radius_m=150,
        geofence_strict_mode=True,
        geofence_allowed_variance_m=10,
    )
    session.add(project)
    session.flush()
    return project


def ensure_task(session, project: Project, name: str, description: str) -> Task:
    task = session.query(Task).filter(Task.project_id == project.id, Task.name == name).first()
    if task:
        return task
    task = Task(project_id=project.id, name=name, description=description)
    session.add(task)
    session.flush()
    return task


def ensure_assignment(session, employee: Employee, task: Task, supervisor: Employee, sequence: int, target: dict):
    work_day = local_work_day(utc_now(), task.project.timezone)
    existing = (
        session.query(WorkerTaskAssignment)
        .filter(
            WorkerTaskAssignment.employee_id == employee.id,
            WorkerTaskAssignment.task_id == task.id,
            WorkerTaskAssignment.date == work_day,
        )
        .first()
    )
    if existing:
        return existing
    assignment = WorkerTaskAssignment(
        employee_id=employee.id,
        project_id=task.project_id,
        task_id=task.id,
        supervisor_id=supervisor.id,
        date=work_day,
        sequence=sequence,
        status="queued",
        daily_target=target,
        pause_history=[],
    )
    session.add(assignment)
    return assignment


def main():
    if settings.database_url.startswith("sqlite:///./"):
        os.makedirs("var", exist_ok=True)
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        ensure_role(db, "admin", "Administrator")
        ensure_role(db, "supervisor", "Site supervisor")
        ensure_role(db, "worker", "Field worker")

        supervisor = ensure_user(db, "supervisor", "Sam Supervisor", ["supervisor"])
        workers = [
            ensure_user(db, "worker1", "Ravi Kumar", ["worker"], supervisor=supervisor),
            ensure_user(db, "worker2", "Anita Sharma", ["worker"], supervisor=supervisor),
        ]
        project = ensure_project(db)
        tasks = [
            ensure_task(db, project, "Install rebar", "Level 3 slab reinforcement"),
            ensure_task(db, project, "Pour concrete", "Level 3 slab"),
        ]
        for worker in workers:
            ensure_assignment(db, worker, tasks[0], supervisor, 1, {"quantity": 40, "unit": "bars"})
            ensure_assignment(db, worker, tasks[1], supervisor, 2, {"quantity": 12, "unit": "m3"})
        db.commit()
        print("[OK] Demo data seeded")
        print(f"     Users: supervisor, worker1, worker2 (password: {DEMO_PASSWORD})")
        print(f"     Project: {project.code} ({project.id})")
        return 0
    except Exception as e:
        db.rollback()
        print(f"[ERROR] Error: {e}")
        import traceback
        traceback.print_exc()
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    exit(main())
