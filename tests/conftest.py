import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("RATE_LIMIT", "10000/minute")
os.environ.setdefault("TZ_DEFAULT", "Asia/Kolkata")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from sitecrew.auth.security import create_access_token, get_password_hash
from sitecrew.db import Base, get_db
from sitecrew.models.models import Employee, Project, Role, Task, User, WorkerTaskAssignment
from sitecrew.services.time_rules import local_work_day, utc_now


SITE_LAT = 12.9716
SITE_LNG = 77.5946
PASSWORD = "secret-pass"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db):
    from sitecrew.main import app

    def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


class Factory:
    def __init__(self, db):
        self.db = db

    def role(self, name):
        role = self.db.query(Role).filter(Role.name == name).first()
        if role is None:
            role = Role(name=name, description=name.title())
            self.db.add(role)
            self.db.flush()
        return role

    def user(self, username, roles=("worker",), with_employee=True, supervisor=None):
        user = User(
            username=username,
            email=f"{username}@example.com",
            password_hash=get_password_hash(PASSWORD),
            is_active=True,
        )
        user.roles = [self.role(name) for name in roles]
        self.db.add(user)
        self.db.flush()
        if with_employee:
            self.db.add(Employee(
                user_id=user.id,
                full_name=username.title(),
                status="active",
                supervisor_id=supervisor.id if supervisor else None,
            ))
            self.db.flush()
        self.db.commit()
        return user

    def employee(self, user):
        return self.db.query(Employee).filter(Employee.user_id == user.id).one()

    def project(self, code="PRJ-1", strict=True, radius=100, variance=10, timezone="Asia/Kolkata", **extra):
        values = dict(
            code=code,
            name=f"Project {code}",
            timezone=timezone,
            geofence_lat=SITE_LAT,
            geofence_lng=SITE_LNG,
            geofence_radius_m=radius,
            geofence_strict_mode=strict,
            geofence_allowed_variance_m=variance,
        )
        values.update(extra)
        project = Project(**values)
        self.db.add(project)
        self.db.commit()
        return project

    def task(self, project, name="Install rebar"):
        task = Task(project_id=project.id, name=name, description=f"{name} on level 3")
        self.db.add(task)
        self.db.commit()
        return task

    def assignment(self, employee, project, task=None, status="queued", work_day=None, sequence=1, **extra):
        task = task or self.task(project, name=f"Task {sequence}")
        assignment = WorkerTaskAssignment(
            employee_id=employee.id,
            project_id=project.id,
            task_id=task.id,
            date=work_day or local_work_day(utc_now(), project.timezone),
            sequence=sequence,
            status=status,
            pause_history=[],
            **extra,
        )
        self.db.add(assignment)
        self.db.commit()
        return assignment


@pytest.fixture
def factory(db):
    return Factory(db)


def auth_headers(user):
    token = create_access_token(str(user.id), roles=[r.name for r in user.roles])
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers():
    return auth_headers
