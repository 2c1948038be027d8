import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Column,
    String,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    Table,
    Integer,
    Float,
    JSON,
    UniqueConstraint,
    Text,
    Index,
    Uuid,
    text,
)
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


SINGLE_ACTIVE_TASK_INDEX = "uq_worker_task_single_in_progress"


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)


# Association table for many-to-many User<->Role
user_roles = Table(
    "user_roles",
    Base.metadata,
    Column("user_id", Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", Uuid(as_uuid=True), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    UniqueConstraint("user_id", "role_id", name="uq_user_role"),
)


class Role(Base):
    __tablename__ = "roles"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)  # worker|supervisor|admin
    description: Mapped[Optional[str]] = mapped_column(String(255))

    users = relationship("User", secondary=user_roles, back_populates="roles")


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = uuid_pk()
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    roles = relationship("Role", secondary=user_roles, back_populates="users")
    employee = relationship("Employee", back_populates="user", uselist=False)


class Employee(Base):
    __tablename__ = "employees"

    id: Mapped[uuid.UUID] = uuid_pk()
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), unique=True, index=True
    )
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="active")  # active|inactive
    supervisor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("employees.id", ondelete="SET NULL"), index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    user = relationship("User", back_populates="employee")
    supervisor = relationship("Employee", remote_side="Employee.id")


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[uuid.UUID] = uuid_pk()
    code: Mapped[Optional[str]] = mapped_column(String(50), unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    timezone: Mapped[Optional[str]] = mapped_column(String(64))
    # Legacy site location, used when no geofence center is configured
    latitude: Mapped[Optional[float]] = mapped_column(Float)
    longitude: Mapped[Optional[float]] = mapped_column(Float)
    # Geofence
    geofence_lat: Mapped[Optional[float]] = mapped_column(Float)
    geofence_lng: Mapped[Optional[float]] = mapped_column(Float)
    geofence_radius_m: Mapped[Optional[float]] = mapped_column(Float)
    geofence_strict_mode: Mapped[Optional[bool]] = mapped_column(Boolean, default=True)
    geofence_allowed_variance_m: Mapped[Optional[float]] = mapped_column(Float)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


class Task(Base):
    __tablename__ = "tasks"

    id: Mapped[uuid.UUID] = uuid_pk()
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    project = relationship("Project")


class WorkerTaskAssignment(Base):
    """A task handed to one employee for one work day."""
    __tablename__ = "worker_task_assignments"

    id: Mapped[uuid.UUID] = uuid_pk()
    employee_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True
    )
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    task_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    supervisor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("employees.id", ondelete="SET NULL"), index=True
    )
    date: Mapped[Date] = mapped_column(Date, nullable=False, index=True)  # Work day (project-local)
    sequence: Mapped[int] = mapped_column(Integer, default=1)
    status: Mapped[str] = mapped_column(String(20), default="queued", nullable=False)  # queued|in_progress|paused|completed
    daily_target: Mapped[Optional[dict]] = mapped_column(JSON)  # {quantity, unit, description}
    progress_percent: Mapped[float] = mapped_column(Float, default=0)
    actual_output: Mapped[float] = mapped_column(Float, default=0)
    start_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    pause_history: Mapped[Optional[list]] = mapped_column(JSON, default=list)  # [{pausedAt, resumedAt}]
    geofence_validation: Mapped[Optional[dict]] = mapped_column(JSON)  # {lastValidated, latitude, longitude}
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    employee = relationship("Employee", foreign_keys=[employee_id])
    project = relationship("Project")
    task = relationship("Task")

    __table_args__ = (
        Index('idx_assignment_employee_date', 'employee_id', 'date'),
        Index('idx_assignment_project_status', 'project_id', 'status'),
        # At most one in_progress assignment per employee
        Index(
            SINGLE_ACTIVE_TASK_INDEX,
            'employee_id',
            unique=True,
            sqlite_where=text("status = 'in_progress'"),
            postgresql_where=text("status = 'in_progress'"),
        ),
    )


class Attendance(Base):
    """Daily check-in/out, one row per employee, project and work day"""
    __tablename__ = "attendance"

    id: Mapped[uuid.UUID] = uuid_pk()
    employee_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True
    )
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)  # UTC midnight of the work day
    check_in: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    check_out: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    pending_checkout: Mapped[bool] = mapped_column(Boolean, default=False)
    inside_geofence_at_checkin: Mapped[Optional[bool]] = mapped_column(Boolean)
    inside_geofence_at_checkout: Mapped[Optional[bool]] = mapped_column(Boolean)
    check_in_lat: Mapped[Optional[float]] = mapped_column(Float)
    check_in_lng: Mapped[Optional[float]] = mapped_column(Float)
    check_out_lat: Mapped[Optional[float]] = mapped_column(Float)
    check_out_lng: Mapped[Optional[float]] = mapped_column(Float)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("employee_id", "project_id", "date", name="uq_attendance_employee_project_date"),
        Index('idx_attendance_project_date', 'project_id', 'date'),
    )


class LocationLog(Base):
    """Audit trail of positions reported by the mobile app"""
    __tablename__ = "location_logs"

    id: Mapped[uuid.UUID] = uuid_pk()
    employee_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True
    )
    project_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("projects.id", ondelete="SET NULL"), index=True
    )
    task_assignment_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("worker_task_assignments.id", ondelete="SET NULL")
    )
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    accuracy_m: Mapped[Optional[float]] = mapped_column(Float)
    inside_geofence: Mapped[Optional[bool]] = mapped_column(Boolean)
    distance_m: Mapped[Optional[float]] = mapped_column(Float)
    log_type: Mapped[str] = mapped_column(String(32), nullable=False)  # GEOFENCE_VALIDATION|GEOFENCE_VIOLATION|TASK_START|TASK_RESUME|CHECK_IN|CHECK_OUT
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, index=True)

    __table_args__ = (
        Index('idx_location_logs_employee_created', 'employee_id', 'created_at'),
    )
