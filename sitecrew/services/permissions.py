"""
Permission checking service for worker and supervisor operations.
"""
from typing import Optional
from sqlalchemy.orm import Session

from ..models.models import User, Employee, WorkerTaskAssignment


def _role_names(user: User) -> set:
    return {(r.name or "").lower() for r in user.roles}


def is_admin(user: User) -> bool:
    """Check if user has admin role."""
    return "admin" in _role_names(user)


def is_supervisor(user: User) -> bool:
    """Check if user has supervisor role. Admins count as supervisors."""
    names = _role_names(user)
    return "supervisor" in names or "admin" in names


def get_employee_for_user(db: Session, user: User) -> Optional[Employee]:
    """Active employee record linked to the login, if any."""
    employee = db.query(Employee).filter(Employee.user_id == user.id).first()
    if not employee or (employee.status or "").lower() != "active":
        return None
    return employee


def can_manage_assignment(user: User, supervisor_employee: Optional[Employee], assignment: WorkerTaskAssignment) -> bool:
    """
    Check if user can act on another worker's assignment.
    - Admin can act on any assignment
    - Supervisor can act on assignments they supervise, or of workers reporting to them
    """
    if is_admin(user):
        return True
    if not is_supervisor(user) or supervisor_employee is None:
        return False
    if assignment.supervisor_id and assignment.supervisor_id == supervisor_employee.id:
        return True
    worker = assignment.employee
    return bool(worker and worker.supervisor_id == supervisor_employee.id)
