"""
Location audit trail.
Every position the mobile app reports for a geofenced action is kept.
"""
import uuid
from typing import Optional

from sqlalchemy.orm import Session

from ..models.models import LocationLog
from .geofence import GeofenceResult
from .time_rules import utc_now


def record_location(
    db: Session,
    *,
    employee_id: uuid.UUID,
    latitude: float,
    longitude: float,
    log_type: str,
    project_id: Optional[uuid.UUID] = None,
    task_assignment_id: Optional[uuid.UUID] = None,
    accuracy_m: Optional[float] = None,
    result: Optional[GeofenceResult] = None,
) -> LocationLog:
    log = LocationLog(
        employee_id=employee_id,
        project_id=project_id,
        task_assignment_id=task_assignment_id,
        latitude=latitude,
        longitude=longitude,
        accuracy_m=accuracy_m,
        inside_geofence=result.inside_geofence if result else None,
        distance_m=result.distance_m if result else None,
        log_type=log_type,
        created_at=utc_now(),
    )
    db.add(log)
    return log
