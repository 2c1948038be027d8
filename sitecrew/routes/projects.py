from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
import structlog

from ..db import get_db
from ..models.models import Project, User
from ..auth.security import require_supervisor
from ..schemas.attendance import GeofenceUpdate
from ..services.geofence import project_geofence
from ..services.time_rules import utc_now
from .worker import parse_uuid


router = APIRouter(prefix="/projects", tags=["projects"])
logger = structlog.get_logger(__name__)


def _get_project(project_id: str, db: Session) -> Project:
    project = db.query(Project).filter(Project.id == parse_uuid(project_id, "project")).first()
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


def _geofence_payload(project: Project) -> dict:
    return {
        "project_id": str(project.id),
        "name": project.name,
        "configured": project.geofence_lat is not None and project.geofence_lng is not None,
        "geofence": project_geofence(project).to_dict(),
    }


@router.get("/{project_id}/geofence")
def get_geofence(project_id: str, db: Session = Depends(get_db), user: User = Depends(require_supervisor)):
    return _geofence_payload(_get_project(project_id, db))


@router.put("/{project_id}/geofence")
def update_geofence(
    project_id: str,
    payload: GeofenceUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_supervisor),
):
    project = _get_project(project_id, db)
    project.geofence_lat = payload.latitude
    project.geofence_lng = payload.longitude
    project.geofence_radius_m = payload.radius
    project.geofence_strict_mode = payload.strict_mode
    if payload.allowed_variance is not None:
        project.geofence_allowed_variance_m = payload.allowed_variance
    project.updated_at = utc_now()
    db.commit()
    db.refresh(project)
    logger.info(
        "project_geofence_updated",
        project_id=str(project.id),
        radius_m=payload.radius,
        strict_mode=payload.strict_mode,
    )
    return _geofence_payload(project)
