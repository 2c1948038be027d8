import uuid
from typing import Optional
from enum import Enum

from pydantic import BaseModel, Field


class AttendanceSession(str, Enum):
    checkin = "checkin"
    checkout = "checkout"


class GeofenceCheckRequest(BaseModel):
    project_id: uuid.UUID
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    accuracy: Optional[float] = Field(default=None, ge=0)


class AttendanceSubmitRequest(GeofenceCheckRequest):
    session: AttendanceSession


class GeofenceUpdate(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    radius: float = Field(gt=0)
    strict_mode: bool = True
    allowed_variance: Optional[float] = Field(default=None, ge=0, le=1000)
