import uuid
import datetime
from typing import Optional
from enum import Enum

from pydantic import BaseModel, Field, field_validator


class TaskStatus(str, Enum):
    queued = "queued"
    in_progress = "in_progress"
    paused = "paused"
    completed = "completed"


class Location(BaseModel):
    latitude: float
    longitude: float
    accuracy: Optional[float] = Field(default=None, ge=0, le=1000)

    @field_validator("latitude")
    @classmethod
    def _latitude_range(cls, v: float) -> float:
        if not -90 <= v <= 90:
            raise ValueError("latitude must be between -90 and 90")
        return v

    @field_validator("longitude")
    @classmethod
    def _longitude_range(cls, v: float) -> float:
        if not -180 <= v <= 180:
            raise ValueError("longitude must be between -180 and 180")
        return v


class TaskLocationPayload(BaseModel):
    location: Location


class ProgressUpdate(BaseModel):
    progress_percent: float = Field(ge=0, le=100)
    actual_output: Optional[float] = Field(default=None, ge=0)


class DailyTarget(BaseModel):
    quantity: float = Field(ge=0)
    unit: str
    description: Optional[str] = None


class AssignTaskRequest(BaseModel):
    employee_id: uuid.UUID
    project_id: uuid.UUID
    task_id: uuid.UUID
    date: Optional[datetime.date] = None
    sequence: Optional[int] = Field(default=None, ge=1)
    daily_target: Optional[DailyTarget] = None
