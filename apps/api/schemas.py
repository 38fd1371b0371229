from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime, date
from typing import Optional

from models import WeightPreset


class BodyWeightsIn(BaseModel):
    training: int
    sleep: int
    nutrition: int


class MindWeightsIn(BaseModel):
    meditation: int
    reading: int
    learning: int
    journaling: int = 0  # Stored, only scored when journaling is switched on


class WeightConfigUpdate(BaseModel):
    """Requested weight configuration. Sums and signs are checked by the service."""
    preset: WeightPreset
    body: Optional[BodyWeightsIn] = None
    mind: Optional[MindWeightsIn] = None


class TriggerContext(BaseModel):
    """External signals an auto-trigger can match against. Absent fields never match."""
    whoop_recovery: Optional[float] = Field(default=None, ge=0, le=100)  # percent
    whoop_sleep_hours: Optional[float] = Field(default=None, ge=0)
    whoop_strain: Optional[float] = Field(default=None, ge=0, le=21)
    whoop_workout_type_id: Optional[int] = None  # Whoop sport_id
    completed_activity_id: Optional[str] = None


class CompletionResponse(BaseModel):
    id: str
    activity_id: str
    completed_at: datetime
    completed_on: date
    points_earned: int
    xp_earned: int
    details: Optional[str] = None
    source: str

    model_config = ConfigDict(from_attributes=True)
