from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..config import DEFAULT_RADIUS_METERS


class ChallengeType(str, Enum):
    RECREATIONAL = "REC"
    COMPETITIVE = "COM"
    RESTRICTED = "RES"


class GeoLocation(BaseModel):
    # Clients send "long", stored payloads use "lon"
    model_config = ConfigDict(populate_by_name=True)

    lat: float
    lon: float = Field(alias="long")


class WaypointDefinition(BaseModel):
    id: Optional[int] = None
    sequence: int
    target_location: GeoLocation
    radius_meters: float = DEFAULT_RADIUS_METERS
    clue: str
    hints: List[str] = Field(default_factory=list)
    time_budget_minutes: Optional[int] = None
    expected_subject: str
    created_at: Optional[datetime] = None


class PayloadMetadata(BaseModel):
    created_at: datetime
    updated_at: datetime
    version_notes: Optional[str] = None


class ChallengePayload(BaseModel):
    """The JSON document stored with every challenge version."""

    description: Optional[str] = None
    moderator_id: int
    actual_start_time: Optional[datetime] = None
    duration_minutes: int
    type: ChallengeType = ChallengeType.RECREATIONAL
    active: bool = True
    waypoints: List[WaypointDefinition] = Field(default_factory=list)
    metadata: PayloadMetadata

    @property
    def started(self) -> bool:
        return self.actual_start_time is not None

    def end_time(self) -> Optional[datetime]:
        if self.actual_start_time is None:
            return None
        return self.actual_start_time + timedelta(minutes=self.duration_minutes)

    def is_ended(self, now: Optional[datetime] = None) -> bool:
        end = self.end_time()
        if end is None:
            return False
        return (now or datetime.now(timezone.utc)) > end

    def ordered_waypoints(self) -> List[WaypointDefinition]:
        return sorted(self.waypoints, key=lambda w: w.sequence)

    def waypoint(self, waypoint_id: int) -> Optional[WaypointDefinition]:
        return next((w for w in self.waypoints if w.id == waypoint_id), None)

    def waypoint_at(self, sequence: int) -> Optional[WaypointDefinition]:
        return next((w for w in self.waypoints if w.sequence == sequence), None)

    def first_waypoint(self) -> Optional[WaypointDefinition]:
        ordered = self.ordered_waypoints()
        return ordered[0] if ordered else None


class ChallengeCreate(BaseModel):
    name: str
    description: Optional[str] = None
    planned_start_time: datetime
    duration_minutes: int
    type: ChallengeType = ChallengeType.RECREATIONAL
    waypoints: List[WaypointDefinition]


class ChallengeUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    planned_start_time: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    type: Optional[ChallengeType] = None
