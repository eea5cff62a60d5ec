from sqlmodel import SQLModel, Field
from sqlalchemy import UniqueConstraint
from typing import Optional
from datetime import datetime, timezone
from enum import Enum
import uuid


class WaypointState(str, Enum):
    PRESENTED = "PRESENTED"
    CHECKED_IN = "CHECKED_IN"
    VERIFIED = "VERIFIED"


class ParticipantBase(SQLModel):
    challenge_id: int = Field(foreign_key="challenge_head.challenge_id", index=True)
    user_id: int = Field(index=True)
    nickname: Optional[str] = Field(default=None, max_length=100)
    current_waypoint_id: Optional[int] = Field(default=None, foreign_key="waypoint_index.waypoint_id")
    current_state: WaypointState = Field(default=WaypointState.PRESENTED)
    joined_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_updated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Participant(ParticipantBase, table=True):
    __tablename__ = "challenge_participant"
    # One enrollment per user per challenge
    __table_args__ = (UniqueConstraint("challenge_id", "user_id", name="uq_participant_challenge_user"),)

    participant_id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    # Bumped on every write, updates compare-and-swap on it
    row_version: int = Field(default=1)


class ParticipantPublic(ParticipantBase):
    participant_id: uuid.UUID
