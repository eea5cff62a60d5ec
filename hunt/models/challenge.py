from sqlmodel import SQLModel, Field
from sqlalchemy import JSON, Column, DateTime, Index, UniqueConstraint
from sqlalchemy.dialects import mysql
from typing import Any, Dict, Optional
from datetime import datetime, timezone

from .payload import ChallengePayload

_VALIDITY_TYPE = DateTime().with_variant(mysql.DATETIME(fsp=6), "mysql")


class ChallengeHead(SQLModel, table=True):
    """One row per challenge: allocates the id and points at the current version."""

    __tablename__ = "challenge_head"

    challenge_id: Optional[int] = Field(default=None, primary_key=True)
    current_version_id: Optional[int] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ChallengeVersion(SQLModel, table=True):
    __tablename__ = "challenge_version"
    __table_args__ = (
        Index("ix_challenge_version_temporal", "challenge_id", "validity_start", "validity_end"),
    )

    version_id: Optional[int] = Field(default=None, primary_key=True)
    challenge_id: int = Field(foreign_key="challenge_head.challenge_id", index=True)
    name: str = Field(max_length=200)
    planned_start_time: datetime
    payload: Dict[str, Any] = Field(sa_column=Column(JSON, nullable=False))
    # MySQL DATETIME drops microseconds unless fsp is given, versions must keep strict order
    validity_start: datetime = Field(sa_column=Column(_VALIDITY_TYPE, nullable=False))
    validity_end: Optional[datetime] = Field(default=None, sa_column=Column(_VALIDITY_TYPE, nullable=True))
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_current(self) -> bool:
        return self.validity_end is None

    @property
    def challenge(self) -> ChallengePayload:
        return ChallengePayload.model_validate(self.payload)


class ChallengeVersionPublic(SQLModel):
    version_id: int
    challenge_id: int
    name: str
    planned_start_time: datetime
    payload: ChallengePayload
    validity_start: datetime
    validity_end: Optional[datetime]

    @classmethod
    def from_version(cls, version: ChallengeVersion) -> "ChallengeVersionPublic":
        return cls(
            version_id=version.version_id,
            challenge_id=version.challenge_id,
            name=version.name,
            planned_start_time=version.planned_start_time,
            payload=version.challenge,
            validity_start=version.validity_start,
            validity_end=version.validity_end,
        )


class WaypointIndex(SQLModel, table=True):
    """Global waypoint ids, so a waypoint can be resolved to its challenge."""

    __tablename__ = "waypoint_index"
    __table_args__ = (UniqueConstraint("challenge_id", "sequence", name="uq_waypoint_challenge_sequence"),)

    waypoint_id: Optional[int] = Field(default=None, primary_key=True)
    challenge_id: int = Field(foreign_key="challenge_head.challenge_id", index=True)
    sequence: int
