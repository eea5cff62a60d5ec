from sqlmodel import SQLModel, Field
from sqlalchemy import JSON, Column
from typing import Any, Dict, Optional
from datetime import datetime, timezone
from enum import Enum
import uuid


class AuditEventType(str, Enum):
    CHALLENGE_CREATED = "CHALLENGE_CREATED"
    CHALLENGE_UPDATED = "CHALLENGE_UPDATED"
    CHALLENGE_STARTED = "CHALLENGE_STARTED"
    PARTICIPANT_INVITED = "PARTICIPANT_INVITED"
    WAYPOINT_CHECKED_IN = "WAYPOINT_CHECKED_IN"
    WAYPOINT_PROOF_SUBMITTED = "WAYPOINT_PROOF_SUBMITTED"
    WAYPOINT_VERIFIED = "WAYPOINT_VERIFIED"


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_log"

    log_id: Optional[int] = Field(default=None, primary_key=True)
    event_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)
    event_type: AuditEventType = Field(index=True)
    user_id: Optional[int] = Field(default=None, index=True)
    participant_id: Optional[uuid.UUID] = Field(default=None, index=True)
    challenge_id: Optional[int] = Field(default=None, index=True)
    waypoint_id: Optional[int] = None
    event_data: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    outcome: Optional[str] = Field(default=None, max_length=50)
