import logging
import uuid
from concurrent.futures import Executor
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from ..models.audit_log import AuditEventType, AuditLog

logger = logging.getLogger(__name__)


class AuditLogger:
    """Fire-and-forget audit trail.

    Every record is written in its own session, never inside the caller's
    transaction. Failures are logged and dropped. With an executor the write
    happens off the request thread.
    """

    def __init__(self, engine: Engine, executor: Optional[Executor] = None):
        self.engine = engine
        self.executor = executor

    def record(
        self,
        event_type: AuditEventType,
        user_id: Optional[int] = None,
        participant_id: Optional[uuid.UUID] = None,
        challenge_id: Optional[int] = None,
        waypoint_id: Optional[int] = None,
        event_data: Optional[Dict[str, Any]] = None,
        outcome: Optional[str] = None,
    ) -> None:
        entry = AuditLog(
            event_type=event_type,
            user_id=user_id,
            participant_id=participant_id,
            challenge_id=challenge_id,
            waypoint_id=waypoint_id,
            event_data=event_data,
            outcome=outcome,
        )
        if self.executor is None:
            self._write(entry)
            return
        try:
            self.executor.submit(self._write, entry)
        except RuntimeError as e:
            # Executor already shut down
            logger.warning(f"Failed to queue audit event {event_type.value}: {e}")

    def close(self) -> None:
        """Wait for queued writes, then stop the worker pool."""
        if self.executor is not None:
            self.executor.shutdown(wait=True)

    def _write(self, entry: AuditLog) -> None:
        try:
            with Session(self.engine) as session:
                session.add(entry)
                session.commit()
        except Exception as e:
            logger.warning(f"Failed to write audit event {entry.event_type.value}: {e}")

    def log_challenge_created(self, moderator_id: int, challenge_id: int, name: str, challenge_type: str, waypoint_count: int):
        self.record(
            AuditEventType.CHALLENGE_CREATED,
            user_id=moderator_id,
            challenge_id=challenge_id,
            event_data={
                "challenge_name": name,
                "challenge_type": challenge_type,
                "waypoint_count": waypoint_count,
            },
        )

    def log_challenge_updated(self, moderator_id: int, challenge_id: int, version_id: int, notes: str):
        self.record(
            AuditEventType.CHALLENGE_UPDATED,
            user_id=moderator_id,
            challenge_id=challenge_id,
            event_data={"version_id": version_id, "notes": notes},
        )

    def log_challenge_started(self, moderator_id: int, challenge_id: int, name: str, participant_count: int):
        self.record(
            AuditEventType.CHALLENGE_STARTED,
            user_id=moderator_id,
            challenge_id=challenge_id,
            event_data={"challenge_name": name, "participant_count": participant_count},
        )

    def log_participant_invited(
        self,
        moderator_id: int,
        participant_id: uuid.UUID,
        challenge_id: int,
        invited_user_id: int,
        nickname: Optional[str],
    ):
        self.record(
            AuditEventType.PARTICIPANT_INVITED,
            user_id=moderator_id,
            participant_id=participant_id,
            challenge_id=challenge_id,
            event_data={"invited_user_id": invited_user_id, "nickname": nickname},
        )

    def log_waypoint_checked_in(
        self,
        participant_id: uuid.UUID,
        challenge_id: int,
        waypoint_id: int,
        waypoint_sequence: int,
        lat: float,
        lon: float,
        distance_from_target: Optional[float],
        within_radius: bool,
    ):
        self.record(
            AuditEventType.WAYPOINT_CHECKED_IN,
            participant_id=participant_id,
            challenge_id=challenge_id,
            waypoint_id=waypoint_id,
            event_data={
                "waypoint_sequence": waypoint_sequence,
                "location": {"lat": lat, "lon": lon},
                "distance_from_target": distance_from_target,
                "within_radius": within_radius,
            },
            outcome="success" if within_radius else "too_far",
        )

    def log_waypoint_proof_submitted(
        self,
        participant_id: uuid.UUID,
        challenge_id: int,
        waypoint_id: int,
        waypoint_sequence: int,
        evidence_ref: str,
    ):
        self.record(
            AuditEventType.WAYPOINT_PROOF_SUBMITTED,
            participant_id=participant_id,
            challenge_id=challenge_id,
            waypoint_id=waypoint_id,
            event_data={"waypoint_sequence": waypoint_sequence, "image_path": evidence_ref},
        )

    def log_waypoint_verified(
        self,
        participant_id: uuid.UUID,
        challenge_id: int,
        waypoint_id: int,
        waypoint_sequence: int,
        verification_result: str,
        reasons: Optional[Sequence[str]],
        processing_time_seconds: float,
        processing_id: Optional[str] = None,
    ):
        self.record(
            AuditEventType.WAYPOINT_VERIFIED,
            participant_id=participant_id,
            challenge_id=challenge_id,
            waypoint_id=waypoint_id,
            event_data={
                "waypoint_sequence": waypoint_sequence,
                "processing_id": processing_id,
                "reasons": list(reasons or []),
                "processing_time_seconds": round(processing_time_seconds, 3),
            },
            outcome=verification_result,
        )

    def challenge_logs(self, challenge_id: int) -> List[AuditLog]:
        with Session(self.engine) as session:
            return list(session.exec(
                select(AuditLog)
                .where(AuditLog.challenge_id == challenge_id)
                .order_by(AuditLog.event_time, AuditLog.log_id)
            ).all())

    def participant_logs(self, participant_id: uuid.UUID) -> List[AuditLog]:
        with Session(self.engine) as session:
            return list(session.exec(
                select(AuditLog)
                .where(AuditLog.participant_id == participant_id)
                .order_by(AuditLog.event_time, AuditLog.log_id)
            ).all())
