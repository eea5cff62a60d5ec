import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from sqlalchemy import update
from sqlmodel import Session, select

from ..database import transaction
from ..errors import (
    ConflictReason,
    HuntError,
    NotFound,
    NotFoundKind,
    StateConflict,
    TooFar,
    WriteConflict,
)
from ..models.challenge import ChallengeVersion
from ..models.participant import Participant, WaypointState
from ..models.payload import GeoLocation, WaypointDefinition
from .audit import AuditLogger
from .challenge_store import ChallengeStore, utcnow
from .geo import validate_waypoint_location
from .verification import LocationConstraint, TimeWindow, VerificationService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckInResult:
    participant: Participant
    waypoint: WaypointDefinition
    distance_meters: float


@dataclass(frozen=True)
class ProofOutcome:
    participant: Participant
    waypoint: WaypointDefinition
    accepted: bool
    reasons: List[str] = field(default_factory=list)
    next_waypoint: Optional[WaypointDefinition] = None

    @property
    def hunt_complete(self) -> bool:
        return self.accepted and self.next_waypoint is None


class ParticipantProgression:
    """Drives one participant through Presented -> CheckedIn -> Verified.

    Every write is a single UPDATE guarded by the row's ``row_version``; a
    writer holding a stale copy gets WriteConflict and nothing changes.
    """

    def __init__(
        self,
        session: Session,
        store: Optional[ChallengeStore] = None,
        verifier: Optional[VerificationService] = None,
        audit: Optional[AuditLogger] = None,
    ):
        self.session = session
        self.store = store or ChallengeStore(session)
        self.verifier = verifier
        self.audit = audit

    def get_participant(self, participant_id: uuid.UUID) -> Participant:
        participant = self.session.get(Participant, participant_id)
        if not participant:
            raise NotFound(NotFoundKind.PARTICIPANT, participant_id)
        return participant

    def list_participants(self, challenge_id: int) -> List[Participant]:
        return list(self.session.exec(
            select(Participant)
            .where(Participant.challenge_id == challenge_id)
            .order_by(Participant.joined_at)
        ).all())

    def invite(
        self,
        current: ChallengeVersion,
        moderator_id: int,
        user_id: int,
        nickname: Optional[str] = None,
    ) -> Participant:
        payload = current.challenge
        if payload.moderator_id != moderator_id:
            raise StateConflict(ConflictReason.NOT_MODERATOR)
        if not payload.active:
            raise StateConflict(ConflictReason.CHALLENGE_NOT_ACTIVE)

        existing = self.session.exec(
            select(Participant).where(
                (Participant.challenge_id == current.challenge_id) &
                (Participant.user_id == user_id)
            )
        ).first()
        if existing:
            raise StateConflict(ConflictReason.ALREADY_PARTICIPANT)

        participant = Participant(challenge_id=current.challenge_id, user_id=user_id, nickname=nickname)
        # Late joiners go straight to the first waypoint
        if payload.started:
            first = payload.first_waypoint()
            participant.current_waypoint_id = first.id if first else None

        try:
            with transaction(self.session):
                self.session.add(participant)
        except WriteConflict as e:
            raise StateConflict(ConflictReason.ALREADY_PARTICIPANT) from e
        self.session.refresh(participant)

        logger.info(f"User {user_id} joined challenge {current.challenge_id} as {participant.participant_id}")
        if self.audit:
            self.audit.log_participant_invited(
                moderator_id, participant.participant_id, current.challenge_id, user_id, nickname
            )
        return participant

    def start_challenge(self, challenge_id: int, moderator_id: int) -> Tuple[ChallengeVersion, List[Participant]]:
        """Start the challenge; the store places every participant on its first waypoint."""
        current = self.store.get_current(challenge_id)
        version = self.store.start_challenge(current, moderator_id)

        participants = self.list_participants(challenge_id)
        logger.info(f"Challenge {challenge_id} started with {len(participants)} participants")
        if self.audit:
            self.audit.log_challenge_started(moderator_id, challenge_id, version.name, len(participants))
        return version, participants

    def check_in(self, participant: Participant, waypoint_id: int, location: GeoLocation) -> CheckInResult:
        version, waypoint = self.store.get_waypoint(waypoint_id)
        if version.challenge_id != participant.challenge_id:
            raise StateConflict(ConflictReason.WRONG_CHALLENGE)
        if participant.current_waypoint_id != waypoint_id:
            raise StateConflict(ConflictReason.NOT_CURRENT_WAYPOINT)
        if participant.current_state == WaypointState.VERIFIED:
            raise StateConflict(ConflictReason.HUNT_COMPLETED)
        if not version.challenge.active:
            raise StateConflict(ConflictReason.CHALLENGE_NOT_ACTIVE)

        check = validate_waypoint_location(waypoint, location)
        if self.audit:
            self.audit.log_waypoint_checked_in(
                participant.participant_id,
                participant.challenge_id,
                waypoint_id,
                waypoint.sequence,
                location.lat,
                location.lon,
                check.distance_meters,
                check.is_valid,
            )

        if not check.is_valid:
            logger.warning(
                f"Check-in failed for participant {participant.participant_id} at waypoint {waypoint_id}: "
                f"{check.distance_meters:.1f}m from target, {check.max_distance_meters}m allowed"
            )
            raise TooFar(check.distance_meters, check.max_distance_meters)

        self._apply(participant, participant.row_version, current_state=WaypointState.CHECKED_IN)
        logger.info(f"Check-in successful for participant {participant.participant_id} at waypoint {waypoint_id}")
        return CheckInResult(participant=participant, waypoint=waypoint, distance_meters=check.distance_meters)

    def proof_target(self, participant: Participant, waypoint_id: int) -> Tuple[ChallengeVersion, WaypointDefinition]:
        """The waypoint a proof may be submitted for, or the reason it may not."""
        version, waypoint = self.store.get_waypoint(waypoint_id)
        if version.challenge_id != participant.challenge_id:
            raise StateConflict(ConflictReason.WRONG_CHALLENGE)
        if participant.current_waypoint_id != waypoint_id or participant.current_state != WaypointState.CHECKED_IN:
            raise StateConflict(ConflictReason.NOT_CHECKED_IN)
        return version, waypoint

    def submit_proof(self, participant: Participant, waypoint_id: int, evidence_ref: str) -> ProofOutcome:
        version, waypoint = self.proof_target(participant, waypoint_id)

        payload = version.challenge
        location = LocationConstraint(
            lat=waypoint.target_location.lat,
            lon=waypoint.target_location.lon,
            max_distance=waypoint.radius_meters,
        )
        time_window = None
        if payload.actual_start_time is not None:
            time_window = TimeWindow(start=payload.actual_start_time, duration_minutes=payload.duration_minutes)

        participant_id = participant.participant_id
        challenge_id = participant.challenge_id
        expected_version = participant.row_version

        if self.audit:
            self.audit.log_waypoint_proof_submitted(
                participant_id, challenge_id, waypoint_id, waypoint.sequence, evidence_ref
            )

        # Release the connection, nothing may be held while the analysis service is polled
        self.session.commit()

        started = time.monotonic()
        try:
            result = self.verifier.verify(evidence_ref, waypoint.expected_subject, location, time_window)
        except HuntError as e:
            logger.error(f"Image validation failed for participant {participant_id} at waypoint {waypoint_id}: {e}")
            if self.audit:
                self.audit.log_waypoint_verified(
                    participant_id, challenge_id, waypoint_id, waypoint.sequence,
                    "failed", [f"Validation service error: {e}"], time.monotonic() - started,
                )
            raise
        elapsed = time.monotonic() - started

        if self.audit:
            self.audit.log_waypoint_verified(
                participant_id, challenge_id, waypoint_id, waypoint.sequence,
                result.resolution, result.reasons, elapsed, result.processing_id,
            )

        if not result.accepted:
            logger.warning(
                f"Proof rejected for participant {participant_id} at waypoint {waypoint_id}: {result.reasons}"
            )
            return ProofOutcome(participant=participant, waypoint=waypoint, accepted=False, reasons=result.reasons)

        next_waypoint = payload.waypoint_at(waypoint.sequence + 1)
        if next_waypoint is None:
            self._apply(participant, expected_version, current_state=WaypointState.VERIFIED)
            logger.info(f"Participant {participant_id} completed all waypoints")
        else:
            # Verified and advanced in one write, so a failure leaves the participant checked in
            self._apply(
                participant,
                expected_version,
                current_waypoint_id=next_waypoint.id,
                current_state=WaypointState.PRESENTED,
            )
            logger.info(f"Participant {participant_id} advanced to waypoint {next_waypoint.id}")
        logger.info(f"Proof verified for participant {participant_id} at waypoint {waypoint_id}")
        return ProofOutcome(
            participant=participant,
            waypoint=waypoint,
            accepted=True,
            reasons=result.reasons,
            next_waypoint=next_waypoint,
        )

    def advance(self, participant: Participant) -> Optional[WaypointDefinition]:
        """Move to the next waypoint. Returns None when the hunt is complete."""
        if participant.current_waypoint_id is None:
            return None
        version, current = self.store.get_waypoint(participant.current_waypoint_id)
        next_waypoint = version.challenge.waypoint_at(current.sequence + 1)
        if next_waypoint is None:
            logger.info(f"Participant {participant.participant_id} completed all waypoints")
            return None

        self._apply(
            participant,
            participant.row_version,
            current_waypoint_id=next_waypoint.id,
            current_state=WaypointState.PRESENTED,
        )
        logger.info(f"Participant {participant.participant_id} advanced to waypoint {next_waypoint.id}")
        return next_waypoint

    def _apply(self, participant: Participant, expected_version: int, **values) -> None:
        participant_id = participant.participant_id
        values.update(last_updated=utcnow(), row_version=expected_version + 1)
        with transaction(self.session):
            result = self.session.exec(
                update(Participant)
                .where(
                    (Participant.participant_id == participant_id) &
                    (Participant.row_version == expected_version)
                )
                .values(**values)
            )
            if result.rowcount != 1:
                raise WriteConflict(f"Participant {participant_id} was modified concurrently, please retry")
        self.session.refresh(participant)
