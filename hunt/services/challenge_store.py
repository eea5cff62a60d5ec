import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import or_, update
from sqlmodel import Session, select

from ..database import transaction
from ..errors import (
    ConflictReason,
    InvalidWaypointSequence,
    NotFound,
    NotFoundKind,
    StateConflict,
    ValidationFailed,
    WriteConflict,
)
from ..models.challenge import ChallengeHead, ChallengeVersion, WaypointIndex
from ..models.participant import Participant, WaypointState
from ..models.payload import (
    ChallengeCreate,
    ChallengePayload,
    ChallengeUpdate,
    PayloadMetadata,
    WaypointDefinition,
)
from .geo import validate_coordinates

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # MySQL and SQLite hand datetimes back without tzinfo; they are stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def validate_waypoint_sequences(waypoints: Iterable[WaypointDefinition]) -> None:
    sequences = sorted(w.sequence for w in waypoints)
    if not sequences:
        raise ValidationFailed("Challenge must have at least one waypoint")
    if sequences != list(range(1, len(sequences) + 1)):
        raise InvalidWaypointSequence(sequences)


def _validate_waypoints(waypoints: List[WaypointDefinition]) -> None:
    validate_waypoint_sequences(waypoints)
    for waypoint in waypoints:
        validate_coordinates(waypoint.target_location)
        if waypoint.radius_meters <= 0:
            raise ValidationFailed(f"Waypoint {waypoint.sequence} radius must be greater than 0 meters")
        if not waypoint.expected_subject.strip():
            raise ValidationFailed(f"Waypoint {waypoint.sequence} needs an expected image subject")


class ChallengeStore:
    """Append-only, versioned storage of challenge definitions.

    Each edit closes the current version (``validity_end = now``) and inserts
    a new one in the same transaction. ``challenge_head`` allocates challenge
    ids and holds the pointer to the current version; moving that pointer is a
    compare-and-swap, so of two concurrent editors only one can win.
    """

    def __init__(self, session: Session):
        self.session = session

    def create(self, moderator_id: int, request: ChallengeCreate) -> ChallengeVersion:
        _validate_waypoints(request.waypoints)
        if request.duration_minutes <= 0:
            raise ValidationFailed("Duration must be greater than 0 minutes")

        now = utcnow()
        with transaction(self.session):
            head = ChallengeHead(created_at=now)
            self.session.add(head)
            self.session.flush()

            waypoints = []
            for definition in sorted(request.waypoints, key=lambda w: w.sequence):
                entry = WaypointIndex(challenge_id=head.challenge_id, sequence=definition.sequence)
                self.session.add(entry)
                self.session.flush()
                waypoints.append(definition.model_copy(update={"id": entry.waypoint_id, "created_at": now}))

            payload = ChallengePayload(
                description=request.description,
                moderator_id=moderator_id,
                actual_start_time=None,
                duration_minutes=request.duration_minutes,
                type=request.type,
                active=True,
                waypoints=waypoints,
                metadata=PayloadMetadata(created_at=now, updated_at=now),
            )
            version = ChallengeVersion(
                challenge_id=head.challenge_id,
                name=request.name,
                planned_start_time=request.planned_start_time,
                payload=payload.model_dump(mode="json"),
                validity_start=now,
                validity_end=None,
                created_at=now,
                updated_at=now,
            )
            self.session.add(version)
            self.session.flush()

            head.current_version_id = version.version_id
            self.session.add(head)

        self.session.refresh(version)
        logger.info(f"Created challenge {version.challenge_id} '{version.name}' with {len(waypoints)} waypoints")
        return version

    def get_current(self, challenge_id: int) -> ChallengeVersion:
        version = self.session.exec(
            select(ChallengeVersion).where(
                (ChallengeVersion.challenge_id == challenge_id) &
                (ChallengeVersion.validity_end.is_(None))
            )
        ).first()
        if not version:
            raise NotFound(NotFoundKind.CHALLENGE, challenge_id)
        return version

    def get_version(self, version_id: int) -> ChallengeVersion:
        version = self.session.get(ChallengeVersion, version_id)
        if not version:
            raise NotFound(NotFoundKind.CHALLENGE, version_id)
        return version

    def list_versions(self, challenge_id: int) -> List[ChallengeVersion]:
        versions = self.session.exec(
            select(ChallengeVersion)
            .where(ChallengeVersion.challenge_id == challenge_id)
            .order_by(ChallengeVersion.validity_start)
        ).all()
        if not versions:
            raise NotFound(NotFoundKind.CHALLENGE, challenge_id)
        return list(versions)

    def get_as_of(self, challenge_id: int, at: datetime) -> ChallengeVersion:
        """The version whose [validity_start, validity_end) interval contains ``at``."""
        version = self.session.exec(
            select(ChallengeVersion)
            .where(
                (ChallengeVersion.challenge_id == challenge_id) &
                (ChallengeVersion.validity_start <= at) &
                or_(ChallengeVersion.validity_end.is_(None), ChallengeVersion.validity_end > at)
            )
            .order_by(ChallengeVersion.validity_start.desc())
        ).first()
        if not version:
            raise NotFound(NotFoundKind.CHALLENGE, challenge_id)
        return version

    def create_new_version(
        self,
        current: ChallengeVersion,
        updated_payload: ChallengePayload,
        notes: str,
        name: Optional[str] = None,
        planned_start_time: Optional[datetime] = None,
    ) -> ChallengeVersion:
        superseded_id = current.version_id
        with transaction(self.session):
            version = self._supersede(current, updated_payload, notes, name, planned_start_time)

        self.session.refresh(version)
        logger.info(f"Challenge {version.challenge_id} version {superseded_id} superseded by {version.version_id}: {notes}")
        return version

    def _supersede(
        self,
        current: ChallengeVersion,
        updated_payload: ChallengePayload,
        notes: str,
        name: Optional[str] = None,
        planned_start_time: Optional[datetime] = None,
    ) -> ChallengeVersion:
        """Close ``current`` and insert its successor. Runs inside the caller's transaction."""
        challenge_id = current.challenge_id
        superseded_id = current.version_id
        # Keep validity_start strictly increasing even if the clock has not moved
        now = max(utcnow(), as_utc(current.validity_start) + timedelta(microseconds=1))
        metadata = updated_payload.metadata.model_copy(update={"updated_at": now, "version_notes": notes})
        payload = updated_payload.model_copy(update={"metadata": metadata})

        closed = self.session.exec(
            update(ChallengeVersion)
            .where(
                (ChallengeVersion.challenge_id == challenge_id) &
                (ChallengeVersion.version_id == superseded_id) &
                (ChallengeVersion.validity_end.is_(None))
            )
            .values(validity_end=now, updated_at=now)
        )
        if closed.rowcount != 1:
            raise WriteConflict(f"Challenge {challenge_id} was modified concurrently, please retry")

        version = ChallengeVersion(
            challenge_id=challenge_id,
            name=name or current.name,
            planned_start_time=planned_start_time or current.planned_start_time,
            payload=payload.model_dump(mode="json"),
            validity_start=now,
            validity_end=None,
            created_at=now,
            updated_at=now,
        )
        self.session.add(version)
        self.session.flush()

        moved = self.session.exec(
            update(ChallengeHead)
            .where(
                (ChallengeHead.challenge_id == challenge_id) &
                (ChallengeHead.current_version_id == superseded_id)
            )
            .values(current_version_id=version.version_id)
        )
        if moved.rowcount != 1:
            raise WriteConflict(f"Challenge {challenge_id} was modified concurrently, please retry")
        return version

    def _check_moderator(self, payload: ChallengePayload, moderator_id: int) -> None:
        if payload.moderator_id != moderator_id:
            raise StateConflict(ConflictReason.NOT_MODERATOR)
        if not payload.active:
            raise StateConflict(ConflictReason.CHALLENGE_NOT_ACTIVE)

    def start_challenge(self, current: ChallengeVersion, moderator_id: int) -> ChallengeVersion:
        """Start the challenge and put every enrolled participant on its first waypoint.

        Both happen in one transaction: a failed placement leaves the challenge unstarted.
        """
        payload = current.challenge
        self._check_moderator(payload, moderator_id)
        if payload.actual_start_time is not None:
            raise StateConflict(ConflictReason.CHALLENGE_ALREADY_STARTED)

        challenge_id = current.challenge_id
        started = payload.model_copy(update={"actual_start_time": utcnow()})
        first = started.first_waypoint()

        with transaction(self.session):
            version = self._supersede(current, started, "Challenge started")
            if first is not None:
                self.session.exec(
                    update(Participant)
                    .where(Participant.challenge_id == challenge_id)
                    .values(
                        current_waypoint_id=first.id,
                        current_state=WaypointState.PRESENTED,
                        last_updated=utcnow(),
                        row_version=Participant.row_version + 1,
                    )
                    .execution_options(synchronize_session="fetch")
                )

        self.session.refresh(version)
        logger.info(f"Challenge {challenge_id} started as version {version.version_id}")
        return version

    def update_details(self, current: ChallengeVersion, moderator_id: int, changes: ChallengeUpdate) -> ChallengeVersion:
        payload = current.challenge
        self._check_moderator(payload, moderator_id)

        fields = changes.model_dump(exclude_unset=True, exclude_none=True)
        if not fields:
            raise ValidationFailed("No changes supplied")
        if fields.get("duration_minutes") is not None and fields["duration_minutes"] <= 0:
            raise ValidationFailed("Duration must be greater than 0 minutes")

        payload_fields = {k: fields[k] for k in ("description", "duration_minutes", "type") if k in fields}
        updated = payload.model_copy(update=payload_fields)
        return self.create_new_version(
            current,
            updated,
            "Challenge updated",
            name=fields.get("name"),
            planned_start_time=fields.get("planned_start_time"),
        )

    def deactivate(self, current: ChallengeVersion, moderator_id: int) -> ChallengeVersion:
        payload = current.challenge
        self._check_moderator(payload, moderator_id)
        return self.create_new_version(current, payload.model_copy(update={"active": False}), "Challenge deactivated")

    def get_waypoint(self, waypoint_id: int) -> Tuple[ChallengeVersion, WaypointDefinition]:
        """Resolve a waypoint id against the current version of its challenge."""
        entry = self.session.get(WaypointIndex, waypoint_id)
        if not entry:
            raise NotFound(NotFoundKind.WAYPOINT, waypoint_id)
        version = self.get_current(entry.challenge_id)
        definition = version.challenge.waypoint(waypoint_id)
        if definition is None:
            raise NotFound(NotFoundKind.WAYPOINT, waypoint_id)
        return version, definition

    def get_next_waypoint(self, challenge_id: int, sequence: int) -> Optional[WaypointDefinition]:
        return self.get_current(challenge_id).challenge.waypoint_at(sequence + 1)

    def get_first_waypoint(self, version: ChallengeVersion) -> Optional[WaypointDefinition]:
        return version.challenge.first_waypoint()
