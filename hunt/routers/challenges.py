from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime, timedelta

from ..auth import PARTICIPANT_TOKEN, create_token, get_current_user_id
from ..dependencies import get_audit_logger, get_progression, get_store
from ..models.challenge import ChallengeVersionPublic
from ..models.participant import ParticipantPublic
from ..models.payload import ChallengeCreate, ChallengeUpdate
from ..services.audit import AuditLogger
from ..services.challenge_store import ChallengeStore
from ..services.progression import ParticipantProgression

router = APIRouter(
    prefix="/challenges",
    tags=["Challenges"]
)


class ChallengeResponse(BaseModel):
    challenge: ChallengeVersionPublic
    participants: List[ParticipantPublic]


class StartChallengeRequest(BaseModel):
    challenge_id: int = Field(alias="challenge-id")


class InviteRequest(BaseModel):
    nickname: Optional[str] = None


class InviteResponse(BaseModel):
    participant: ParticipantPublic
    participant_token: str


@router.post("", response_model=ChallengeVersionPublic, status_code=201)
def create_challenge(
    challenge: ChallengeCreate,
    store: ChallengeStore = Depends(get_store),
    audit: AuditLogger = Depends(get_audit_logger),
    current_user_id: int = Depends(get_current_user_id)
):
    version = store.create(current_user_id, challenge)
    audit.log_challenge_created(
        current_user_id,
        version.challenge_id,
        version.name,
        challenge.type.value,
        len(challenge.waypoints),
    )
    return ChallengeVersionPublic.from_version(version)


@router.post("/start")
def start_challenge(
    request: StartChallengeRequest,
    progression: ParticipantProgression = Depends(get_progression),
    current_user_id: int = Depends(get_current_user_id)
):
    version, participants = progression.start_challenge(request.challenge_id, current_user_id)
    payload = version.challenge
    return {
        "challenge-id": version.challenge_id,
        "planned-start-time": version.planned_start_time,
        "actual-start-time": payload.actual_start_time,
        "duration": payload.duration_minutes,
        "participants": [
            {"user-id": p.user_id, "participant-id": str(p.participant_id)}
            for p in participants
        ],
    }


@router.get("/versions/{version_id}", response_model=ChallengeVersionPublic)
def get_challenge_version(
    version_id: int,
    store: ChallengeStore = Depends(get_store),
    current_user_id: int = Depends(get_current_user_id)
):
    return ChallengeVersionPublic.from_version(store.get_version(version_id))


@router.get("/{challenge_id}", response_model=ChallengeResponse)
def get_challenge_details(
    challenge_id: int,
    as_of: Optional[datetime] = None,
    progression: ParticipantProgression = Depends(get_progression),
    current_user_id: int = Depends(get_current_user_id)
):
    store = progression.store
    version = store.get_as_of(challenge_id, as_of) if as_of else store.get_current(challenge_id)
    participants = progression.list_participants(challenge_id)

    # Only the moderator and the participants may look at a challenge
    is_moderator = version.challenge.moderator_id == current_user_id
    if not is_moderator and all(p.user_id != current_user_id for p in participants):
        raise HTTPException(status_code=403, detail="You are not a participant in this challenge")

    return {
        "challenge": ChallengeVersionPublic.from_version(version),
        "participants": participants,
    }


@router.get("/{challenge_id}/versions", response_model=List[ChallengeVersionPublic])
def get_challenge_history(
    challenge_id: int,
    store: ChallengeStore = Depends(get_store),
    current_user_id: int = Depends(get_current_user_id)
):
    versions = store.list_versions(challenge_id)
    if versions[-1].challenge.moderator_id != current_user_id:
        raise HTTPException(status_code=403, detail="Only the moderator can view the challenge history")
    return [ChallengeVersionPublic.from_version(v) for v in versions]


@router.put("/{challenge_id}", response_model=ChallengeVersionPublic)
def update_challenge(
    challenge_id: int,
    update: ChallengeUpdate,
    store: ChallengeStore = Depends(get_store),
    audit: AuditLogger = Depends(get_audit_logger),
    current_user_id: int = Depends(get_current_user_id)
):
    """Update name, description, schedule or type. Creates a new version."""
    version = store.update_details(store.get_current(challenge_id), current_user_id, update)
    audit.log_challenge_updated(current_user_id, challenge_id, version.version_id, "Challenge updated")
    return ChallengeVersionPublic.from_version(version)


@router.delete("/{challenge_id}", response_model=ChallengeVersionPublic)
def deactivate_challenge(
    challenge_id: int,
    store: ChallengeStore = Depends(get_store),
    audit: AuditLogger = Depends(get_audit_logger),
    current_user_id: int = Depends(get_current_user_id)
):
    """Deactivate a challenge. History is kept, the current version is marked inactive."""
    version = store.deactivate(store.get_current(challenge_id), current_user_id)
    audit.log_challenge_updated(current_user_id, challenge_id, version.version_id, "Challenge deactivated")
    return ChallengeVersionPublic.from_version(version)


@router.post("/{challenge_id}/invite/{user_id}", response_model=InviteResponse, status_code=201)
def invite_participant(
    challenge_id: int,
    user_id: int,
    invite: Optional[InviteRequest] = None,
    progression: ParticipantProgression = Depends(get_progression),
    current_user_id: int = Depends(get_current_user_id)
):
    current = progression.store.get_current(challenge_id)
    nickname = invite.nickname if invite else None
    participant = progression.invite(current, current_user_id, user_id, nickname)

    # The token lasts as long as the hunt could, plus a day of slack
    token = create_token(
        participant.participant_id,
        PARTICIPANT_TOKEN,
        expires_delta=timedelta(minutes=current.challenge.duration_minutes) + timedelta(days=1),
    )
    return {"participant": participant, "participant_token": token}
