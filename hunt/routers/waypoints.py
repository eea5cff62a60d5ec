import logging
from datetime import datetime, timezone
import uuid

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from pydantic import BaseModel

from ..auth import get_current_participant_id
from ..dependencies import get_progression
from ..models.payload import GeoLocation
from ..services.progression import ParticipantProgression
from ..services.s3 import evidence_key, upload_evidence
from ..services.verification import validate_image_format

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/challenges/waypoints",
    tags=["Waypoints"]
)


class LocationValidationRequest(BaseModel):
    location: GeoLocation


@router.post("/{waypoint_id}/checkin")
def check_in_waypoint(
    waypoint_id: int,
    request: LocationValidationRequest,
    progression: ParticipantProgression = Depends(get_progression),
    participant_id: uuid.UUID = Depends(get_current_participant_id)
):
    logger.info(f"Waypoint check-in from participant {participant_id} for waypoint {waypoint_id}")
    participant = progression.get_participant(participant_id)
    result = progression.check_in(participant, waypoint_id, request.location)

    return {
        "challenge-id": participant.challenge_id,
        "participant-id": str(participant_id),
        "timestamp": datetime.now(timezone.utc),
        "waypoint-id": waypoint_id,
        "state": participant.current_state.value,
        "proof": result.waypoint.expected_subject,
    }


# Sync on purpose: verification polls the analysis service, so it runs in the threadpool
@router.post("/{waypoint_id}/proof")
def submit_waypoint_proof(
    waypoint_id: int,
    image: UploadFile = File(...),
    progression: ParticipantProgression = Depends(get_progression),
    participant_id: uuid.UUID = Depends(get_current_participant_id)
):
    logger.info(f"Waypoint proof submission from participant {participant_id} for waypoint {waypoint_id}")
    participant = progression.get_participant(participant_id)

    # Fail fast before anything is uploaded
    progression.proof_target(participant, waypoint_id)
    validate_image_format(image.filename)

    key = evidence_key(participant.challenge_id, participant_id, waypoint_id, image.filename)
    upload_evidence(image.file.read(), key)

    outcome = progression.submit_proof(participant, waypoint_id, key)
    if not outcome.accepted:
        message = "Failed to provide a proof."
        for i, reason in enumerate(outcome.reasons, start=1):
            message += f" [{i}] {reason}"
        raise HTTPException(status_code=400, detail=message)

    return {
        "challenge-id": participant.challenge_id,
        "participant-id": str(participant_id),
        "timestamp": datetime.now(timezone.utc),
        "waypoint-id": waypoint_id,
        "state": "VERIFIED",
        "next-waypoint-id": outcome.next_waypoint.id if outcome.next_waypoint else None,
        "hunt-complete": outcome.hunt_complete,
    }
