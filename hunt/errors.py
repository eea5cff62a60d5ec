from enum import Enum
from typing import Any, Dict, Optional


class NotFoundKind(str, Enum):
    CHALLENGE = "challenge"
    WAYPOINT = "waypoint"
    PARTICIPANT = "participant"


class ConflictReason(str, Enum):
    NOT_MODERATOR = "not_moderator"
    CHALLENGE_ALREADY_STARTED = "challenge_already_started"
    CHALLENGE_NOT_ACTIVE = "challenge_not_active"
    ALREADY_PARTICIPANT = "already_participant"
    NOT_CURRENT_WAYPOINT = "not_current_waypoint"
    NOT_CHECKED_IN = "not_checked_in"
    WRONG_CHALLENGE = "wrong_challenge"
    HUNT_COMPLETED = "hunt_completed"


class ServiceFailure(str, Enum):
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"
    UNEXPECTED_RESPONSE = "unexpected_response"


class HuntError(Exception):
    """Base class for every error a core operation can raise.

    ``status_code`` and ``payload`` are what the HTTP layer sends back.
    """

    status_code = 500
    retryable = False

    def __init__(self, message: str, payload: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.payload = payload or {"message": message}


class ValidationFailed(HuntError):
    status_code = 400

    def __init__(self, reason: str):
        super().__init__(reason, {"message": reason, "error": "validation_failed"})
        self.reason = reason


class InvalidWaypointSequence(HuntError):
    status_code = 400

    def __init__(self, sequences=None):
        message = "Waypoint sequence numbers must run 1..N without gaps or duplicates"
        super().__init__(message, {"message": message, "error": "invalid_waypoint_sequence"})
        self.sequences = list(sequences or [])


class InvalidCoordinates(ValidationFailed):
    def __init__(self, lat: float, lon: float):
        super().__init__(f"Invalid coordinates: lat={lat}, lon={lon}")
        self.lat = lat
        self.lon = lon


class InvalidEvidencePath(ValidationFailed):
    def __init__(self, reason: str):
        super().__init__(f"Invalid evidence path: {reason}")


class NotFound(HuntError):
    status_code = 404

    def __init__(self, kind: NotFoundKind, identifier: Any = None):
        message = f"{kind.value.capitalize()} not found"
        super().__init__(message, {"message": message, "error": f"{kind.value}_not_found"})
        self.kind = kind
        self.identifier = identifier


_CONFLICT_MESSAGES = {
    ConflictReason.NOT_MODERATOR: ("You are not the moderator of this challenge", 403),
    ConflictReason.CHALLENGE_ALREADY_STARTED: ("Challenge has already been started", 409),
    ConflictReason.CHALLENGE_NOT_ACTIVE: ("Challenge is not active", 400),
    ConflictReason.ALREADY_PARTICIPANT: ("User is already a participant in this challenge", 409),
    ConflictReason.NOT_CURRENT_WAYPOINT: ("This is not your current waypoint", 400),
    ConflictReason.NOT_CHECKED_IN: ("You must check in to this waypoint before submitting proof", 400),
    ConflictReason.WRONG_CHALLENGE: ("Waypoint does not belong to participant's challenge", 403),
    ConflictReason.HUNT_COMPLETED: ("You have already completed every waypoint", 409),
}


class StateConflict(HuntError):
    """A domain precondition did not hold; nothing was written."""

    def __init__(self, reason: ConflictReason):
        message, status_code = _CONFLICT_MESSAGES[reason]
        super().__init__(message, {"message": message, "error": reason.value})
        self.reason = reason
        self.status_code = status_code


class TooFar(HuntError):
    status_code = 400

    def __init__(self, distance: float, max_distance: float):
        message = "Your checkin attempt is too far from the target"
        super().__init__(
            message,
            {
                "message": message,
                "error": "too_far",
                "distance": round(distance, 2),
                "max_distance": max_distance,
            },
        )
        self.distance = distance
        self.max_distance = max_distance


class ExternalServiceError(HuntError):
    retryable = True

    def __init__(self, reason: ServiceFailure, detail: Optional[str] = None):
        message = {
            ServiceFailure.UNAVAILABLE: "Image validation service unavailable",
            ServiceFailure.TIMEOUT: "Image validation timed out",
            ServiceFailure.UNEXPECTED_RESPONSE: "Unexpected response from image validation service",
        }[reason]
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message, {"message": message, "error": reason.value})
        self.reason = reason
        self.status_code = 504 if reason == ServiceFailure.TIMEOUT else 502


class StorageError(HuntError):
    status_code = 500
    retryable = True


class WriteConflict(StorageError):
    """Another writer got there first; re-read and retry."""

    status_code = 409

    def __init__(self, message: str = "Concurrent modification, please retry"):
        super().__init__(message, {"message": message, "error": "write_conflict"})
