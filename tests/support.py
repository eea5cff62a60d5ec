import os
import tempfile
from datetime import datetime, timedelta, timezone

from sqlmodel import SQLModel, Session, create_engine

from hunt.models import audit_log, challenge, participant  # noqa: F401
from hunt.models.payload import ChallengeCreate, ChallengeType, GeoLocation, WaypointDefinition
from hunt.services.verification import VerificationResult

MODERATOR_ID = 1
PLAYER_ID = 2

# Westminster Bridge, then Trafalgar Square
BRIDGE = GeoLocation(lat=51.5007, lon=-0.1219)
SQUARE = GeoLocation(lat=51.5080, lon=-0.1281)


class DatabaseTestCase:
    """Mixin giving each test a fresh SQLite file database."""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        path = os.path.join(self.tmp.name, "hunt.db")
        self.engine = create_engine(f"sqlite:///{path}", connect_args={"check_same_thread": False})
        SQLModel.metadata.create_all(self.engine)
        self.session = Session(self.engine)

    def tearDown(self):
        self.session.close()
        self.engine.dispose()
        self.tmp.cleanup()


def waypoint(sequence, location, radius=50.0, subject="bridge"):
    return WaypointDefinition(
        sequence=sequence,
        target_location=location,
        radius_meters=radius,
        clue=f"Clue {sequence}",
        expected_subject=subject,
    )


def challenge_request(waypoints=None, name="City walk", duration=60):
    if waypoints is None:
        waypoints = [waypoint(1, BRIDGE, subject="bridge"), waypoint(2, SQUARE, subject="lion statue")]
    return ChallengeCreate(
        name=name,
        description="A walk through the city",
        planned_start_time=datetime.now(timezone.utc) + timedelta(hours=1),
        duration_minutes=duration,
        type=ChallengeType.RECREATIONAL,
        waypoints=waypoints,
    )


class FakeVerifier:
    """Stands in for the image analysis service."""

    def __init__(self, resolution="accepted", reasons=None, error=None):
        self.resolution = resolution
        self.reasons = reasons or []
        self.error = error
        self.calls = []

    def verify(self, evidence_ref, expected_subject, location=None, time_window=None):
        self.calls.append((evidence_ref, expected_subject, location, time_window))
        if self.error is not None:
            raise self.error
        return VerificationResult(resolution=self.resolution, reasons=list(self.reasons), processing_id="job-1")
