import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import PurePosixPath, PureWindowsPath
from typing import Any, Callable, Dict, List, Optional

import requests

from ..config import (
    IMAGE_BASE_DIR,
    IMAGE_CHECKER_URL,
    VERIFICATION_BASE_DELAY_MS,
    VERIFICATION_DELAY_STEP_MS,
    VERIFICATION_MAX_ATTEMPTS,
    VERIFICATION_REQUEST_TIMEOUT,
)
from ..errors import ExternalServiceError, InvalidEvidencePath, ServiceFailure, ValidationFailed

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_EXTENSIONS = ("jpg", "jpeg", "png", "gif", "bmp")

STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_PENDING = ("in_progress", "accepted")

RESOLUTION_ACCEPTED = "accepted"
RESOLUTION_REJECTED = "rejected"


@dataclass(frozen=True)
class LocationConstraint:
    lat: float
    lon: float
    max_distance: float

    def to_json(self) -> Dict[str, Any]:
        return {"lat": self.lat, "long": self.lon, "max_distance": self.max_distance}


@dataclass(frozen=True)
class TimeWindow:
    start: datetime
    duration_minutes: int

    def to_json(self) -> Dict[str, Any]:
        return {"start": self.start.isoformat(), "duration": self.duration_minutes}


@dataclass(frozen=True)
class VerificationResult:
    resolution: str
    reasons: List[str] = field(default_factory=list)
    processing_id: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.resolution == RESOLUTION_ACCEPTED


def build_evidence_path(evidence_ref: str, base_dir: str) -> str:
    """Turn a relative evidence reference into the path the analysis service reads."""
    if not evidence_ref:
        raise InvalidEvidencePath("empty path")
    if evidence_ref.startswith(("/", "\\")) or PureWindowsPath(evidence_ref).drive:
        raise InvalidEvidencePath("absolute paths are not allowed")
    segments = PurePosixPath(evidence_ref.replace("\\", "/")).parts
    if ".." in segments:
        raise InvalidEvidencePath("parent directory segments are not allowed")

    base = base_dir.rstrip("/")
    if base.startswith(("http://", "https://")):
        return f"{base}/{evidence_ref}"
    return f"file://{base}/{evidence_ref}"


def validate_image_format(filename: str) -> None:
    if not filename or "." not in filename:
        raise ValidationFailed("Invalid image format: no file extension")
    extension = filename.rsplit(".", 1)[-1].lower()
    if extension not in ALLOWED_IMAGE_EXTENSIONS:
        raise ValidationFailed(f"Invalid image format: unsupported file format {extension}")


def current_time_window(duration_minutes: int, now: Optional[datetime] = None) -> TimeWindow:
    """A window reaching ``duration_minutes`` into the past and the future."""
    now = now or datetime.now(timezone.utc)
    return TimeWindow(start=now - timedelta(minutes=duration_minutes), duration_minutes=duration_minutes * 2)


class VerificationService:
    """Client for the external image analysis service.

    A job is submitted, its status polled with a bounded linear backoff, and
    the verdict fetched. Nothing is kept between calls except the
    processing id, so one instance can serve concurrent requests.
    """

    def __init__(
        self,
        base_url: str = IMAGE_CHECKER_URL,
        image_base_dir: str = IMAGE_BASE_DIR,
        http: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        max_attempts: int = VERIFICATION_MAX_ATTEMPTS,
        base_delay_ms: int = VERIFICATION_BASE_DELAY_MS,
        delay_step_ms: int = VERIFICATION_DELAY_STEP_MS,
        timeout: float = VERIFICATION_REQUEST_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self.image_base_dir = image_base_dir
        self.http = http or requests.Session()
        self.sleep = sleep
        self.max_attempts = max_attempts
        self.base_delay_ms = base_delay_ms
        self.delay_step_ms = delay_step_ms
        self.timeout = timeout

    def verify(
        self,
        evidence_ref: str,
        expected_subject: str,
        location: Optional[LocationConstraint] = None,
        time_window: Optional[TimeWindow] = None,
    ) -> VerificationResult:
        processing_id = self.submit(evidence_ref, expected_subject, location, time_window)
        self.await_completion(processing_id)
        return self.fetch_result(processing_id)

    def submit(
        self,
        evidence_ref: str,
        expected_subject: str,
        location: Optional[LocationConstraint] = None,
        time_window: Optional[TimeWindow] = None,
    ) -> str:
        processing_id = str(uuid.uuid4())
        image_path = build_evidence_path(evidence_ref, self.image_base_dir)

        analysis_request: Dict[str, Any] = {"content": expected_subject}
        if location is not None:
            analysis_request["location"] = location.to_json()
        if time_window is not None:
            analysis_request["datetime"] = time_window.to_json()

        body = {
            "processing-id": processing_id,
            "image-path": image_path,
            "analysis-request": analysis_request,
        }
        try:
            response = self.http.post(f"{self.base_url}/validate", json=body, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"Image validation submit failed: {e}")
            raise ExternalServiceError(ServiceFailure.UNAVAILABLE, str(e)) from e
        if not 200 <= response.status_code < 300:
            logger.error(f"Image validation submit returned {response.status_code}")
            raise ExternalServiceError(ServiceFailure.UNAVAILABLE, f"HTTP {response.status_code}")

        logger.info(f"Submitted {image_path} for analysis as {processing_id}")
        return processing_id

    def await_completion(self, processing_id: str) -> None:
        attempts = 0
        while True:
            status = self._get_json(f"{self.base_url}/status/{processing_id}").get("status")

            if status == STATUS_COMPLETED:
                return
            if status == STATUS_FAILED:
                logger.warning(f"Image analysis {processing_id} failed")
                raise ValidationFailed("Image validation failed")
            if status not in STATUS_PENDING:
                raise ExternalServiceError(ServiceFailure.UNEXPECTED_RESPONSE, f"Unknown status: {status}")

            attempts += 1
            if attempts >= self.max_attempts:
                logger.warning(f"Image analysis {processing_id} still {status} after {attempts} polls")
                raise ExternalServiceError(ServiceFailure.TIMEOUT)
            self.sleep((self.base_delay_ms + attempts * self.delay_step_ms) / 1000)

    def fetch_result(self, processing_id: str) -> VerificationResult:
        body = self._get_json(f"{self.base_url}/results/{processing_id}")
        resolution = body.get("resolution")
        if resolution not in (RESOLUTION_ACCEPTED, RESOLUTION_REJECTED):
            raise ExternalServiceError(ServiceFailure.UNEXPECTED_RESPONSE, f"Unknown resolution: {resolution}")
        reasons = body.get("reasons") or []
        return VerificationResult(resolution=resolution, reasons=[str(r) for r in reasons], processing_id=processing_id)

    def _get_json(self, url: str) -> Dict[str, Any]:
        try:
            response = self.http.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"Request to {url} failed: {e}")
            raise ExternalServiceError(ServiceFailure.UNAVAILABLE, str(e)) from e
        if not 200 <= response.status_code < 300:
            raise ExternalServiceError(ServiceFailure.UNAVAILABLE, f"HTTP {response.status_code}")
        try:
            body = response.json()
        except ValueError as e:
            raise ExternalServiceError(ServiceFailure.UNEXPECTED_RESPONSE, "invalid JSON") from e
        if not isinstance(body, dict):
            raise ExternalServiceError(ServiceFailure.UNEXPECTED_RESPONSE, "expected a JSON object")
        return body
