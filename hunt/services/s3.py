import logging
from datetime import datetime, timezone
from functools import lru_cache
from io import BytesIO
from pathlib import PurePosixPath

import boto3
from PIL import Image, UnidentifiedImageError

from ..config import AWS_ACCESS_KEY, AWS_SECRET_KEY, S3_BUCKET_NAME, S3_REGION, S3_URL
from ..errors import StorageError, ValidationFailed

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_s3_client():
    return boto3.client("s3",
        aws_access_key_id=AWS_ACCESS_KEY,
        aws_secret_access_key=AWS_SECRET_KEY,
        region_name=S3_REGION
    )


def get_s3_url(key: str) -> str:
    return f"{S3_URL}/{key}"


def evidence_key(challenge_id: int, participant_id, waypoint_id: int, filename: str) -> str:
    """Relative key of a proof photo: challenge/participant/waypoint_timestamp_name.jpg"""
    stem = PurePosixPath(filename.replace("\\", "/")).stem or "proof"
    timestamp = int(datetime.now(timezone.utc).timestamp())
    return f"{challenge_id}/{participant_id}/{waypoint_id}_{timestamp}_{stem}.jpg"


def normalize_image(file_content: bytes, max_side: int = 1920, quality: int = 85) -> BytesIO:
    try:
        image = Image.open(BytesIO(file_content))
        image.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ValidationFailed(f"Invalid image: {e}") from e

    # Convert to RGB if image is in RGBA mode
    if image.mode != 'RGB':
        image = image.convert('RGB')

    # Shrink but never crop, the analysis service needs the whole scene
    if max(image.size) > max_side:
        image.thumbnail((max_side, max_side), Image.Resampling.LANCZOS)

    output = BytesIO()
    image.save(output, format='JPEG', quality=quality)
    output.seek(0)
    return output


def upload_evidence(file_content: bytes, key: str) -> str:
    output = normalize_image(file_content)
    try:
        get_s3_client().upload_fileobj(
            output,
            S3_BUCKET_NAME,
            key,
            ExtraArgs={'ContentType': 'image/jpeg'}
        )
    except Exception as e:
        logger.error(f"Failed to upload evidence {key}: {e}")
        raise StorageError("Failed to store proof image") from e

    logger.info(f"Stored evidence at {get_s3_url(key)}")
    return key
