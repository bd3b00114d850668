"""Cloudflare R2 storage operations."""

import logging
import os
from typing import Optional
from uuid import uuid4

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from coachhub.core.config import settings
from coachhub.core.errors import ServiceNotConfiguredError

logger = logging.getLogger(__name__)


def get_r2_client():
    """Get boto3 client configured for Cloudflare R2."""
    if not settings.r2_configured:
        return None

    return boto3.client(
        "s3",
        endpoint_url=settings.r2_endpoint,
        aws_access_key_id=settings.r2_access_key_id,
        aws_secret_access_key=settings.r2_secret_access_key,
        config=Config(
            signature_version="s3v4",
            retries={"max_attempts": 3, "mode": "standard"},
        ),
    )


def _require_r2():
    client = get_r2_client()
    if not client:
        raise ServiceNotConfiguredError("R2 storage not configured")
    return client


def safe_filename(filename: str) -> str:
    return "".join(c if c.isalnum() or c in ".-_" else "_" for c in filename)


def generate_film_key(team_id: str, game_id: str, filename: str) -> str:
    """R2 key for a game film upload, scoped by team and game."""
    return f"teams/{team_id}/games/{game_id}/{uuid4().hex[:8]}_{safe_filename(filename)}"


def upload_file(file_path: str, r2_key: str, content_type: str = "video/mp4") -> bool:
    """Upload a local file to R2."""
    client = _require_r2()

    try:
        with open(file_path, "rb") as f:
            client.upload_fileobj(
                f,
                settings.r2_bucket_name,
                r2_key,
                ExtraArgs={"ContentType": content_type},
            )
        return True
    except ClientError as e:
        logger.error(f"Error uploading {r2_key} to R2: {e}")
        return False


def download_file(r2_key: str, destination_path: str) -> bool:
    """Download an object from R2 to a local file."""
    client = _require_r2()

    try:
        os.makedirs(os.path.dirname(destination_path), exist_ok=True)
        client.download_file(settings.r2_bucket_name, r2_key, destination_path)
        return True
    except ClientError as e:
        logger.error(f"Error downloading {r2_key} from R2: {e}")
        return False


def delete_object(r2_key: str) -> bool:
    client = _require_r2()

    try:
        client.delete_object(Bucket=settings.r2_bucket_name, Key=r2_key)
        return True
    except ClientError as e:
        logger.error(f"Error deleting {r2_key} from R2: {e}")
        return False


def generate_presigned_url(
    r2_key: str,
    expires_in: int = 3600,
    for_upload: bool = False,
    content_type: Optional[str] = None,
) -> Optional[str]:
    """Presigned URL for reading, or with for_upload, for a direct browser PUT."""
    client = _require_r2()

    params = {"Bucket": settings.r2_bucket_name, "Key": r2_key}
    if for_upload and content_type:
        params["ContentType"] = content_type

    try:
        return client.generate_presigned_url(
            ClientMethod="put_object" if for_upload else "get_object",
            Params=params,
            ExpiresIn=expires_in,
        )
    except ClientError as e:
        logger.error(f"Error generating presigned URL for {r2_key}: {e}")
        return None


def get_film_url(r2_key: str, expires_in: int = 3600) -> Optional[str]:
    return generate_presigned_url(r2_key, expires_in, for_upload=False)
