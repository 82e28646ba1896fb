"""Helpers for storing synthesized audio in Google Cloud Storage."""

from __future__ import annotations

import logging
from datetime import timedelta
from pathlib import Path

from google.cloud import storage
from google.oauth2 import service_account

from ..config import Settings, get_settings

logger = logging.getLogger(__name__)

_client: storage.Client | None = None
_bucket: storage.Bucket | None = None


def load_credentials(settings: Settings) -> service_account.Credentials | None:
    """Load the service account file named by GOOGLE_APPLICATION_CREDENTIALS."""

    credentials_path = settings.google_application_credentials
    try:
        resolved_path = Path(credentials_path).expanduser().resolve()
        if not resolved_path.exists():
            return None
        return service_account.Credentials.from_service_account_file(
            str(resolved_path)
        )
    except (FileNotFoundError, OSError, ValueError) as exc:
        logger.debug(
            "Could not load Google credentials from %s: %s", credentials_path, exc
        )
        return None


def get_client(settings: Settings | None = None) -> storage.Client:
    """Return a cached Storage client."""

    global _client
    if _client is None:
        settings = settings or get_settings()
        credentials = load_credentials(settings)
        if credentials is None:
            raise RuntimeError(
                "GCS credentials not found. Please configure GOOGLE_APPLICATION_CREDENTIALS "
                "with a valid service account JSON file."
            )
        _client = storage.Client(
            project=settings.gcp_project_id,
            credentials=credentials,
        )
    return _client


def get_bucket(settings: Settings | None = None) -> storage.Bucket:
    """Return the configured audio bucket."""

    global _bucket
    if _bucket is None:
        settings = settings or get_settings()
        _bucket = get_client(settings).bucket(settings.gcs_bucket_name)
    return _bucket


def upload_bytes(
    blob_name: str,
    data: bytes,
    *,
    content_type: str,
    settings: Settings | None = None,
) -> None:
    """Upload raw bytes, refusing to overwrite an existing object."""

    blob = get_bucket(settings).blob(blob_name)
    blob.upload_from_string(
        data,
        content_type=content_type,
        if_generation_match=0,
    )


def delete_blob(blob_name: str, *, settings: Settings | None = None) -> None:
    blob = get_bucket(settings).blob(blob_name)
    blob.delete(if_generation_match=None)


def sign_get_url(
    blob_name: str,
    *,
    expires_delta: timedelta,
    settings: Settings | None = None,
) -> str:
    """Generate a signed GET URL for the given blob."""

    blob = get_bucket(settings).blob(blob_name)
    return blob.generate_signed_url(
        version="v4",
        expiration=expires_delta,
        method="GET",
    )


__all__ = [
    "delete_blob",
    "get_bucket",
    "get_client",
    "load_credentials",
    "sign_get_url",
    "upload_bytes",
]
