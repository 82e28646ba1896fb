"""Turn synthesized audio into the `audioUrl` stored on each sentence."""

from __future__ import annotations

import asyncio
import base64
import logging
from datetime import timedelta
from typing import Iterable, Protocol

from ..config import Settings
from . import gcs

logger = logging.getLogger(__name__)

AUDIO_MIME_TYPE = "audio/mp3"
AUDIO_ROUTE_PREFIX = "/api/audio/"


class AudioStorageError(Exception):
    """Raised when a clip cannot be stored."""


class AudioStore(Protocol):
    name: str

    async def store(self, key: str, index: int, audio: bytes) -> str:
        ...

    async def discard(self, urls: Iterable[str]) -> None:
        ...


def to_data_uri(audio: bytes, mime_type: str = AUDIO_MIME_TYPE) -> str:
    encoded = base64.b64encode(audio).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


class InlineAudioStore:
    """Embed clips directly in the sentence as data URIs."""

    name = "inline"

    async def store(self, key: str, index: int, audio: bytes) -> str:
        return to_data_uri(audio)

    async def discard(self, urls: Iterable[str]) -> None:
        return None


class GcsAudioStore:
    """Upload clips to GCS and reference them through the audio redirect route."""

    name = "gcs"

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._ttl = timedelta(minutes=settings.audio_url_ttl_minutes)

    @staticmethod
    def blob_name(key: str, index: int) -> str:
        return f"{key}/{index:02d}.mp3"

    @staticmethod
    def blob_from_url(url: str) -> str | None:
        if not url.startswith(AUDIO_ROUTE_PREFIX):
            return None
        blob = url[len(AUDIO_ROUTE_PREFIX) :]
        return blob or None

    async def store(self, key: str, index: int, audio: bytes) -> str:
        blob_name = self.blob_name(key, index)
        try:
            await asyncio.to_thread(
                gcs.upload_bytes,
                blob_name,
                audio,
                content_type="audio/mpeg",
                settings=self._settings,
            )
        except Exception as exc:
            raise AudioStorageError(f"Failed to upload {blob_name}: {exc}") from exc
        return f"{AUDIO_ROUTE_PREFIX}{blob_name}"

    async def discard(self, urls: Iterable[str]) -> None:
        for url in urls:
            blob_name = self.blob_from_url(url)
            if blob_name is None:
                continue
            try:
                await asyncio.to_thread(
                    gcs.delete_blob, blob_name, settings=self._settings
                )
            except Exception:  # pragma: no cover - best effort cleanup
                logger.warning("Failed to delete audio blob %s", blob_name, exc_info=True)

    async def signed_url(self, blob_name: str) -> str:
        return await asyncio.to_thread(
            gcs.sign_get_url,
            blob_name,
            expires_delta=self._ttl,
            settings=self._settings,
        )


def create_audio_store(settings: Settings) -> AudioStore:
    """Return the store selected by AUDIO_STORAGE."""

    if settings.audio_storage == "gcs":
        return GcsAudioStore(settings)
    return InlineAudioStore()


__all__ = [
    "AUDIO_ROUTE_PREFIX",
    "AudioStorageError",
    "AudioStore",
    "GcsAudioStore",
    "InlineAudioStore",
    "create_audio_store",
    "to_data_uri",
]
