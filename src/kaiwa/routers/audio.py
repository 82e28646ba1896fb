"""Redirect hosted audio references to short-lived signed URLs."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse

from ..generation.orchestrator import GenerationOrchestrator
from ..services.audio_storage import GcsAudioStore
from .dependencies import get_generation_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/audio", tags=["audio"])


@router.get("/{blob_name:path}")
async def redirect_to_audio(
    blob_name: str,
    orchestrator: GenerationOrchestrator = Depends(get_generation_orchestrator),
) -> RedirectResponse:
    store = orchestrator.audio_store
    if not isinstance(store, GcsAudioStore) or not blob_name.endswith(".mp3"):
        raise HTTPException(status_code=404, detail="Audio not found")
    try:
        signed_url = await store.signed_url(blob_name)
    except Exception as exc:
        logger.warning("Failed to sign audio URL for %s: %s", blob_name, exc)
        raise HTTPException(status_code=502, detail="Audio storage unavailable") from exc
    return RedirectResponse(signed_url, status_code=307)
