"""Conversation generation (SSE) and conversation record routes."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sse_starlette.sse import EventSourceResponse

from ..generation.decoder import StructuredOutputError
from ..generation.orchestrator import GenerationOrchestrator
from ..llm_client import LLMError
from ..repository import NotFoundError, PracticeRepository
from ..schemas.conversation import Conversation, GenerateRequest
from ..schemas.events import ErrorEvent, ProgressEvent
from ..services.audio_storage import AudioStorageError
from ..services.speech import SpeechSynthesisError
from .dependencies import get_generation_orchestrator, get_practice_repository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/conversations", tags=["conversations"])


def error_event_for(exc: Exception) -> ErrorEvent:
    """Map a generation failure onto the terminal SSE error payload."""

    if isinstance(exc, NotFoundError):
        return ErrorEvent(detail=str(exc), status=status.HTTP_404_NOT_FOUND)
    if isinstance(exc, StructuredOutputError):
        return ErrorEvent(
            detail=exc.detail, status=status.HTTP_422_UNPROCESSABLE_ENTITY
        )
    if isinstance(exc, LLMError):
        detail = exc.detail if isinstance(exc.detail, str) else str(exc)
        code = (
            exc.status_code
            if exc.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
            else status.HTTP_502_BAD_GATEWAY
        )
        return ErrorEvent(detail=detail, status=code)
    if isinstance(exc, (SpeechSynthesisError, AudioStorageError)):
        return ErrorEvent(detail=str(exc), status=status.HTTP_502_BAD_GATEWAY)
    return ErrorEvent(
        detail=str(exc) or exc.__class__.__name__,
        status=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


@router.post("/generate", response_model=None, status_code=200)
async def generate_conversation(
    payload: GenerateRequest,
    orchestrator: GenerationOrchestrator = Depends(get_generation_orchestrator),
) -> EventSourceResponse:
    """Stream drafts of a new dialogue, then the persisted result, as SSE."""

    async def event_publisher():
        try:
            async for event in orchestrator.generate(payload):
                if isinstance(event, ProgressEvent):
                    yield {
                        "event": "progress",
                        "data": event.data.model_dump_json(
                            by_alias=True, exclude_none=True
                        ),
                    }
                else:
                    yield {
                        "event": "complete",
                        "data": event.model_dump_json(
                            by_alias=True, include={"practice", "conversation"}
                        ),
                    }
        except Exception as exc:
            error = error_event_for(exc)
            if error.status == status.HTTP_500_INTERNAL_SERVER_ERROR:
                logger.exception("Generation failed")
            yield {
                "event": "error",
                "data": error.model_dump_json(include={"detail", "status"}),
            }

    return EventSourceResponse(event_publisher())


@router.get("/{conversation_id}", response_model=Conversation)
async def read_conversation(
    conversation_id: str,
    repo: PracticeRepository = Depends(get_practice_repository),
) -> Conversation:
    try:
        record = await repo.get_conversation(conversation_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Conversation.model_validate(record)


@router.delete("/{conversation_id}", status_code=204)
async def delete_conversation(
    conversation_id: str,
    repo: PracticeRepository = Depends(get_practice_repository),
) -> Response:
    try:
        await repo.delete_conversation(conversation_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)
