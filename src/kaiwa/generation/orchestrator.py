"""End-to-end dialogue generation: prompt, stream, synthesize, persist."""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import aclosing
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncGenerator, Optional, Sequence

from ..config import PROJECT_ROOT, Settings
from ..llm_client import CompletionClient
from ..logging_settings import parse_logging_settings
from ..repository import (
    NotFoundError,
    PracticeNotFoundError,
    PracticeRepository,
    PriorContext,
)
from ..schemas.conversation import (
    Conversation,
    GenerateRequest,
    LLMConversation,
    LLMSentence,
    PartialLLMConversation,
    Sentence,
    VoiceMode,
)
from ..schemas.events import CompleteEvent, GenerationEvent, ProgressEvent
from ..schemas.practice import Practice
from ..services.audio_storage import AudioStore, create_audio_store
from ..services.generation_logging import GenerationLogWriter
from ..services.speech import SpeechSynthesizer, create_speech_synthesizer
from .decoder import (
    DraftSnapshot,
    FinalResult,
    StructuredOutputError,
    StructuredStreamDecoder,
    iter_content_deltas,
)
from .prompts import build_messages, build_response_format

logger = logging.getLogger(__name__)


def _resolve_path(path: Path) -> Path:
    return path if path.is_absolute() else PROJECT_ROOT / path


def assign_roles(sentences: Sequence[LLMSentence]) -> list[LLMSentence]:
    """Overwrite speaker roles so they alternate A, B, A, ... by position."""

    return [
        sentence.model_copy(update={"role": "A" if index % 2 == 0 else "B"})
        for index, sentence in enumerate(sentences)
    ]


class GenerationOrchestrator:
    """Coordinate the generation pipeline for one request at a time per call."""

    def __init__(
        self,
        settings: Settings,
        *,
        repository: Optional[PracticeRepository] = None,
        client: Optional[CompletionClient] = None,
        synthesizer: Optional[SpeechSynthesizer] = None,
        audio_store: Optional[AudioStore] = None,
        log_writer: Optional[GenerationLogWriter] = None,
    ):
        self._settings = settings
        self._repo = repository or PracticeRepository(
            _resolve_path(settings.practice_database_path)
        )
        self._client = client or CompletionClient(settings)
        self._synthesizer = synthesizer or create_speech_synthesizer(settings)
        self._audio_store = audio_store or create_audio_store(settings)
        if log_writer is None:
            logging_settings = parse_logging_settings(
                PROJECT_ROOT / "logging_settings.conf"
            )
            log_writer = GenerationLogWriter(
                _resolve_path(settings.generation_log_dir),
                min_level=logging_settings.generations_level,
            )
        self._log_writer = log_writer
        self._decoder: StructuredStreamDecoder[
            LLMConversation, PartialLLMConversation
        ] = StructuredStreamDecoder(LLMConversation, PartialLLMConversation)
        self._init_lock = asyncio.Lock()
        self._ready = asyncio.Event()

    async def initialize(self) -> None:
        """Open the database once."""

        async with self._init_lock:
            if self._ready.is_set():
                return
            await self._repo.initialize()
            self._ready.set()
            logger.info(
                "Generation orchestrator ready (llm=%s/%s, tts=%s, audio=%s)",
                self._settings.llm_provider,
                self._settings.resolved_llm_model,
                self._synthesizer.name,
                self._audio_store.name,
            )

    async def shutdown(self) -> None:
        """Clean up held resources."""

        try:
            await asyncio.wait_for(self._client.aclose(), timeout=2.0)
        except (asyncio.TimeoutError, Exception) as exc:
            logger.warning("Error closing LLM client: %s", exc)

        try:
            await asyncio.wait_for(self._synthesizer.aclose(), timeout=2.0)
        except (asyncio.TimeoutError, Exception) as exc:
            logger.warning("Error closing speech synthesizer: %s", exc)

        try:
            await asyncio.wait_for(self._repo.close(), timeout=2.0)
        except (asyncio.TimeoutError, Exception) as exc:
            logger.warning("Error closing repository: %s", exc)

        self._ready.clear()

    @property
    def repository(self) -> PracticeRepository:
        return self._repo

    @property
    def audio_store(self) -> AudioStore:
        return self._audio_store

    async def _load_prior_context(
        self, practice_id: Optional[str]
    ) -> Optional[PriorContext]:
        if practice_id is None:
            return None
        if not await self._repo.practice_exists(practice_id):
            raise PracticeNotFoundError(practice_id)
        return await self._repo.get_prior_context(
            practice_id, self._settings.prior_context_window
        )

    async def generate(
        self, request: GenerateRequest
    ) -> AsyncGenerator[GenerationEvent, None]:
        """Yield progress drafts followed by exactly one complete event.

        Any failure propagates to the caller after cleanup; nothing is
        persisted unless every sentence was synthesized and stored.
        """

        await self._ready.wait()

        generation_id = uuid.uuid4().hex
        started_at = datetime.now(timezone.utc)
        messages: list[dict[str, Any]] = []
        stored_urls: list[str] = []
        raw_output: Optional[str] = None
        outcome = "cancelled"
        error_detail: Optional[str] = None
        conversation_id: Optional[str] = None

        logger.info(
            "Generation %s started (practice=%s, difficulty=%s, voice=%s, familiarity=%s)",
            generation_id,
            request.practice_id or "new",
            request.difficulty,
            request.voice_mode,
            request.familiarity,
        )

        try:
            prior = await self._load_prior_context(request.practice_id)
            messages = build_messages(
                request,
                prior,
                translation_language=self._settings.translation_language,
            )
            payload = self._client.build_payload(
                messages,
                response_format=build_response_format(
                    self._settings.supports_json_schema
                ),
            )

            final: Optional[FinalResult[LLMConversation]] = None
            # Exiting early closes every stage, including the upstream HTTP response.
            async with aclosing(self._client.stream_chat_raw(payload)) as events:
                async with aclosing(iter_content_deltas(events)) as deltas:
                    async with aclosing(self._decoder.decode(deltas)) as decoded:
                        async for item in decoded:
                            if isinstance(item, DraftSnapshot):
                                yield ProgressEvent(data=item.draft)
                            else:
                                final = item
            if final is None:
                raise StructuredOutputError("The model stream ended without output")
            raw_output = final.raw

            sentences = await self._synthesize_sentences(
                generation_id,
                assign_roles(final.value.sentences),
                request.voice_mode,
                stored_urls,
            )
            practice, conversation = await self._persist(
                request, final.value.title, sentences
            )
            conversation_id = conversation.id
            outcome = "complete"
            logger.info(
                "Generation %s complete: conversation %s with %d sentence(s)",
                generation_id,
                conversation.id,
                len(conversation.sentences),
            )
            yield CompleteEvent(practice=practice, conversation=conversation)
        except (Exception, asyncio.CancelledError) as exc:
            if isinstance(exc, asyncio.CancelledError):
                outcome = "cancelled"
            else:
                outcome = "error"
                error_detail = str(exc)
                logger.warning("Generation %s failed: %s", generation_id, exc)
            if isinstance(exc, StructuredOutputError):
                raw_output = exc.raw
            if conversation_id is None:
                await self._audio_store.discard(stored_urls)
            raise
        finally:
            await self._write_log(
                generation_id=generation_id,
                request=request,
                messages=messages,
                raw_output=raw_output,
                outcome=outcome,
                error=error_detail,
                conversation_id=conversation_id,
                started_at=started_at,
            )

    async def _synthesize_one(
        self,
        generation_id: str,
        index: int,
        sentence: LLMSentence,
        voice_mode: VoiceMode,
        stored_urls: list[str],
    ) -> Sentence:
        # The reading is synthesized so the audio matches what learners read along.
        speech_text = sentence.hiragana.strip() or sentence.text
        audio = await self._synthesizer.synthesize(speech_text, sentence.role, voice_mode)
        audio_url = await self._audio_store.store(generation_id, index, audio)
        stored_urls.append(audio_url)
        return Sentence(**sentence.model_dump(), audio_url=audio_url)

    async def _synthesize_sentences(
        self,
        generation_id: str,
        sentences: Sequence[LLMSentence],
        voice_mode: VoiceMode,
        stored_urls: list[str],
    ) -> list[Sentence]:
        if not self._settings.parallel_synthesis:
            results: list[Sentence] = []
            for index, sentence in enumerate(sentences):
                results.append(
                    await self._synthesize_one(
                        generation_id, index, sentence, voice_mode, stored_urls
                    )
                )
            return results

        tasks = [
            asyncio.create_task(
                self._synthesize_one(
                    generation_id, index, sentence, voice_mode, stored_urls
                )
            )
            for index, sentence in enumerate(sentences)
        ]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _persist(
        self,
        request: GenerateRequest,
        title: str,
        sentences: Sequence[Sentence],
    ) -> tuple[Practice, Conversation]:
        created_practice = request.practice_id is None
        practice_record = await self._repo.upsert_practice(
            request.practice_id, request.prompt
        )
        try:
            conversation_record = await self._repo.create_conversation(
                practice_record["id"],
                title,
                [sentence.model_dump(by_alias=True) for sentence in sentences],
                request.difficulty,
                request.voice_mode,
                request.familiarity,
            )
        except Exception:
            if created_practice:
                try:
                    await self._repo.delete_practice(practice_record["id"])
                except NotFoundError:
                    pass
            raise
        return (
            Practice.model_validate(practice_record),
            Conversation.model_validate(conversation_record),
        )

    async def _write_log(self, *, request: GenerateRequest, **fields: Any) -> None:
        try:
            await self._log_writer.write(
                request=request.model_dump(by_alias=True), **fields
            )
        except OSError as exc:
            logger.warning("Failed to write generation log: %s", exc)


__all__ = ["GenerationOrchestrator", "assign_roles"]
