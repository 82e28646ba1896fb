from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncGenerator, Optional

import pytest

from kaiwa.config import Settings
from kaiwa.generation.decoder import StructuredOutputError
from kaiwa.generation.orchestrator import GenerationOrchestrator, assign_roles
from kaiwa.repository import PracticeNotFoundError, PracticeRepository
from kaiwa.schemas.conversation import GenerateRequest, LLMSentence
from kaiwa.schemas.events import CompleteEvent, ProgressEvent
from kaiwa.services.generation_logging import GenerationLogWriter
from kaiwa.services.speech import SpeechSynthesisError


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def dialogue_json(count: int, title: str = "在咖啡店點飲料") -> str:
    return json.dumps(
        {
            "title": title,
            "sentences": [
                {
                    # Deliberately wrong roles; the orchestrator reassigns them.
                    "role": "A",
                    "text": f"文{index}です。",
                    "hiragana": f"ぶん{index}です。",
                    "translation": f"第{index}句。",
                    "grammarExplanation": "です 是禮貌的斷定。",
                }
                for index in range(count)
            ],
        },
        ensure_ascii=False,
    )


class FakeCompletionClient:
    def __init__(self, *outputs: str, chunk_size: int = 25) -> None:
        self._outputs = list(outputs)
        self._chunk_size = chunk_size
        self.payloads: list[dict[str, Any]] = []
        self.closed_streams = 0

    def build_payload(
        self, messages, *, response_format: Optional[dict[str, Any]] = None
    ) -> dict[str, Any]:
        return {"messages": list(messages), "response_format": response_format}

    async def stream_chat_raw(
        self, payload: dict[str, Any]
    ) -> AsyncGenerator[dict[str, Optional[str]], None]:
        self.payloads.append(payload)
        text = self._outputs.pop(0)
        try:
            for start in range(0, len(text), self._chunk_size):
                piece = text[start : start + self._chunk_size]
                yield {
                    "event": "message",
                    "data": json.dumps({"choices": [{"delta": {"content": piece}}]}),
                }
            yield {"event": "message", "data": "[DONE]"}
        finally:
            self.closed_streams += 1

    async def aclose(self) -> None:
        return None


class FakeSynthesizer:
    name = "fake"

    def __init__(
        self,
        *,
        fail_on_call: Optional[int] = None,
        delays: Optional[dict[str, float]] = None,
    ) -> None:
        self.calls: list[tuple[str, str, str]] = []
        self._fail_on_call = fail_on_call
        self._delays = delays or {}

    async def synthesize(self, text: str, role: str, voice_mode: str) -> bytes:
        self.calls.append((text, role, voice_mode))
        if self._fail_on_call is not None and len(self.calls) == self._fail_on_call:
            raise SpeechSynthesisError("synthesis backend unavailable")
        await asyncio.sleep(self._delays.get(text, 0))
        return f"mp3:{text}".encode("utf-8")

    async def aclose(self) -> None:
        return None


class RecordingAudioStore:
    name = "recording"

    def __init__(self) -> None:
        self.stored: dict[str, bytes] = {}
        self.discarded: list[str] = []

    async def store(self, key: str, index: int, audio: bytes) -> str:
        url = f"/api/audio/{key}/{index:02d}.mp3"
        self.stored[url] = audio
        return url

    async def discard(self, urls) -> None:
        self.discarded.extend(urls)


async def make_orchestrator(
    tmp_path,
    client: FakeCompletionClient,
    synthesizer: Optional[FakeSynthesizer] = None,
    *,
    parallel: bool = False,
) -> GenerationOrchestrator:
    orchestrator = GenerationOrchestrator(
        Settings(parallel_synthesis=parallel, prior_context_window=3),
        repository=PracticeRepository(tmp_path / "practice.db"),
        client=client,  # type: ignore[arg-type]
        synthesizer=synthesizer or FakeSynthesizer(),
        audio_store=RecordingAudioStore(),
        log_writer=GenerationLogWriter(tmp_path / "logs", min_level=logging.INFO),
    )
    await orchestrator.initialize()
    return orchestrator


async def collect(orchestrator: GenerationOrchestrator, request: GenerateRequest):
    return [event async for event in orchestrator.generate(request)]


def test_assign_roles_alternates_by_position() -> None:
    sentences = [
        LLMSentence(
            role="B", text="t", hiragana="h", translation="tr", grammar_explanation="g"
        )
        for _ in range(5)
    ]

    assert [s.role for s in assign_roles(sentences)] == ["A", "B", "A", "B", "A"]
    assert [s.role for s in sentences] == ["B"] * 5


@pytest.mark.anyio
async def test_generate_streams_drafts_then_persists(tmp_path):
    client = FakeCompletionClient(dialogue_json(10))
    synthesizer = FakeSynthesizer()
    orchestrator = await make_orchestrator(tmp_path, client, synthesizer)
    try:
        events = await collect(
            orchestrator, GenerateRequest(prompt="在咖啡店", voice_mode="same")
        )

        progress = [event for event in events if isinstance(event, ProgressEvent)]
        assert progress
        assert isinstance(events[-1], CompleteEvent)
        assert all(isinstance(event, ProgressEvent) for event in events[:-1])

        complete = events[-1]
        conversation = complete.conversation
        assert complete.practice.prompt == "在咖啡店"
        assert conversation.title == "在咖啡店點飲料"
        assert conversation.voice_mode == "same"
        assert len(conversation.sentences) == 10
        assert [s.role for s in conversation.sentences] == ["A", "B"] * 5
        assert all(s.audio_url for s in conversation.sentences)

        # The reading is what gets spoken.
        assert synthesizer.calls[0] == ("ぶん0です。", "A", "same")
        assert synthesizer.calls[1][1] == "B"

        repo = orchestrator.repository
        assert await repo.count_practices() == 1
        assert await repo.count_conversations() == 1
        stored = await repo.get_conversation(conversation.id)
        assert stored["sentences"][3]["audioUrl"] == conversation.sentences[3].audio_url

        log_files = list((tmp_path / "logs").rglob("generation_*.log"))
        assert len(log_files) == 1
        log_text = log_files[0].read_text(encoding="utf-8")
        assert '"outcome": "complete"' in log_text
        assert conversation.id in log_text
    finally:
        await orchestrator.shutdown()


@pytest.mark.anyio
async def test_synthesis_failure_persists_nothing(tmp_path):
    client = FakeCompletionClient(dialogue_json(10))
    orchestrator = await make_orchestrator(
        tmp_path, client, FakeSynthesizer(fail_on_call=5)
    )
    try:
        events = []
        with pytest.raises(SpeechSynthesisError):
            async for event in orchestrator.generate(GenerateRequest(prompt="在咖啡店")):
                events.append(event)

        assert not any(isinstance(event, CompleteEvent) for event in events)
        assert await orchestrator.repository.count_practices() == 0
        assert await orchestrator.repository.count_conversations() == 0
        store = orchestrator.audio_store
        assert len(store.discarded) == 4  # type: ignore[attr-defined]

        log_text = next((tmp_path / "logs").rglob("*.log")).read_text(encoding="utf-8")
        assert '"outcome": "error"' in log_text
    finally:
        await orchestrator.shutdown()


@pytest.mark.anyio
async def test_repeat_generation_reuses_practice_and_avoids_prior_titles(tmp_path):
    client = FakeCompletionClient(
        dialogue_json(4, title="點一杯拿鐵"),
        dialogue_json(4, title="外帶蛋糕"),
    )
    orchestrator = await make_orchestrator(tmp_path, client)
    try:
        first = (await collect(orchestrator, GenerateRequest(prompt="在咖啡店")))[-1]
        practice_id = first.practice.id

        second = (
            await collect(
                orchestrator,
                GenerateRequest(prompt="在咖啡店", practice_id=practice_id),
            )
        )[-1]

        assert second.practice.id == practice_id
        assert second.conversation.title == "外帶蛋糕"
        repo = orchestrator.repository
        assert await repo.count_practices() == 1
        assert await repo.count_conversations(practice_id) == 2

        user_prompt = client.payloads[1]["messages"][1]["content"]
        assert "- 點一杯拿鐵" in user_prompt
        assert "文0です。" in user_prompt

        detail = await repo.get_practice(practice_id)
        assert [c["title"] for c in detail["conversations"]] == ["外帶蛋糕", "點一杯拿鐵"]
    finally:
        await orchestrator.shutdown()


@pytest.mark.anyio
async def test_parallel_synthesis_preserves_sentence_order(tmp_path):
    delays = {f"ぶん{index}です。": 0.002 * (6 - index) for index in range(6)}
    client = FakeCompletionClient(dialogue_json(6))
    orchestrator = await make_orchestrator(
        tmp_path, client, FakeSynthesizer(delays=delays), parallel=True
    )
    try:
        complete = (await collect(orchestrator, GenerateRequest(prompt="車站")))[-1]

        sentences = complete.conversation.sentences
        assert [s.text for s in sentences] == [f"文{i}です。" for i in range(6)]
        assert [s.audio_url.endswith(f"/{i:02d}.mp3") for i, s in enumerate(sentences)] == [
            True
        ] * 6
    finally:
        await orchestrator.shutdown()


@pytest.mark.anyio
async def test_unknown_practice_fails_before_calling_model(tmp_path):
    client = FakeCompletionClient(dialogue_json(2))
    orchestrator = await make_orchestrator(tmp_path, client)
    try:
        with pytest.raises(PracticeNotFoundError):
            await collect(
                orchestrator, GenerateRequest(prompt="在咖啡店", practice_id="missing")
            )

        assert client.payloads == []
    finally:
        await orchestrator.shutdown()


@pytest.mark.anyio
async def test_persistence_failure_discards_audio_and_new_practice(
    tmp_path, monkeypatch
):
    client = FakeCompletionClient(dialogue_json(3))
    orchestrator = await make_orchestrator(tmp_path, client)
    repo = orchestrator.repository

    async def failing_create(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(repo, "create_conversation", failing_create)
    try:
        with pytest.raises(RuntimeError):
            await collect(orchestrator, GenerateRequest(prompt="在咖啡店"))

        assert await repo.count_practices() == 0
        assert len(orchestrator.audio_store.discarded) == 3  # type: ignore[attr-defined]
    finally:
        await orchestrator.shutdown()


@pytest.mark.anyio
async def test_invalid_model_output_is_reported(tmp_path):
    client = FakeCompletionClient('{"title": "不完整", "sentences": [{"role": "A"}]}')
    orchestrator = await make_orchestrator(tmp_path, client)
    try:
        with pytest.raises(StructuredOutputError):
            await collect(orchestrator, GenerateRequest(prompt="在咖啡店"))

        assert await orchestrator.repository.count_practices() == 0
        log_text = next((tmp_path / "logs").rglob("*.log")).read_text(encoding="utf-8")
        assert "不完整" in log_text
    finally:
        await orchestrator.shutdown()


@pytest.mark.anyio
async def test_closing_early_closes_upstream_stream(tmp_path):
    client = FakeCompletionClient(dialogue_json(10), chunk_size=10)
    orchestrator = await make_orchestrator(tmp_path, client)
    try:
        stream = orchestrator.generate(GenerateRequest(prompt="在咖啡店"))
        first = await stream.__anext__()
        await stream.aclose()

        assert isinstance(first, ProgressEvent)
        assert client.closed_streams == 1
        assert await orchestrator.repository.count_conversations() == 0

        log_text = next((tmp_path / "logs").rglob("*.log")).read_text(encoding="utf-8")
        assert '"outcome": "cancelled"' in log_text
    finally:
        await orchestrator.shutdown()
