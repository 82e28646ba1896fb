"""Turn a token stream of JSON text into partial drafts and one validated result."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import (
    Any,
    AsyncIterable,
    AsyncIterator,
    Generic,
    Mapping,
    Optional,
    TypeVar,
    Union,
)

from fastapi import status
from pydantic import BaseModel, ValidationError
from pydantic_core import from_json

from ..llm_client import LLMError, LLMRefusalError

logger = logging.getLogger(__name__)

FinalT = TypeVar("FinalT", bound=BaseModel)
PartialT = TypeVar("PartialT", bound=BaseModel)

_UNUSABLE_FINISH_REASONS = {"length", "content_filter"}


class StructuredOutputError(Exception):
    """The completed model output does not match the required schema."""

    def __init__(self, detail: str, raw: str = ""):
        super().__init__(detail)
        self.detail = detail
        self.raw = raw


@dataclass
class DraftSnapshot(Generic[PartialT]):
    """Best-effort parse of the text received so far."""

    draft: PartialT


@dataclass
class FinalResult(Generic[FinalT]):
    """Strictly validated output plus the raw text it came from."""

    value: FinalT
    raw: str


DecodedItem = Union[DraftSnapshot[Any], FinalResult[Any]]


def strip_code_fence(text: str) -> str:
    """Drop a Markdown code fence wrapped around JSON output.

    A fence whose opening line has not fully arrived yet yields an empty string.
    """

    stripped = text.lstrip()
    if not stripped.startswith("```"):
        return text
    newline = stripped.find("\n")
    if newline == -1:
        return ""
    body = stripped[newline + 1 :]
    trimmed = body.rstrip()
    if trimmed.endswith("```"):
        body = trimmed[:-3]
    return body


class StructuredStreamDecoder(Generic[FinalT, PartialT]):
    """Accumulate deltas, emitting drafts as they parse and a final result at the end."""

    def __init__(self, final_model: type[FinalT], partial_model: type[PartialT]):
        self._final_model = final_model
        self._partial_model = partial_model

    def parse_partial(self, text: str) -> Optional[PartialT]:
        """Return the deep-partial draft for `text`, or None if it does not parse yet."""

        candidate = strip_code_fence(text)
        if not candidate.strip():
            return None
        try:
            data = from_json(candidate, allow_partial="trailing-strings")
            return self._partial_model.model_validate(data)
        except ValueError as exc:
            # Incomplete JSON is the normal state mid-stream.
            logger.debug("Draft not parseable yet (%d chars): %s", len(text), exc)
            return None

    def parse_final(self, text: str) -> FinalT:
        candidate = strip_code_fence(text).strip()
        if not candidate:
            raise StructuredOutputError("The model returned no content", raw=text)
        try:
            return self._final_model.model_validate_json(candidate)
        except ValidationError as exc:
            detail = (
                "Model output does not match the dialogue schema: "
                f"{exc.error_count()} error(s); first: {exc.errors()[0]['msg']}"
            )
            raise StructuredOutputError(detail, raw=text) from exc

    async def decode(
        self, deltas: AsyncIterable[str]
    ) -> AsyncIterator[DecodedItem]:
        buffer: list[str] = []
        async for delta in deltas:
            if not delta:
                continue
            buffer.append(delta)
            draft = self.parse_partial("".join(buffer))
            if draft is not None:
                yield DraftSnapshot(draft)

        raw = "".join(buffer)
        yield FinalResult(self.parse_final(raw), raw)


def _chunk_error_detail(error: Any) -> str:
    if isinstance(error, Mapping):
        message = error.get("message")
        if isinstance(message, str) and message:
            return message
    return str(error)


async def iter_content_deltas(
    events: AsyncIterable[Mapping[str, Optional[str]]],
) -> AsyncIterator[str]:
    """Extract the text content deltas from OpenAI-compatible SSE events.

    Raises `LLMError` for in-band errors and unusable completions and
    `LLMRefusalError` when the model refuses.
    """

    async for event in events:
        if event.get("event", "message") != "message":
            continue
        data = event.get("data")
        if not data:
            continue
        if data == "[DONE]":
            return
        try:
            chunk = json.loads(data)
        except json.JSONDecodeError:
            logger.debug("Skipping non-JSON SSE payload: %s", data)
            continue
        if not isinstance(chunk, dict):
            continue

        error = chunk.get("error")
        if error:
            code = status.HTTP_502_BAD_GATEWAY
            upstream_code = error.get("code") if isinstance(error, Mapping) else None
            if isinstance(upstream_code, int) and 400 <= upstream_code < 600:
                code = upstream_code
            raise LLMError(code, _chunk_error_detail(error))

        for choice in chunk.get("choices") or []:
            if not isinstance(choice, Mapping):
                continue
            delta = choice.get("delta") or {}
            if not isinstance(delta, Mapping):
                continue
            refusal = delta.get("refusal")
            if refusal:
                raise LLMRefusalError(refusal)
            content = delta.get("content")
            if isinstance(content, str) and content:
                yield content
            finish_reason = choice.get("finish_reason")
            if finish_reason in _UNUSABLE_FINISH_REASONS:
                raise LLMError(
                    status.HTTP_502_BAD_GATEWAY,
                    f"Completion stopped early (finish_reason={finish_reason})",
                )


__all__ = [
    "DecodedItem",
    "DraftSnapshot",
    "FinalResult",
    "StructuredOutputError",
    "StructuredStreamDecoder",
    "iter_content_deltas",
    "strip_code_fence",
]
