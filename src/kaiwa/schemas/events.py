"""Typed events emitted while a conversation is being generated."""

from __future__ import annotations

from typing import Literal, Union

from .conversation import CamelModel, Conversation, PartialLLMConversation
from .practice import Practice


class ProgressEvent(CamelModel):
    """A best-effort draft of the dialogue parsed from the tokens so far."""

    type: Literal["progress"] = "progress"
    data: PartialLLMConversation


class CompleteEvent(CamelModel):
    """Terminal event carrying the persisted practice and conversation."""

    type: Literal["complete"] = "complete"
    practice: Practice
    conversation: Conversation


class ErrorEvent(CamelModel):
    """Terminal event sent instead of `complete` when generation fails."""

    type: Literal["error"] = "error"
    detail: str
    status: int = 500


GenerationEvent = Union[ProgressEvent, CompleteEvent]


__all__ = ["CompleteEvent", "ErrorEvent", "GenerationEvent", "ProgressEvent"]
