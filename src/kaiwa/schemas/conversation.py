"""Pydantic models for generated dialogues, drafts and generation events."""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

Role = Literal["A", "B"]
Difficulty = Literal[
    "JLPT N5",
    "JLPT N4",
    "JLPT N4-N5",
    "JLPT N3",
    "JLPT N2",
    "JLPT N1",
]
VoiceMode = Literal["different", "same"]
Familiarity = Literal["stranger", "casual", "close"]


class CamelModel(BaseModel):
    """Base model serializing to camelCase while accepting snake_case input."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class LLMSentence(CamelModel):
    """One dialogue line as the model must return it."""

    role: Role
    text: str
    hiragana: str
    translation: str
    grammar_explanation: str


class LLMConversation(CamelModel):
    """Strict shape of the final model output."""

    title: str
    sentences: List[LLMSentence] = Field(min_length=1)


class PartialLLMSentence(CamelModel):
    role: Optional[Role] = None
    text: Optional[str] = None
    hiragana: Optional[str] = None
    translation: Optional[str] = None
    grammar_explanation: Optional[str] = None


class PartialLLMConversation(CamelModel):
    """Deep-partial shadow of `LLMConversation` used while tokens stream in."""

    title: Optional[str] = None
    sentences: Optional[List[PartialLLMSentence]] = None


class Sentence(LLMSentence):
    """A persisted dialogue line with its synthesized audio reference."""

    audio_url: Optional[str] = None


class GenerateRequest(CamelModel):
    """Incoming generation request payload."""

    prompt: str = Field(min_length=1)
    practice_id: Optional[str] = None
    difficulty: Difficulty = "JLPT N4-N5"
    voice_mode: VoiceMode = "different"
    familiarity: Familiarity = "casual"

    @field_validator("prompt")
    @classmethod
    def _strip_prompt(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("prompt must not be blank")
        return stripped


class ConversationSummary(CamelModel):
    id: str
    title: Optional[str] = None
    created_at: str


class Conversation(CamelModel):
    """One persisted generation attempt."""

    id: str
    practice_id: str
    title: Optional[str] = None
    sentences: List[Sentence]
    difficulty: Difficulty
    voice_mode: VoiceMode
    familiarity: Familiarity
    created_at: str


__all__ = [
    "CamelModel",
    "Conversation",
    "ConversationSummary",
    "Difficulty",
    "Familiarity",
    "GenerateRequest",
    "LLMConversation",
    "LLMSentence",
    "PartialLLMConversation",
    "PartialLLMSentence",
    "Role",
    "Sentence",
    "VoiceMode",
]
