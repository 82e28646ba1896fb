"""Pydantic models for practice sessions."""

from __future__ import annotations

from typing import List, Optional

from pydantic import Field, field_validator

from .conversation import CamelModel, Conversation, ConversationSummary


class Practice(CamelModel):
    """Topic-level grouping of generated conversations."""

    id: str
    prompt: str
    title: Optional[str] = None
    created_at: str
    updated_at: str


class PracticeListItem(Practice):
    conversations: List[ConversationSummary] = Field(default_factory=list)


class PracticeDetail(Practice):
    conversations: List[Conversation] = Field(default_factory=list)


class RenamePracticePayload(CamelModel):
    title: str = Field(min_length=1, max_length=200)

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("title must not be blank")
        return stripped


__all__ = [
    "Practice",
    "PracticeDetail",
    "PracticeListItem",
    "RenamePracticePayload",
]
