"""Pydantic models for the reading alignment endpoint."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel


class AlignRequest(BaseModel):
    text: str
    reading: Optional[str] = None


class AlignedSegment(BaseModel):
    literal: str
    reading: Optional[str] = None


class AlignResponse(BaseModel):
    segments: List[AlignedSegment]
    html: str


__all__ = ["AlignRequest", "AlignResponse", "AlignedSegment"]
