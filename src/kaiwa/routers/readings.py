"""Furigana alignment endpoint."""

from __future__ import annotations

from fastapi import APIRouter

from ..schemas.readings import AlignedSegment, AlignRequest, AlignResponse
from ..services.reading_alignment import align, render_ruby

router = APIRouter(prefix="/api/readings", tags=["readings"])


@router.post("/align", response_model=AlignResponse)
async def align_reading(payload: AlignRequest) -> AlignResponse:
    segments = [
        AlignedSegment(literal=segment.literal, reading=segment.reading)
        for segment in align(payload.text, payload.reading)
    ]
    return AlignResponse(
        segments=segments,
        html=render_ruby(payload.text, payload.reading),
    )
