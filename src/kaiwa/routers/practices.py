"""API routes for listing, renaming and deleting practices."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Response

from ..repository import NotFoundError, PracticeRepository
from ..schemas.practice import (
    Practice,
    PracticeDetail,
    PracticeListItem,
    RenamePracticePayload,
)
from .dependencies import get_practice_repository

router = APIRouter(prefix="/api/practices", tags=["practices"])


@router.get("", response_model=List[PracticeListItem])
async def list_practices(
    repo: PracticeRepository = Depends(get_practice_repository),
) -> List[PracticeListItem]:
    records = await repo.list_practices()
    return [PracticeListItem.model_validate(record) for record in records]


@router.get("/{practice_id}", response_model=PracticeDetail)
async def read_practice(
    practice_id: str,
    repo: PracticeRepository = Depends(get_practice_repository),
) -> PracticeDetail:
    try:
        record = await repo.get_practice(practice_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return PracticeDetail.model_validate(record)


@router.patch("/{practice_id}", response_model=Practice)
async def rename_practice(
    practice_id: str,
    payload: RenamePracticePayload,
    repo: PracticeRepository = Depends(get_practice_repository),
) -> Practice:
    try:
        record = await repo.rename_practice(practice_id, payload.title)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return Practice.model_validate(record)


@router.delete("/{practice_id}", status_code=204)
async def delete_practice(
    practice_id: str,
    repo: PracticeRepository = Depends(get_practice_repository),
) -> Response:
    """Delete a practice together with all of its conversations."""

    try:
        await repo.delete_practice(practice_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)
