"""Request-scoped accessors for services stored on `app.state`."""

from __future__ import annotations

from fastapi import Depends, Request

from ..generation.orchestrator import GenerationOrchestrator
from ..repository import PracticeRepository


def get_generation_orchestrator(request: Request) -> GenerationOrchestrator:
    orchestrator = getattr(request.app.state, "generation_orchestrator", None)
    if orchestrator is None:  # pragma: no cover - defensive
        raise RuntimeError("Generation orchestrator is not configured")
    return orchestrator


def get_practice_repository(
    orchestrator: GenerationOrchestrator = Depends(get_generation_orchestrator),
) -> PracticeRepository:
    return orchestrator.repository
