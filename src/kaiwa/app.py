"""Application factory for the FastAPI service."""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import PROJECT_ROOT, Settings, get_settings
from .generation.orchestrator import GenerationOrchestrator
from .logging_handlers import DateStampedFileHandler, cleanup_old_logs
from .logging_settings import LoggingSettings, parse_logging_settings
from .routers.audio import router as audio_router
from .routers.conversations import router as conversations_router
from .routers.practices import router as practices_router
from .routers.readings import router as readings_router

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _resolve(path: Path) -> Path:
    return path if path.is_absolute() else PROJECT_ROOT / path


def _configure_logging(
    settings: Settings, logging_settings: LoggingSettings
) -> None:
    """Configure console and file logging from `.env` and logging_settings.conf."""
    # Load .env file first to ensure LOG_FILE is available
    load_dotenv()

    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)
    formatter = logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATE_FORMAT)

    handlers: list[logging.Handler] = []

    log_file = os.getenv("LOG_FILE")
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if logging_settings.app_level is not None:
        app_handler = DateStampedFileHandler(_resolve(settings.app_log_dir))
        app_handler.setLevel(logging_settings.app_level)
        app_handler.setFormatter(formatter)
        handlers.append(app_handler)

    if logging_settings.terminal_level is not None:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging_settings.terminal_level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    logging.basicConfig(
        level=log_level,
        handlers=handlers or [logging.NullHandler()],
        force=True,  # Override any existing configuration
    )

    logging.getLogger("kaiwa").setLevel(log_level)

    # Also capture uvicorn logs
    logging.getLogger("uvicorn").setLevel(log_level)
    logging.getLogger("uvicorn.access").setLevel(log_level)
    logging.getLogger("uvicorn.error").setLevel(log_level)

    logging.getLogger("httpx").setLevel(log_level)
    logging.getLogger("httpcore").setLevel(log_level)
    if log_level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)


def create_app(
    settings: Optional[Settings] = None,
    *,
    orchestrator: Optional[GenerationOrchestrator] = None,
) -> FastAPI:
    settings = settings or get_settings()
    logging_settings = parse_logging_settings(PROJECT_ROOT / "logging_settings.conf")
    _configure_logging(settings, logging_settings)

    cleanup_old_logs(
        [_resolve(settings.app_log_dir), _resolve(settings.generation_log_dir)],
        logging_settings.retention_hours,
        logger=logging.getLogger(__name__),
    )

    if orchestrator is None:
        orchestrator = GenerationOrchestrator(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await orchestrator.initialize()
        try:
            yield
        finally:
            try:
                await asyncio.wait_for(orchestrator.shutdown(), timeout=10.0)
            except asyncio.TimeoutError:
                logging.warning("Orchestrator shutdown timed out after 10s")
            except Exception as exc:
                logging.warning("Error during orchestrator shutdown: %s", exc)

    app = FastAPI(
        title="Kaiwa Practice Backend",
        version="0.1.0",
        description="Generates Japanese practice dialogues with audio over SSE.",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.generation_orchestrator = orchestrator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(conversations_router)
    app.include_router(practices_router)
    app.include_router(readings_router)
    app.include_router(audio_router)

    @app.get("/health", tags=["health"])
    async def healthcheck() -> dict[str, str | None]:
        return {
            "status": "ok",
            "llmProvider": settings.llm_provider,
            "llmModel": settings.resolved_llm_model,
            "ttsProvider": settings.tts_provider,
            "audioStorage": settings.audio_storage,
        }

    return app


__all__ = ["create_app"]
