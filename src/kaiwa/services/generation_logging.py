"""Persist one structured log entry per generation attempt."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ..logging_handlers import date_stamped_path


class GenerationLogWriter:
    """Write generation transcripts (prompt, raw output, outcome) to log files."""

    def __init__(self, base_dir: Path, *, min_level: int | None) -> None:
        self._base_dir = base_dir.resolve()
        self._min_level = min_level

    @property
    def enabled(self) -> bool:
        # Entries are INFO-level events.
        return self._min_level is not None and self._min_level <= logging.INFO

    async def write(
        self,
        *,
        generation_id: str,
        request: dict[str, Any],
        messages: list[dict[str, Any]],
        raw_output: str | None,
        outcome: str,
        error: str | None = None,
        conversation_id: str | None = None,
        started_at: datetime | None = None,
    ) -> Path | None:
        """Append the entry for `generation_id` if logging is enabled."""

        if not self.enabled:
            return None

        logged_at = datetime.now(timezone.utc)
        entry = {
            "type": "generation",
            "generation_id": generation_id,
            "logged_at": logged_at.isoformat(),
            "started_at": (started_at or logged_at).isoformat(),
            "outcome": outcome,
            "error": error,
            "conversation_id": conversation_id,
            "request": request,
            "messages": messages,
            "raw_output": raw_output,
        }
        safe_id = generation_id.replace("/", "_")
        log_path = date_stamped_path(
            self._base_dir,
            "generation",
            current_time=started_at or logged_at,
            suffix=f"_{safe_id}",
        )

        delimiter = "=" * 80
        header = logged_at.strftime("%Y-%m-%d %H:%M:%S UTC")
        rendered = json.dumps(entry, ensure_ascii=False, indent=2)
        payload = f"{header}\n{delimiter}\n{rendered}\n{delimiter}\n"

        await asyncio.to_thread(self._append_entry, log_path, payload)
        return log_path

    def _append_entry(self, path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as handle:
            handle.write(content)


__all__ = ["GenerationLogWriter"]
