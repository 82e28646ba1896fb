import json
import logging
from datetime import datetime, timezone

import pytest

from kaiwa.services.generation_logging import GenerationLogWriter


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.mark.anyio
async def test_generation_log_writer_creates_dated_entry(tmp_path) -> None:
    writer = GenerationLogWriter(tmp_path, min_level=logging.INFO)
    started_at = datetime(2026, 5, 12, 15, 30, 45, tzinfo=timezone.utc)

    log_path = await writer.write(
        generation_id="abc123",
        request={"prompt": "在咖啡店"},
        messages=[{"role": "user", "content": "在咖啡店"}],
        raw_output='{"title": "點咖啡"}',
        outcome="complete",
        conversation_id="conv-1",
        started_at=started_at,
    )

    assert log_path is not None
    assert log_path.parent == (tmp_path / "2026-05-12").resolve()
    assert log_path.name == "generation_2026-05-12_15-30-45_UTC_abc123.log"

    lines = log_path.read_text(encoding="utf-8").splitlines()
    delimiter = "=" * 80
    assert lines[1] == delimiter
    assert lines[-1] == delimiter
    entry = json.loads("\n".join(lines[2:-1]))
    assert entry["generation_id"] == "abc123"
    assert entry["outcome"] == "complete"
    assert entry["conversation_id"] == "conv-1"
    assert entry["request"]["prompt"] == "在咖啡店"
    assert entry["raw_output"] == '{"title": "點咖啡"}'
    assert entry["started_at"] == started_at.isoformat()


@pytest.mark.anyio
async def test_generation_log_writer_respects_level(tmp_path) -> None:
    for level in (None, logging.WARNING):
        writer = GenerationLogWriter(tmp_path, min_level=level)

        result = await writer.write(
            generation_id="skip",
            request={},
            messages=[],
            raw_output=None,
            outcome="error",
            error="boom",
        )

        assert result is None
    assert list(tmp_path.iterdir()) == []
