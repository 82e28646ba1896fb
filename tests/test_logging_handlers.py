import logging
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

from kaiwa.logging_handlers import (
    DateStampedFileHandler,
    cleanup_old_logs,
    date_stamped_path,
)


def test_date_stamped_path_layout(tmp_path) -> None:
    current = datetime(2024, 5, 26, 12, 34, 56, tzinfo=timezone.utc)

    path = date_stamped_path(tmp_path, "generation", current_time=current, suffix="_x1")

    assert path == tmp_path / "2024-05-26" / "generation_2024-05-26_12-34-56_UTC_x1.log"


def test_date_stamped_file_handler_creates_expected_path(tmp_path) -> None:
    current = datetime(2024, 5, 26, 12, 34, 56, tzinfo=timezone.utc)
    handler = DateStampedFileHandler(
        directory=tmp_path / "app",
        prefix="app",
        current_time=current,
        encoding="utf-8",
    )
    try:
        expected_file = (
            (tmp_path / "app" / "2024-05-26").resolve()
            / "app_2024-05-26_12-34-56_UTC.log"
        )
        file_path = Path(handler.baseFilename)
        assert file_path == expected_file
        assert file_path.exists()

        record = logging.LogRecord(
            name="test",
            level=logging.INFO,
            pathname=__file__,
            lineno=0,
            msg="hello world",
            args=(),
            exc_info=None,
        )
        handler.emit(record)

        contents = file_path.read_text(encoding="utf-8")
        assert "hello world" in contents
    finally:
        handler.close()


def test_cleanup_old_logs(tmp_path) -> None:
    """Old log files are deleted based on retention hours."""
    log_dir = tmp_path / "logs" / "app"
    old_dir = log_dir / "2024-01-01"
    recent_dir = log_dir / "2024-01-03"
    old_dir.mkdir(parents=True)
    recent_dir.mkdir(parents=True)
    now = datetime.now(timezone.utc)

    old_file = old_dir / "old_log.log"
    old_file.write_text("old content")
    old_time = (now - timedelta(days=3)).timestamp()
    os.utime(old_file, (old_time, old_time))

    recent_file = recent_dir / "recent_log.log"
    recent_file.write_text("recent content")
    recent_time = (now - timedelta(days=1)).timestamp()
    os.utime(recent_file, (recent_time, recent_time))

    other_file = recent_dir / "notes.txt"
    other_file.write_text("not a log")
    os.utime(other_file, (old_time, old_time))

    deleted, errors = cleanup_old_logs([log_dir], retention_hours=48)

    assert (deleted, errors) == (1, 0)
    assert not old_file.exists()
    assert not old_dir.exists()
    assert recent_file.exists()
    assert other_file.exists()


def test_cleanup_old_logs_disabled(tmp_path) -> None:
    log_file = tmp_path / "ancient.log"
    log_file.write_text("x")
    old_time = (datetime.now(timezone.utc) - timedelta(days=30)).timestamp()
    os.utime(log_file, (old_time, old_time))

    assert cleanup_old_logs([tmp_path], retention_hours=0) == (0, 0)
    assert cleanup_old_logs([tmp_path / "missing"], retention_hours=1) == (0, 0)
    assert log_file.exists()
