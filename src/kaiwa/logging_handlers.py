"""File handler and retention helpers for application logs."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone, tzinfo
from pathlib import Path
from typing import Iterable, Optional


def date_stamped_path(
    base_dir: Path,
    prefix: str,
    *,
    current_time: datetime | None = None,
    zone: tzinfo = timezone.utc,
    suffix: str = "",
) -> Path:
    """Return `<base>/<YYYY-MM-DD>/<prefix>_<YYYY-MM-DD_HH-MM-SS>_<TZ><suffix>.log`."""

    timestamp = (current_time or datetime.now(timezone.utc)).astimezone(zone)
    tz_abbr = timestamp.tzname() or "UTC"
    date_folder = timestamp.strftime("%Y-%m-%d")
    human_time = timestamp.strftime("%Y-%m-%d_%H-%M-%S")
    return base_dir / date_folder / f"{prefix}_{human_time}_{tz_abbr}{suffix}.log"


class DateStampedFileHandler(logging.FileHandler):
    """File handler that opens one log file per process start, grouped by date."""

    def __init__(
        self,
        directory: str | Path = "logs/app",
        *,
        prefix: str = "app",
        encoding: str | None = "utf-8",
        delay: bool = False,
        current_time: datetime | None = None,
        zone: tzinfo = timezone.utc,
    ) -> None:
        log_path = date_stamped_path(
            Path(directory).resolve(),
            prefix,
            current_time=current_time,
            zone=zone,
        )
        log_path.parent.mkdir(parents=True, exist_ok=True)
        super().__init__(log_path, mode="a", encoding=encoding, delay=delay)


def cleanup_old_logs(
    log_directories: Iterable[str | Path],
    retention_hours: int,
    logger: Optional[logging.Logger] = None,
) -> tuple[int, int]:
    """Delete `*.log` files older than `retention_hours` and prune empty date folders.

    Returns `(files_deleted, errors)`. A retention of 0 disables cleanup.
    """

    if retention_hours <= 0:
        return (0, 0)

    cutoff_time = datetime.now(timezone.utc) - timedelta(hours=retention_hours)
    files_deleted = 0
    errors = 0

    for directory in log_directories:
        dir_path = Path(directory).resolve()
        if not dir_path.exists():
            continue

        for log_file in dir_path.rglob("*.log"):
            try:
                mtime = datetime.fromtimestamp(log_file.stat().st_mtime, tz=timezone.utc)
                if mtime < cutoff_time:
                    log_file.unlink()
                    files_deleted += 1
                    if logger:
                        logger.debug("Deleted old log file: %s", log_file)
            except OSError as exc:
                errors += 1
                if logger:
                    logger.warning("Failed to delete %s: %s", log_file, exc)

        for date_dir in dir_path.iterdir():
            if date_dir.is_dir() and not any(date_dir.iterdir()):
                try:
                    date_dir.rmdir()
                except OSError:
                    errors += 1

    if logger and files_deleted > 0:
        logger.info(
            "Log cleanup complete: %d file(s) deleted, %d error(s)",
            files_deleted,
            errors,
        )

    return (files_deleted, errors)


__all__ = ["DateStampedFileHandler", "cleanup_old_logs", "date_stamped_path"]
