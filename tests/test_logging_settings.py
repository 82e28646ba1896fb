"""Tests for logging settings parsing."""

from pathlib import Path

from kaiwa.logging_settings import parse_logging_settings


def test_parse_logging_settings_with_retention(tmp_path: Path) -> None:
    config_file = tmp_path / "logging_settings.conf"
    config_file.write_text(
        """
# Test config
terminal = debug
app = warning
generations = info  # per-attempt transcripts
retention_hours = 24
"""
    )

    settings = parse_logging_settings(config_file)

    assert settings.terminal_level == 10  # DEBUG
    assert settings.app_level == 30  # WARNING
    assert settings.generations_level == 20  # INFO
    assert settings.retention_hours == 24


def test_parse_logging_settings_defaults(tmp_path: Path) -> None:
    """Test default values when config file doesn't exist."""
    settings = parse_logging_settings(tmp_path / "nonexistent.conf")

    assert settings.terminal_level == 20
    assert settings.app_level == 20
    assert settings.generations_level == 20
    assert settings.retention_hours == 72


def test_parse_logging_settings_off_and_unknown_values(tmp_path: Path) -> None:
    config_file = tmp_path / "logging_settings.conf"
    config_file.write_text(
        """
terminal = off
app = verbose
unknown_key = debug
not a setting
"""
    )

    settings = parse_logging_settings(config_file)

    assert settings.terminal_level is None
    assert settings.app_level == 20  # Unknown level falls back to INFO
    assert settings.generations_level == 20


def test_parse_logging_settings_retention_edge_cases(tmp_path: Path) -> None:
    config_file = tmp_path / "logging_settings.conf"

    config_file.write_text("retention_hours = invalid\n")
    assert parse_logging_settings(config_file).retention_hours == 72

    config_file.write_text("retention_hours = -10\n")
    assert parse_logging_settings(config_file).retention_hours == 0


def test_parse_logging_settings_later_lines_win_and_error_level(tmp_path: Path) -> None:
    config_file = tmp_path / "logging_settings.conf"
    config_file.write_text(
        """
Generations = debug
generations = error   # only failed attempts
# retention_hours = 1
retention_hours = 12  # half a day
"""
    )

    settings = parse_logging_settings(config_file)

    assert settings.generations_level == 40  # ERROR
    assert settings.terminal_level == 20
    assert settings.retention_hours == 12
