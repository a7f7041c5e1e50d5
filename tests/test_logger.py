import logging
from pathlib import Path

import pytest

from gasto_categorizer.logger import LOG_FILE_NAME, ColourizedFormatter, get_logging_config


def _record(msg: str, *args: object) -> logging.LogRecord:
    return logging.LogRecord("gasto", logging.WARNING, __file__, 1, msg, args, None)


def test_formatter_colours_level_and_tag_then_restores_record() -> None:
    formatter = ColourizedFormatter("%(levelname)s %(message)s")
    record = _record("[DELIVERY] Attempt failed for %s", "x")

    line = formatter.format(record)

    assert line.startswith(f"{ColourizedFormatter.YELLOW}WARNING{ColourizedFormatter.RESET} ")
    assert f"{ColourizedFormatter.CYAN}[DELIVERY]{ColourizedFormatter.RESET} Attempt failed for x" in line
    assert record.levelname == "WARNING"
    assert record.msg == "[DELIVERY] Attempt failed for %s"
    assert logging.Formatter("%(message)s").format(record) == "[DELIVERY] Attempt failed for x"


def test_formatter_leaves_untagged_messages_alone() -> None:
    formatter = ColourizedFormatter("%(message)s")

    assert formatter.format(_record("Conversa [ABC] aberta")) == "Conversa [ABC] aberta"


def test_config_console_only_by_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("LOG_DIR", raising=False)
    monkeypatch.delenv("NO_COLOR", raising=False)
    monkeypatch.setenv("LOG_LEVEL", "info")

    config = get_logging_config()

    assert list(config["handlers"]) == ["console"]
    assert config["handlers"]["console"]["formatter"] == "colour"
    assert config["loggers"][""]["level"] == "INFO"
    assert config["loggers"]["uvicorn.access"]["level"] == "WARNING"
    assert config["loggers"]["httpx"]["level"] == "WARNING"


def test_config_with_log_dir_and_no_color(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    log_dir = tmp_path / "logs"
    monkeypatch.setenv("LOG_DIR", str(log_dir))
    monkeypatch.setenv("NO_COLOR", "1")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")

    config = get_logging_config()

    assert log_dir.is_dir()
    assert config["handlers"]["console"]["formatter"] == "plain"
    assert config["handlers"]["file"]["filename"] == str(log_dir / LOG_FILE_NAME)
    assert config["handlers"]["file"]["formatter"] == "plain"
    assert config["loggers"][""]["handlers"] == ["console", "file"]
    assert config["loggers"]["uvicorn.access"]["level"] == "INFO"
