"""
Unit tests for logging setup.
"""

import json
import logging

import pytest
import structlog

from vibe_checkpoint.utils.config import LoggingConfig
from vibe_checkpoint.utils.logging import (
    JSONFormatter,
    get_logger,
    setup_logging,
    setup_logging_from_config,
)


@pytest.fixture
def restore_logging():
    """Undo setup_logging's changes to the root logger and structlog."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
    structlog.reset_defaults()


def test_setup_logging_creates_log_files(tmp_path, restore_logging):
    result = setup_logging(
        app_name="vibe-test",
        log_level="DEBUG",
        log_dir=tmp_path / "logs",
        enable_console=False
    )

    assert result["log_dir"] == tmp_path / "logs"
    assert result["config"]["log_level"] == "DEBUG"
    assert set(result["loggers"]) == {"main", "checkpoint", "serializer", "config"}

    get_logger("vibe_checkpoint.test").info("checkpoint_created", checkpoint_id="chk-1-abcdef01")
    for handler in logging.getLogger().handlers:
        handler.flush()

    log_text = (tmp_path / "logs" / "vibe-test.log").read_text()
    assert "checkpoint_created" in log_text
    assert "chk-1-abcdef01" in log_text
    assert (tmp_path / "logs" / "vibe-test-errors.log").exists()


def test_setup_logging_with_console(tmp_path, restore_logging):
    setup_logging(app_name="vibe-test", log_dir=tmp_path, enable_json=False)

    handler_types = {type(h).__name__ for h in logging.getLogger().handlers}

    assert "RichHandler" in handler_types
    assert "RotatingFileHandler" in handler_types


def test_json_formatter_includes_extra_fields():
    record = logging.LogRecord(
        name="vibe", level=logging.INFO, pathname=__file__, lineno=1,
        msg="checkpoint_restored", args=(), exc_info=None
    )
    record.checkpoint_id = "chk-1-abcdef01"
    record.unserializable = object()

    data = json.loads(JSONFormatter().format(record))

    assert data["message"] == "checkpoint_restored"
    assert data["level"] == "INFO"
    assert data["checkpoint_id"] == "chk-1-abcdef01"
    assert isinstance(data["unserializable"], str)


def test_setup_logging_from_config(tmp_path, restore_logging):
    config = LoggingConfig(level="warning", format="text", directory=tmp_path / "cfg-logs", backup_count=2)

    result = setup_logging_from_config(config, app_name="vibe-test", enable_console=False)

    assert result["log_dir"] == tmp_path / "cfg-logs"
    assert result["config"]["log_level"] == "WARNING"
    assert result["config"]["enable_json"] is False
    root = logging.getLogger()
    assert root.level == logging.WARNING
    file_handler = next(h for h in root.handlers if h.baseFilename.endswith("vibe-test.log"))
    assert file_handler.backupCount == 2
