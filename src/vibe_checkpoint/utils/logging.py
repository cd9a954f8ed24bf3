"""
Logging configuration for vibe-checkpoint.

This module provides centralized logging setup with:
- Structured logging via structlog
- Rich console output
- Log rotation for file output
"""

import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Dict, Any
import json
from datetime import datetime, timezone
import structlog
from rich.logging import RichHandler
from rich.console import Console

if TYPE_CHECKING:
    from .config import LoggingConfig


# Attributes present on every LogRecord; anything else came in via ``extra``
_RESERVED_RECORD_ATTRS = frozenset((
    'name', 'msg', 'args', 'created', 'filename', 'funcName', 'levelname',
    'levelno', 'lineno', 'module', 'msecs', 'message', 'pathname', 'process',
    'processName', 'relativeCreated', 'thread', 'threadName', 'exc_info',
    'exc_text', 'stack_info', 'taskName',
))


class JSONFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_obj = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
            'process': record.process,
        }

        # Add extra fields
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_ATTRS:
                try:
                    json.dumps(value)
                    log_obj[key] = value
                except (TypeError, ValueError):
                    log_obj[key] = str(value)

        if record.exc_info:
            log_obj['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_obj)


def setup_logging(
    app_name: str = "vibe-checkpoint",
    log_level: str = "INFO",
    log_dir: Optional[Path] = None,
    enable_json: bool = True,
    enable_console: bool = True,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 10,
) -> Dict[str, Any]:
    """
    Set up logging for an application embedding the checkpoint subsystem.

    The library itself never calls this; hosts (CLI, orchestration layer)
    decide where logs go.

    Args:
        app_name: Application name for log identification
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for log files (defaults to ~/.vibe/logs)
        enable_json: Write JSON lines to the log files
        enable_console: Attach a rich console handler on stderr
        max_bytes: Rotation threshold per log file
        backup_count: Rotated files to keep

    Returns:
        Dictionary with logger instances and configuration
    """
    if log_dir is None:
        log_dir = Path.home() / ".vibe" / "logs"
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    renderer = structlog.processors.JSONRenderer() if enable_json else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper()))

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    console = Console(file=sys.stderr)
    if enable_console:
        console_handler = RichHandler(
            console=console,
            show_time=True,
            show_path=False,
            rich_tracebacks=True,
            tracebacks_suppress=["asyncio"],
        )
        console_handler.setLevel(getattr(logging, log_level.upper()))
        console_handler.setFormatter(logging.Formatter('%(message)s'))
        root_logger.addHandler(console_handler)

    file_formatter: logging.Formatter
    if enable_json:
        file_formatter = JSONFormatter()
    else:
        file_formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
        )

    file_handler = logging.handlers.RotatingFileHandler(
        log_dir / f"{app_name}.log",
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding='utf-8'
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(file_formatter)
    root_logger.addHandler(file_handler)

    error_handler = logging.handlers.RotatingFileHandler(
        log_dir / f"{app_name}-errors.log",
        maxBytes=max_bytes,
        backupCount=5,
        encoding='utf-8'
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(file_formatter)
    root_logger.addHandler(error_handler)

    loggers = {
        'main': structlog.get_logger(app_name),
        'checkpoint': structlog.get_logger(f"{app_name}.checkpoint"),
        'serializer': structlog.get_logger(f"{app_name}.serializer"),
        'config': structlog.get_logger(f"{app_name}.config"),
    }

    loggers['main'].info(
        "logging_initialized",
        app_name=app_name,
        log_level=log_level,
        log_dir=str(log_dir),
        enable_json=enable_json,
        pid=os.getpid(),
    )

    return {
        'loggers': loggers,
        'log_dir': log_dir,
        'console': console,
        'config': {
            'app_name': app_name,
            'log_level': log_level,
            'enable_json': enable_json,
        }
    }


def setup_logging_from_config(
    config: "LoggingConfig",
    app_name: str = "vibe-checkpoint",
    enable_console: bool = True,
) -> Dict[str, Any]:
    """Set up logging from the ``logging`` section of a loaded configuration."""
    return setup_logging(
        app_name=app_name,
        log_level=config.level,
        log_dir=config.directory,
        enable_json=config.format == "json",
        enable_console=enable_console,
        max_bytes=config.max_size,
        backup_count=config.backup_count,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a logger instance by name."""
    return structlog.get_logger(name)


__all__ = [
    'setup_logging',
    'setup_logging_from_config',
    'get_logger',
    'JSONFormatter',
]
