"""
Logging Configuration Module.

``setup_logging`` installs one console handler on the root logger and, when
``ENABLE_FILE_LOGGING`` is set, a size-rotated file under ``LOG_FILE_DIR``.

Formats:
- ``simple``: level, logger and message
- ``detailed``: adds time and source location (default)
- ``json``: one object per record, carrying the agent and request context
  passed through ``extra=`` (thread, checkpoint, subagent, HTTP request)
"""

import json
import logging
import os
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

LOG_FILE_NAME = "lakitu_ai.log"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
SIMPLE_FORMAT = "%(levelname)s - %(name)s - %(message)s"
DETAILED_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"

# ``extra=`` keys copied into json records when present.
CONTEXT_FIELDS = (
    "thread_id",
    "checkpoint_id",
    "subagent_id",
    "method",
    "path",
    "status_code",
    "duration_ms",
    "error_type",
    "error_id",
)

# Module-specific log levels
MODULE_LOG_LEVELS = {
    "lakitu_ai.agent_core": "DEBUG",
    "lakitu_ai.agent_core.runtime": "DEBUG",
    "lakitu_ai.agent_core.gateway": "INFO",
    "lakitu_ai.agent_core.repos": "INFO",
    "lakitu_ai.agent_core.checkpoints": "DEBUG",
    "lakitu_ai.agent_core.subagents": "DEBUG",
    "lakitu_ai.server": "INFO",
    "lakitu_ai.server.api": "DEBUG",
    "lakitu_ai.server.services": "DEBUG",
    # Third-party libraries (reduce noise)
    "sqlalchemy": "WARNING",
    "sqlalchemy.engine": "WARNING",
    "httpx": "WARNING",
    "httpcore": "WARNING",
    "asyncio": "WARNING",
    "langgraph": "WARNING",
    "uvicorn": "INFO",
    "uvicorn.access": "INFO",
}


@dataclass(frozen=True)
class LogSettings:
    level: str = "INFO"
    format: str = "detailed"
    file_dir: str = "logs"
    file_enabled: bool = False


def load_log_settings() -> LogSettings:
    """Read the logging keys from the server settings.

    The settings import is deferred to avoid circular imports; when the
    settings cannot be built the raw environment is used instead.
    """
    try:
        from lakitu_ai.server.core.config import settings
    except Exception:
        return LogSettings(
            level=os.getenv("LAKITU_AI_LOG_LEVEL", "INFO").upper(),
            format=os.getenv("LOG_FORMAT", "detailed"),
            file_dir=os.getenv("LOG_FILE_DIR", "logs"),
            file_enabled=os.getenv("ENABLE_FILE_LOGGING", "false").lower() in ("true", "1", "yes"),
        )
    return LogSettings(
        level=settings.log_level.upper(),
        format=settings.log_format,
        file_dir=settings.log_file_dir,
        file_enabled=settings.enable_file_logging,
    )


class JsonFormatter(logging.Formatter):
    """Render each record as a single JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": self.formatTime(record, DATE_FORMAT),
            "level": record.levelname,
            "logger": record.name,
            "module": record.filename,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
        }
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def build_formatter(log_format: str) -> logging.Formatter:
    if log_format == "json":
        return JsonFormatter()
    if log_format == "simple":
        return logging.Formatter(SIMPLE_FORMAT)
    return logging.Formatter(DETAILED_FORMAT, datefmt=DATE_FORMAT)


def setup_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    enable_file: bool = True,
    config: Optional[LogSettings] = None,
) -> None:
    """
    Configure logging for the application.

    Args:
        log_level: Override the configured console level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Override the configured format (simple, detailed, json)
        enable_file: Allow the file handler; it is only added when file logging is configured
        config: Logging settings; loaded from the server settings when omitted
    """
    cfg = config or load_log_settings()
    level = (log_level or cfg.level).upper()
    fmt = log_format or cfg.format
    formatter = build_formatter(fmt)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Capture all levels, filter at handler level

    # Remove existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    file_logging = enable_file and cfg.file_enabled
    if file_logging:
        log_dir = Path(cfg.file_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_dir / LOG_FILE_NAME,
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_FILE_BACKUPS,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    for module_name, module_level in MODULE_LOG_LEVELS.items():
        logging.getLogger(module_name).setLevel(module_level)

    root_logger.debug(f"Logging configured: level={level}, format={fmt}, file_logging={file_logging}")


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Args:
        name: The module name (typically __name__)

    Returns:
        A configured logger instance
    """
    return logging.getLogger(name)
