"""structlog events rendered as JSON lines through stdlib handlers.

Global events go to the console, ``logs/watch.log`` and ``logs/error.log``;
each trigger additionally gets ``logs/triggers/<trigger>.log``. Files rotate so
a long-running ``serve`` does not grow them without bound.
"""

from __future__ import annotations

import logging
import logging.config
import os
import re
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable

import structlog

LOGGER_NAME = "loki_watch"
LEVEL_ENV = "LOKI_WATCH_LOG_LEVEL"
MAX_BYTES = 5 * 1024 * 1024
BACKUP_COUNT = 3

_JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
_configured: tuple[Path, str] | None = None


def log_dir() -> Path:
    env_root = os.environ.get("LOKI_WATCH_HOME")
    root = Path(env_root).expanduser() if env_root else Path.cwd()
    return root.resolve() / "logs"


def trigger_log_path(trigger_id: str) -> Path:
    slug = re.sub(r"[^0-9A-Za-z_.-]+", "_", trigger_id.strip()) or "trigger"
    return log_dir() / "triggers" / f"{slug}.log"


def _level(verbose: bool) -> str:
    if verbose:
        return "DEBUG"
    return os.environ.get(LEVEL_ENV, "INFO").upper()


def _rotating(path: Path, level: str) -> dict:
    return {
        "class": "logging.handlers.RotatingFileHandler",
        "level": level,
        "filename": str(path),
        "maxBytes": MAX_BYTES,
        "backupCount": BACKUP_COUNT,
        "encoding": "utf-8",
        "formatter": "json",
    }


def configure_logging(verbose: bool = False) -> structlog.BoundLogger:
    """Install handlers once per (log directory, level) and return the app logger."""

    global _configured
    directory = log_dir()
    level = _level(verbose)
    if _configured != (directory, level):
        (directory / "triggers").mkdir(parents=True, exist_ok=True)
        logging.config.dictConfig(
            {
                "version": 1,
                "disable_existing_loggers": False,
                "formatters": {
                    "json": {"()": "pythonjsonlogger.jsonlogger.JsonFormatter", "fmt": _JSON_FORMAT},
                },
                "handlers": {
                    "console": {"class": "logging.StreamHandler", "level": level, "formatter": "json"},
                    "watch_file": _rotating(directory / "watch.log", "INFO"),
                    "error_file": _rotating(directory / "error.log", "ERROR"),
                },
                "loggers": {
                    LOGGER_NAME: {
                        "handlers": ["console", "watch_file", "error_file"],
                        "level": level,
                        "propagate": False,
                    },
                },
            }
        )
        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso", utc=True),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )
        _configured = (directory, level)
    return structlog.get_logger(LOGGER_NAME)


def trigger_logger(trigger_id: str, verbose: bool = False) -> structlog.BoundLogger:
    """Logger bound to ``trigger_id`` that also writes the trigger's own file.

    Its events propagate to the global handlers as well.
    """

    configure_logging(verbose)
    path = trigger_log_path(trigger_id)
    py_logger = logging.getLogger(f"{LOGGER_NAME}.trigger.{trigger_id}")
    current = [h for h in py_logger.handlers if isinstance(h, RotatingFileHandler)]
    if not any(h.baseFilename == str(path) for h in current):
        # Home directory moved since the handler was attached.
        for stale in current:
            py_logger.removeHandler(stale)
            stale.close()
        handler = RotatingFileHandler(path, maxBytes=MAX_BYTES, backupCount=BACKUP_COUNT, encoding="utf-8")
        handler.setLevel(logging.INFO)
        root_handlers = logging.getLogger(LOGGER_NAME).handlers
        if root_handlers:
            handler.setFormatter(root_handlers[0].formatter)
        py_logger.addHandler(handler)
    return structlog.get_logger(py_logger.name).bind(trigger=trigger_id)


def tail_log(path: Path, line_count: int = 100) -> list[str]:
    if not path.exists():
        return []
    with path.open("r", encoding="utf-8", errors="ignore") as stream:
        lines = stream.readlines()
    return lines[-line_count:]


def available_trigger_logs() -> Iterable[Path]:
    triggers_dir = log_dir() / "triggers"
    if not triggers_dir.exists():
        return []
    return sorted(triggers_dir.glob("*.log"))


__all__ = [
    "available_trigger_logs",
    "configure_logging",
    "log_dir",
    "tail_log",
    "trigger_log_path",
    "trigger_logger",
]
