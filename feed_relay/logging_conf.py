"""Logging configuration built around structlog JSON logging."""

from __future__ import annotations

import logging
import logging.config
import os
from pathlib import Path

import structlog

_LOGGING_INITIALISED = False
LOGGER_NAME = "feed_relay"


def default_log_dir() -> Path:
    env_root = os.environ.get("FEED_RELAY_HOME")
    if env_root:
        return Path(env_root).expanduser().resolve() / "logs"
    return Path(__file__).resolve().parents[1] / "logs"


def configure_logging(verbose: bool = False) -> structlog.BoundLogger:
    """Configure structlog + stdlib handlers and return the application logger."""

    global _LOGGING_INITIALISED
    if not _LOGGING_INITIALISED:
        log_dir = default_log_dir()
        log_dir.mkdir(parents=True, exist_ok=True)
        relay_log = log_dir / "feed_relay.log"
        error_log = log_dir / "error.log"
        level = "DEBUG" if verbose else "INFO"
        logging.config.dictConfig(
            {
                "version": 1,
                "disable_existing_loggers": False,
                "formatters": {
                    "json": {
                        "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
                        "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s",
                    }
                },
                "handlers": {
                    "console": {
                        "class": "logging.StreamHandler",
                        "level": level,
                        "formatter": "json",
                    },
                    "relay_file": {
                        "class": "logging.FileHandler",
                        "level": "INFO",
                        "filename": str(relay_log),
                        "formatter": "json",
                        "encoding": "utf-8",
                    },
                    "error_file": {
                        "class": "logging.FileHandler",
                        "level": "ERROR",
                        "filename": str(error_log),
                        "formatter": "json",
                        "encoding": "utf-8",
                    },
                },
                "loggers": {
                    LOGGER_NAME: {
                        "handlers": ["console", "relay_file", "error_file"],
                        "level": level,
                        "propagate": False,
                    },
                    # APScheduler is chatty at INFO; keep its warnings only
                    "apscheduler": {
                        "handlers": ["console", "error_file"],
                        "level": "WARNING",
                        "propagate": False,
                    },
                },
            }
        )

        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.stdlib.add_log_level,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )
        _LOGGING_INITIALISED = True
    return structlog.get_logger(LOGGER_NAME)


def component_logger(component: str) -> structlog.BoundLogger:
    """Return a logger under the application namespace bound to a component."""

    return structlog.get_logger(f"{LOGGER_NAME}.{component}").bind(component=component)


def tail_log(path: Path, line_count: int = 100) -> list[str]:
    """Return the last N lines from a log file."""

    if not path.exists():
        return []
    with path.open("r", encoding="utf-8", errors="ignore") as stream:
        lines = stream.readlines()
    return lines[-line_count:]


def log_files() -> list[Path]:
    log_dir = default_log_dir()
    if not log_dir.exists():
        return []
    return sorted(p for p in log_dir.glob("*.log"))


__all__ = ["LOGGER_NAME", "component_logger", "configure_logging", "default_log_dir", "log_files", "tail_log"]
