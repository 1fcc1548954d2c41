"""
Logging setup shared by the API process, background upload jobs and the
bootstrap script.

Background uploads run on the server's worker threads, so the line format
carries the thread name to keep interleaved batch progress readable.
"""
import logging
from logging.config import dictConfig
from typing import Any, Dict, Optional

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(threadName)s | %(name)s | %(message)s"

# Per-request and per-statement loggers that drown out batch progress at INFO.
_QUIET_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "uvicorn.access", "httpx", "urllib3")

_configured_level: Optional[str] = None


def build_logging_config(level: str) -> Dict[str, Any]:
    """dictConfig payload: console output, ``cloudsync`` at ``level``, quiet libraries at WARNING."""
    loggers: Dict[str, Dict[str, Any]] = {name: {"level": "WARNING"} for name in _QUIET_LOGGERS}
    loggers["cloudsync"] = {"level": level}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "sync": {"format": LOG_FORMAT, "datefmt": "%Y-%m-%d %H:%M:%S"},
        },
        "handlers": {
            "console": {"class": "logging.StreamHandler", "formatter": "sync"},
        },
        "root": {"handlers": ["console"], "level": level},
        "loggers": loggers,
    }


def configure_logging(level: Optional[str] = None) -> None:
    """
    Apply the logging config once per process.

    A later call with a different level re-applies it, so the bootstrap
    script can raise verbosity after the app module configured INFO.
    """
    global _configured_level

    log_level = (level or "INFO").upper()
    if _configured_level == log_level:
        return

    dictConfig(build_logging_config(log_level))
    _configured_level = log_level
    logging.getLogger(__name__).debug("Logging configured at %s", log_level)
