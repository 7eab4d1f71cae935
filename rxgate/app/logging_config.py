"""
Logging setup for the rxgate service.

Two dedicated streams sit beside the ordinary module loggers:

- rxgate.audit         one JSON line per audit event (INFO)
- rxgate.audit.errors  error-class entries with full context (ERROR)

Each can be sent to its own file via RXGATE_AUDIT_LOG / RXGATE_ERROR_LOG;
without a path they go to stderr. The error stream does not propagate into
the audit stream.
"""

import logging.config
from typing import Any, Dict, Optional

from rxgate.app import config

FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _handler(path: Optional[str], level: str) -> Dict[str, Any]:
    if path:
        return {
            "class": "logging.FileHandler",
            "filename": path,
            "encoding": "utf-8",
            "formatter": "plain",
            "level": level,
        }
    return {
        "class": "logging.StreamHandler",
        "formatter": "plain",
        "level": level,
    }


def build_logging_config(
    audit_path: Optional[str] = None,
    error_path: Optional[str] = None,
    level: Optional[str] = None,
) -> Dict[str, Any]:
    level = (level or config.LOG_LEVEL).upper()
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "plain": {"format": FORMAT, "datefmt": "%Y-%m-%dT%H:%M:%S"},
        },
        "handlers": {
            "console": _handler(None, level),
            "audit": _handler(audit_path, "INFO"),
            "audit_errors": _handler(error_path, "ERROR"),
        },
        "loggers": {
            "rxgate": {"handlers": ["console"], "level": level, "propagate": False},
            "rxgate.audit": {"handlers": ["audit"], "level": "INFO", "propagate": False},
            "rxgate.audit.errors": {
                "handlers": ["audit_errors"],
                "level": "ERROR",
                "propagate": False,
            },
        },
    }


def configure_logging(
    audit_path: Optional[str] = None,
    error_path: Optional[str] = None,
    level: Optional[str] = None,
) -> None:
    logging.config.dictConfig(
        build_logging_config(
            audit_path or config.AUDIT_LOG_PATH,
            error_path or config.ERROR_LOG_PATH,
            level,
        )
    )
