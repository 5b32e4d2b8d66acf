"""Structured logging configuration for the About Town API.

Admission decisions (blocks, honeypot hits, cache fallbacks) are logged with
request context attached through ``extra=``. Three output formats are
available through ``LOG_FORMAT``:

- ``text``: one human readable line per record
- ``structured``: the text line followed by the admission context
- ``json``: one JSON object per line for log aggregation
"""

import json
import logging
import logging.config
import sys
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from abouttown.app.core.config import Settings, get_settings

# Attributes every LogRecord carries; anything else came in through ``extra=``.
_RECORD_ATTRIBUTES = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "asctime"}

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
STRUCTURED_FORMAT = (
    TEXT_FORMAT
    + " - request_id=%(request_id)s client_ip=%(client_ip)s"
    " path=%(path)s reason=%(reason)s"
)


class JSONFormatter(logging.Formatter):
    """Render a log record as a single JSON object.

    Request context fields land at the top level; any other ``extra=`` keys
    are grouped under ``"extra"``.
    """

    CONTEXT_FIELDS = (
        "request_id",
        "client_ip",
        "path",
        "method",
        "status_code",
        "reason",  # why a request was marked, refused or degraded
        "duration_ms",
    )

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "source": {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            },
        }

        extra: Dict[str, Any] = {}
        for key, value in vars(record).items():
            if key in self.CONTEXT_FIELDS:
                if value is not None:
                    payload[key] = value
            elif key not in _RECORD_ATTRIBUTES:
                extra[key] = value
        if extra:
            payload["extra"] = extra

        if record.exc_info and record.exc_info[0] is not None:
            payload["exception"] = traceback.format_exception(*record.exc_info)

        return json.dumps(payload, default=str, ensure_ascii=False)


class ContextFilter(logging.Filter):
    """Fill in missing context fields so format strings can always use them."""

    def filter(self, record: logging.LogRecord) -> bool:
        for field in JSONFormatter.CONTEXT_FIELDS:
            if not hasattr(record, field):
                setattr(record, field, None)
        return True


def _formatter_name(log_format: str) -> str:
    log_format = log_format.lower()
    if log_format in ("json", "structured"):
        return log_format
    return "standard"


def get_logging_config(settings: Optional[Settings] = None) -> Dict[str, Any]:
    """Build a ``logging.config.dictConfig`` dictionary from settings.

    Args:
        settings: Settings to read ``log_level`` and ``log_format`` from.
            Defaults to the process settings.
    """
    settings = settings or get_settings()
    level = settings.log_level.upper()
    formatter = _formatter_name(settings.log_format)

    formatters: Dict[str, Any] = {
        "standard": {"format": TEXT_FORMAT},
        "structured": {"format": STRUCTURED_FORMAT},
    }
    if formatter == "json":
        formatters["json"] = {"()": "abouttown.app.core.logging.JSONFormatter"}

    def stream_handler(stream: Any, handler_level: str) -> Dict[str, Any]:
        return {
            "class": "logging.StreamHandler",
            "level": handler_level,
            "formatter": formatter,
            "stream": stream,
            "filters": ["context"],
        }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "filters": {"context": {"()": "abouttown.app.core.logging.ContextFilter"}},
        "handlers": {
            "console": stream_handler(sys.stdout, level),
            "error_console": stream_handler(sys.stderr, "ERROR"),
        },
        "loggers": {
            "abouttown": {
                "level": level,
                "handlers": ["console", "error_console"],
                "propagate": False,
            },
            "uvicorn": {"level": level, "handlers": ["console"], "propagate": False},
        },
        "root": {"level": level, "handlers": ["console"]},
    }


def setup_logging(settings: Optional[Settings] = None) -> None:
    """Configure logging for the application."""
    logging.config.dictConfig(get_logging_config(settings))

    # Per-request access lines and client calls are noise next to admission logs
    for noisy in ("uvicorn.access", "httpx"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str = "abouttown") -> logging.Logger:
    return logging.getLogger(name)


def get_log_context(
    request_id: Optional[str] = None,
    client_ip: Optional[str] = None,
    path: Optional[str] = None,
    reason: Optional[str] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """Build an ``extra=`` mapping, leaving out fields that are ``None``.

    Example:
        >>> logger.warning(
        ...     "Blocked scraper User-Agent",
        ...     extra=get_log_context(client_ip="203.0.113.7", reason="curl"),
        ... )
    """
    context = dict(request_id=request_id, client_ip=client_ip, path=path, reason=reason, **extra)
    return {key: value for key, value in context.items() if value is not None}
