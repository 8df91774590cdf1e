"""Structured logging for PropScout services.

Log calls take keyword fields (``user_id``, ``session_id``, ``action``, ...)
that end up as top-level keys of a JSON line. The request middleware binds a
RequestContext for the lifetime of each request; every log call made while it
is bound carries its ``request_id`` (and ``user_id`` once the caller has been
authenticated) without the call site passing it along.
"""

import json
import logging
import sys
import traceback
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Iterator, Optional

SERVICE_NAME = "propscout-core"

# Attributes every LogRecord has; anything else came in through ``extra``
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime"}

# Chatty third-party loggers and the access log the middleware replaces
_QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


class JsonFormatter(logging.Formatter):
    """Render a record as one JSON object per line."""

    def __init__(self, service_name: str = SERVICE_NAME):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
        }

        if record.levelno >= logging.WARNING:
            entry["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }
        if record.exc_info:
            entry["exception"] = "".join(traceback.format_exception(*record.exc_info))

        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS or key.startswith("_"):
                continue
            entry[key] = value

        return json.dumps(entry, default=str)


@dataclass
class RequestContext:
    """Fields attached to every log line of one request."""

    request_id: str
    method: Optional[str] = None
    path: Optional[str] = None
    user_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in vars(self).items() if v is not None}


_request_context: ContextVar[Optional[RequestContext]] = ContextVar(
    "propscout_request_context", default=None
)


def current_request_context() -> Optional[RequestContext]:
    return _request_context.get()


@contextmanager
def bind_request_context(context: RequestContext) -> Iterator[RequestContext]:
    """Make ``context`` the current request context inside the block."""
    token = _request_context.set(context)
    try:
        yield context
    finally:
        _request_context.reset(token)


def bind_user(user_id: str) -> None:
    """Record the authenticated caller on the current request context, if any."""
    context = _request_context.get()
    if context is not None:
        context.user_id = user_id


class StructuredLogger:
    """Logger taking keyword fields, merged over the current request context."""

    def __init__(self, name: str):
        self.name = name
        self._logger = logging.getLogger(name)

    def _log(self, level: int, msg: str, exc_info: bool = False, **fields: Any) -> None:
        if not self._logger.isEnabledFor(level):
            return
        context = _request_context.get()
        extra = {**context.to_dict(), **fields} if context else fields
        self._logger.log(level, msg, exc_info=exc_info, extra=extra, stacklevel=3)

    def debug(self, msg: str, **fields: Any) -> None:
        self._log(logging.DEBUG, msg, **fields)

    def info(self, msg: str, **fields: Any) -> None:
        self._log(logging.INFO, msg, **fields)

    def warning(self, msg: str, **fields: Any) -> None:
        self._log(logging.WARNING, msg, **fields)

    def error(self, msg: str, exc_info: bool = False, **fields: Any) -> None:
        self._log(logging.ERROR, msg, exc_info=exc_info, **fields)


@lru_cache(maxsize=None)
def get_logger(name: str) -> StructuredLogger:
    """Get the structured logger for a module name."""
    return StructuredLogger(name)


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    service_name: str = SERVICE_NAME,
) -> None:
    """Install a single stdout handler on the root logger.

    Args:
        level: Log level name, case-insensitive.
        json_format: JSON lines when true, plain text otherwise.
        service_name: Value of the ``service`` key in JSON lines.
    """
    numeric_level = logging.getLevelName(level.upper())
    root = logging.getLogger()
    root.setLevel(numeric_level)
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    if json_format:
        handler.setFormatter(JsonFormatter(service_name=service_name))
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
    root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))
