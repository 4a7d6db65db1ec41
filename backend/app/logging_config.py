"""Structured JSON logging for the prompt packager service.

Call ``configure_logging()`` once at startup. Afterwards every
``logging.getLogger(__name__)`` record is written to stdout as one JSON line.

Two context variables are stamped onto every record emitted inside their
scope:

* ``request_id`` — bound by ``RequestIdMiddleware`` per HTTP request
  (taken from an incoming ``X-Request-ID`` header or generated).
* ``job_id`` — bound by ``job_context()`` while a job is being processed,
  so pipeline logs from the engine package are attributable to a job.
"""

import json
import logging
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Callable, Iterator

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

_request_id_var: ContextVar[str] = ContextVar("request_id", default="")
_job_id_var: ContextVar[str] = ContextVar("job_id", default="")


def get_request_id() -> str:
    """Request ID for the current async context (empty string if none)."""
    return _request_id_var.get()


@contextmanager
def job_context(job_id: str) -> Iterator[None]:
    """Bind ``job_id`` to all log records emitted inside the block."""
    token = _job_id_var.set(job_id)
    try:
        yield
    finally:
        _job_id_var.reset(token)


class _JsonFormatter(logging.Formatter):
    """Single-line JSON: standard fields, bound context, and ``extra=`` pairs."""

    # LogRecord internals that are either redundant or noise in the output
    _SKIP_ATTRS = frozenset(
        {
            "args",
            "created",
            "exc_info",
            "exc_text",
            "filename",
            "funcName",
            "levelname",
            "levelno",
            "lineno",
            "message",
            "module",
            "msecs",
            "msg",
            "name",
            "pathname",
            "process",
            "processName",
            "relativeCreated",
            "stack_info",
            "taskName",
            "thread",
            "threadName",
        }
    )

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()

        payload: dict = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
        }

        rid = _request_id_var.get()
        if rid:
            payload["request_id"] = rid
        jid = _job_id_var.get()
        if jid:
            payload["job_id"] = jid

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        # extra={} wins over bound context (e.g. an explicit job_id)
        for key, value in record.__dict__.items():
            if key not in self._SKIP_ATTRS and not key.startswith("_"):
                payload[key] = value

        return json.dumps(payload, default=str)


def configure_logging(level: str = "INFO") -> None:
    """Replace the root logger's handlers with one JSON-to-stdout handler."""
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(_JsonFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric_level)

    # The openai SDK logs every request through httpx
    for noisy in ("httpx", "httpcore", "openai", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "Structured JSON logging initialised",
        extra={"log_level": level.upper()},
    )


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind an ``X-Request-ID`` to each request and echo it on the response.

    Also emits one structured access-log line per request.
    """

    def __init__(self, app: ASGIApp, header_name: str = "X-Request-ID") -> None:
        super().__init__(app)
        self._header_name = header_name

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(self._header_name) or uuid.uuid4().hex

        token = _request_id_var.set(request_id)
        start = time.monotonic()
        try:
            response = await call_next(request)
        finally:
            duration_ms = round((time.monotonic() - start) * 1000, 1)
            _request_id_var.reset(token)

        response.headers[self._header_name] = request_id

        logging.getLogger("app.access").info(
            "%s %s %s",
            request.method,
            request.url.path,
            response.status_code,
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )
        return response
