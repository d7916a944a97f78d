"""Plant Maintenance — Structured Logging.

structlog on top of the stdlib logging module: JSON lines outside
development, colored console output locally. Every entry carries the
application name and version, plus the request id while an HTTP
request is being served.

Usage:
    from logger import get_logger, configure_logging

    configure_logging(environment="production")

    logger = get_logger(__name__)
    logger.info("Breakdown reported", machine_id="MC-003", breakdown_id="BD-20240720-0001")
"""

from __future__ import annotations

import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Any

import structlog
from pydantic import SecretStr
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from structlog.types import EventDict, Processor, WrappedLogger

# Set by RequestContextMiddleware, read by the API envelope (meta.request_id)
request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)

REDACTED = "[REDACTED]"

# Substrings of keyword names whose values never reach the log output
_SENSITIVE_KEY_PARTS = ("api_key", "apikey", "secret", "password", "token", "authorization")

_QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "openai")


def _redact(key: str, value: Any) -> Any:
    if isinstance(value, SecretStr):
        return REDACTED
    lowered = key.lower()
    if any(part in lowered for part in _SENSITIVE_KEY_PARTS):
        return REDACTED
    if isinstance(value, dict):
        return {k: _redact(str(k), v) for k, v in value.items()}
    return value


def redact_secrets(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Replace credentials (by key name or SecretStr type) with a marker."""
    return {k: _redact(k, v) for k, v in event_dict.items()}


def _app_context(app: str, version: str) -> Processor:
    def add_app_context(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("app", app)
        event_dict.setdefault("version", version)
        return event_dict

    return add_app_context


def drop_color_message_key(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    # uvicorn adds a pre-colored copy of the message
    event_dict.pop("color_message", None)
    return event_dict


def configure_logging(
    environment: str = "development",
    log_level: str = "INFO",
    json_format: bool | None = None,
    app: str = "plant-maintenance",
    version: str = "1.0.0",
) -> None:
    """Configure structlog and the root stdlib logger.

    Args:
        environment: Deployment environment; decides the renderer when
            json_format is None.
        log_level: Minimum level for the root logger.
        json_format: Force JSON (True) or console (False) output.
        app: Value of the "app" field on every entry.
        version: Value of the "version" field on every entry.
    """
    use_json = json_format if json_format is not None else environment != "development"

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _app_context(app, version),
        redact_secrets,
    ]
    if use_json:
        processors += [
            drop_color_message_key,
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
        force=True,
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.stdlib.get_logger(name)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tag every log entry of a request with its request id.

    The id comes from the X-Request-ID header when present, is echoed
    back on the response and is exposed through request_id_var.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        token = request_id_var.set(request_id)
        structlog.contextvars.bind_contextvars(request_id=request_id)
        log = get_logger("maintenance.http")
        start = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            log.exception(
                "Request failed",
                method=request.method,
                path=request.url.path,
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
            )
            raise
        finally:
            structlog.contextvars.unbind_contextvars("request_id")
            request_id_var.reset(token)

        # /health is polled by liveness probes
        level = logging.DEBUG if request.url.path == "/health" else logging.INFO
        log.log(
            level,
            "Request handled",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
            request_id=request_id,
        )
        response.headers["X-Request-ID"] = request_id
        return response


def log_external_call(
    service: str,
    method: str,
    url: str,
    status_code: int | None = None,
    duration_ms: float | None = None,
    error: str | None = None,
) -> None:
    """Record one outbound call (LLM provider or notification webhook).

    Failures are logged at WARNING: the caller decides whether the
    failure matters. The query string is dropped from the URL.
    """
    log = get_logger("maintenance.external").bind(
        service=service,
        method=method,
        url=url.split("?", 1)[0],
        status_code=status_code,
        duration_ms=duration_ms,
    )
    if error:
        log.warning("External call failed", error=error)
    else:
        log.info("External call completed")
