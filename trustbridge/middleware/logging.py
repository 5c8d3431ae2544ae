"""Logging middleware and configuration."""

import logging
import sys
import time
import uuid
from collections.abc import Callable
from typing import Any

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from trustbridge.config import settings
from trustbridge.dependencies import get_client_info

REQUEST_ID_HEADER = "X-Request-ID"

# Event keys whose values must never reach a log sink
SENSITIVE_KEYS = frozenset(
    {
        "password",
        "password_hash",
        "token",
        "totp_code",
        "totp_secret",
        "backup_code",
        "backup_codes",
        "authorization",
        "cookie",
    }
)

# Auth and access outcomes logged at warning level
DENIED_STATUS_CODES = frozenset({401, 403, 423, 429})

REDACTED = "[REDACTED]"


def redact_secrets(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Structlog processor masking credentials, tokens and 2FA material."""
    for key in event_dict.keys() & SENSITIVE_KEYS:
        event_dict[key] = REDACTED
    return event_dict


def configure_logging() -> None:
    """Configure structured logging."""
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        redact_secrets,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
    ]

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.log_format == "json"
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper()),
    )


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Log each request with a request id, client address and outcome.

    The request id is taken from ``X-Request-ID`` when the caller sends one
    and echoed back, so a client report can be matched to the audit trail.
    Denied requests (401, 403, 423, 429) are logged at warning level.
    Headers and bodies are never logged.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: Callable,
    ) -> Response:
        logger = structlog.get_logger()

        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        client = get_client_info(request)
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            ip=client.ip,
        )

        start_time = time.perf_counter()
        logger.debug("request_started", user_agent=client.user_agent)

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "request_failed",
                error_type=type(e).__name__,
                duration=time.perf_counter() - start_time,
            )
            raise

        duration = time.perf_counter() - start_time

        if response.status_code in DENIED_STATUS_CODES:
            logger.warning("request_denied", status_code=response.status_code, duration=duration)
        else:
            logger.info("request_completed", status_code=response.status_code, duration=duration)

        response.headers["X-Process-Time"] = f"{duration:.6f}"
        response.headers[REQUEST_ID_HEADER] = request_id

        return response
