"""Structlog logging setup and per-request correlation middleware."""

from __future__ import annotations

import logging
import sys
import time
from typing import Any, Optional
from uuid import uuid4

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars

_CONFIGURED = False
_DEPLOYED_ENVS = ("qa", "staging", "prod", "production")


def configure_logging(app_env: str = "local", log_format: str = "") -> None:
    """Configure structlog and route stdlib logging through it.

    Only the first call has an effect.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return
    _CONFIGURED = True

    renderer = _select_renderer(app_env, log_format)
    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *shared_processors,
            renderer,
        ],
    )
    root = logging.getLogger()
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root.addHandler(handler)
    root.setLevel(logging.INFO)


def get_logger(component: str) -> Any:
    return structlog.get_logger(component=component)


def _select_renderer(app_env: str, log_format: str) -> Any:
    log_format = (log_format or "").lower()
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    if log_format == "console":
        return structlog.dev.ConsoleRenderer(colors=True)
    if (app_env or "").lower() in _DEPLOYED_ENVS:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=False)


logger = get_logger(__name__)


class CorrelationMiddleware:
    """ASGI middleware binding a correlation id to every request's log lines."""

    header_name = b"x-correlation-id"

    def __init__(self, app: Any) -> None:
        self.app = app

    async def __call__(self, scope: dict[str, Any], receive: Any, send: Any) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        clear_contextvars()
        correlation_id = _extract_header(scope, self.header_name) or str(uuid4())
        bind_contextvars(
            correlation_id=correlation_id,
            endpoint=str(scope.get("path", "/")),
            method=str(scope.get("method", "UNKNOWN")),
        )

        http_status = 500
        start = time.perf_counter()

        async def _send(message: dict[str, Any]) -> None:
            nonlocal http_status
            if message.get("type") == "http.response.start":
                http_status = message.get("status", 500)
                headers = list(message.get("headers", []))
                headers.append((self.header_name, correlation_id.encode("latin-1")))
                message["headers"] = headers
            await send(message)

        try:
            await self.app(scope, receive, _send)
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            logger.info(
                "Request processed",
                status=http_status,
                outcome="SUCCESS" if http_status < 400 else "ERROR",
                duration_ms=duration_ms,
            )


def _extract_header(scope: dict[str, Any], name: bytes) -> Optional[str]:
    for key, value in scope.get("headers", []):
        if key.lower() == name:
            return value.decode("latin-1")
    return None
