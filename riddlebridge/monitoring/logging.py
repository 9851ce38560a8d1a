"""
RiddleBridge - Structured Logging

structlog setup shared by the API process and the maintenance sweeps.
Development gets the console renderer; production emits one JSON object
per line. Signing material never reaches a log sink: keys, tokens and
signed transaction blobs are replaced before rendering.
"""

from __future__ import annotations

import logging
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any
from uuid import uuid4

import structlog
from structlog.typing import EventDict, Processor, WrappedLogger

from riddlebridge import __version__

REDACTED = "[REDACTED]"

# Substrings of keys whose values are never logged
SECRET_KEY_PARTS = (
    "password",
    "secret",
    "token",
    "authorization",
    "private_key",
    "seed",
    "mnemonic",
    "signed_blob",
    "tx_blob",
)

# Keys containing "token" that name a bridge token rather than a credential
TOKEN_NAME_KEYS = frozenset({"token", "source_token", "destination_token", "to_token", "from_token"})

NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "neo4j", "web3", "solana")

CORRELATION_HEADER = b"x-correlation-id"


def _is_secret_key(key: Any) -> bool:
    if not isinstance(key, str):
        return False
    lowered = key.lower()
    if lowered in TOKEN_NAME_KEYS:
        return False
    return any(part in lowered for part in SECRET_KEY_PARTS)


def _redact(value: Any, depth: int = 0) -> Any:
    if depth > 8:
        return value
    if isinstance(value, dict):
        return {
            k: REDACTED if _is_secret_key(k) else _redact(v, depth + 1) for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [_redact(item, depth + 1) for item in value]
    return value


def redact_secrets(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Replace credential and signed-payload values anywhere in the event."""
    redacted: EventDict = _redact(event_dict)
    return redacted


def add_service(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service", "riddlebridge")
    event_dict.setdefault("version", __version__)
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
    sanitize_logs: bool = True,
) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        level: Root log level name
        json_output: Render JSON lines instead of the console format
        sanitize_logs: Apply ``redact_secrets`` before rendering
    """
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_service,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if sanitize_logs:
        processors.append(redact_secrets)
    processors.append(
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level.upper())
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    bound: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return bound


class LoggingContextMiddleware:
    """
    ASGI middleware that binds a correlation id, method and path to every
    log line of a request and returns the id in ``X-Correlation-ID``.
    """

    def __init__(self, app: Any) -> None:
        self.app = app

    async def __call__(self, scope: Any, receive: Any, send: Any) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        incoming = dict(scope.get("headers") or []).get(CORRELATION_HEADER, b"")
        correlation_id = incoming.decode("latin-1")[:128] or uuid4().hex

        async def send_with_id(message: Any) -> None:
            if message["type"] == "http.response.start":
                headers = list(message.get("headers", []))
                headers.append((CORRELATION_HEADER, correlation_id.encode("latin-1")))
                message["headers"] = headers
            await send(message)

        with structlog.contextvars.bound_contextvars(
            correlation_id=correlation_id,
            method=scope.get("method", ""),
            path=scope.get("path", ""),
        ):
            await self.app(scope, receive, send_with_id)


@contextmanager
def log_duration(
    logger: Any, operation: str, level: str = "info", **context: Any
) -> Iterator[None]:
    """
    Log ``<operation>_completed`` or ``<operation>_failed`` with the
    elapsed milliseconds of the wrapped block.
    """
    started = time.perf_counter()
    try:
        yield
    except BaseException as e:
        logger.warning(
            f"{operation}_failed",
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
            error=str(e) or type(e).__name__,
            **context,
        )
        raise
    getattr(logger, level)(
        f"{operation}_completed",
        duration_ms=round((time.perf_counter() - started) * 1000, 2),
        **context,
    )
