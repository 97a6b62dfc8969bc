"""
verifier_backend/observability.py

JSON-lines logging and per-request access logs.

Call sites log a short event name as the message and put details in
extra={...}; only the fields listed in JsonLogFormatter are emitted.
"""

import json
import logging
from datetime import datetime, timezone
from time import perf_counter
from typing import Any, Dict

from fastapi import Request, Response
from starlette.middleware.base import RequestResponseEndpoint

_LOGGING_CONFIGURED = False

http_log = logging.getLogger("verifier_backend.http")


class JsonLogFormatter(logging.Formatter):
    _extra_fields = (
        "event_name",
        "session_id",
        "qr_id",
        "chain_id",
        "circuit_id",
        "status",
        "reason",
        "mode",
        "path",
        "method",
        "latency_ms",
        "configured_level",
    )

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.now(tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for name in self._extra_fields:
            value = getattr(record, name, None)
            if value is not None:
                payload[name] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=str)


def configure_logging(level_name: str = "INFO") -> None:
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    root_logger = logging.getLogger()
    level = getattr(logging, level_name.upper(), None)
    if not isinstance(level, int):
        logging.getLogger("verifier_backend.logging").warning(
            "invalid_log_level_fallback",
            extra={"event_name": "invalid_log_level_fallback", "configured_level": level_name},
        )
        level = logging.INFO

    root_logger.setLevel(level)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter())
    root_logger.handlers = [handler]

    _LOGGING_CONFIGURED = True


async def request_logging_middleware(request: Request, call_next: RequestResponseEndpoint) -> Response:
    start = perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        http_log.info(
            "http_request",
            extra={
                "event_name": "http_request",
                "method": request.method,
                "path": request.url.path,
                "status": 500,
                "latency_ms": round((perf_counter() - start) * 1000, 2),
            },
            exc_info=True,
        )
        raise

    # session state changes between polls; never let a proxy cache it
    response.headers["Cache-Control"] = "no-cache, no-store, must-revalidate"
    http_log.info(
        "http_request",
        extra={
            "event_name": "http_request",
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "latency_ms": round((perf_counter() - start) * 1000, 2),
        },
    )
    return response
