"""FastAPI middleware components."""
import time
from typing import Awaitable, Callable
from uuid import uuid4

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from docvault.core.logging import clear_log_context, get_logger, log_context

logger = get_logger(__name__)

HEALTH_PATHS = frozenset({"/health", "/ready", "/live"})


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Binds a request id to every log line and reports request timing.

    Clients may pass ``X-Request-ID``; otherwise one is generated and echoed
    back. Health endpoints log at debug so they don't drown out uploads.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid4().hex
        log_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        declared_length = request.headers.get("Content-Length")
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.exception(
                "Request failed",
                error=str(e),
                duration_ms=_elapsed_ms(started),
            )
            raise
        else:
            log = logger.debug if request.url.path in HEALTH_PATHS else logger.info
            log(
                "Request completed",
                status_code=response.status_code,
                content_length=declared_length,
                duration_ms=_elapsed_ms(started),
            )
            response.headers["X-Request-ID"] = request_id
            response.headers["X-Response-Time"] = f"{_elapsed_ms(started):.2f}ms"
            return response
        finally:
            clear_log_context()


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)
