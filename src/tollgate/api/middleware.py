"""Request correlation IDs and access logging."""

import logging
import time
import uuid
from collections.abc import Callable
from contextvars import ContextVar

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)


def get_request_id() -> str | None:
    return request_id_var.get()


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind a request ID for the duration of the request and log the outcome.

    An incoming X-Request-ID is honored so IDs carry across services. Only the
    path is logged because query strings can hold callback tokens.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        reset_token = request_id_var.set(request_id)
        started = time.perf_counter()
        line = f"{request.method} {request.url.path}"

        try:
            response = await call_next(request)
        except Exception:
            logger.exception(f"{line} raised after {_elapsed_ms(started):.1f}ms")
            raise
        else:
            elapsed = _elapsed_ms(started)
            level = logging.WARNING if response.status_code >= 500 else logging.INFO
            logger.log(
                level,
                f"{line} -> {response.status_code} ({elapsed:.1f}ms)",
                extra={"status_code": response.status_code, "duration_ms": elapsed},
            )
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            request_id_var.reset(reset_token)


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


class RequestContextFilter(logging.Filter):
    """Stamp log records with the active request ID ("-" outside a request)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id() or "-"
        return True
