import logging
import time
import uuid
from typing import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from media_service.core.logging_config import request_id_ctx_var

logger = logging.getLogger("media_service.request")

REQUEST_ID_HEADER = "X-Request-ID"
_MAX_REQUEST_ID_LENGTH = 128


def _incoming_request_id(request: Request) -> str:
    candidate = (request.headers.get(REQUEST_ID_HEADER) or "").strip()
    if candidate and len(candidate) <= _MAX_REQUEST_ID_LENGTH and candidate.isprintable():
        return candidate
    return str(uuid.uuid4())


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tags every request with an id (echoing a caller-supplied one) and logs one line per request."""

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        request_id = _incoming_request_id(request)
        token = request_id_ctx_var.set(request_id)
        request.state.request_id = request_id
        start = time.perf_counter()
        fields = {"path": request.url.path, "method": request.method}
        try:
            response = await call_next(request)
        except Exception:
            fields["duration_ms"] = int((time.perf_counter() - start) * 1000)
            logger.exception("request_failed", extra=fields)
            raise
        else:
            fields["status_code"] = response.status_code
            fields["duration_ms"] = int((time.perf_counter() - start) * 1000)
            response.headers[REQUEST_ID_HEADER] = request_id
            logger.log(_level_for(response.status_code), "request", extra=fields)
            return response
        finally:
            request_id_ctx_var.reset(token)
