"""Request ID middleware.

Tags every request with an ID so the rate-limit, credential and provider log
lines for one call can be correlated, and writes one completion line per
request.
"""

import re
import time
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from callgate.app.core.logging import get_log_context, get_logger

logger = get_logger(__name__)

# Caller-supplied IDs end up in log lines; anything else is replaced
REQUEST_ID_PATTERN = re.compile(r"[A-Za-z0-9._:-]{1,64}")


def is_valid_request_id(value: str | None) -> bool:
    return bool(value) and REQUEST_ID_PATTERN.fullmatch(value) is not None


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Middleware to add a request ID to all requests.

    The request ID is:
    1. Taken from the X-Request-ID header if it is a safe token
    2. Generated as UUID otherwise
    3. Added to request.state for access in endpoints and dependencies
    4. Returned in X-Request-ID response header

    The completion line also carries request.state.client_key, which the
    rate-limit dependency sets, so a caller's requests can be grouped
    without logging their IP.
    """

    def __init__(self, app, header_name: str = "X-Request-ID"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get(self.header_name)
        if not is_valid_request_id(request_id):
            request_id = str(uuid.uuid4())

        request.state.request_id = request_id
        start = time.perf_counter()

        response = await call_next(request)
        response.headers[self.header_name] = request_id

        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code}",
            extra=get_log_context(
                request_id=request_id,
                client_key=getattr(request.state, "client_key", None),
                status_code=response.status_code,
                duration_ms=round((time.perf_counter() - start) * 1000, 1),
            ),
        )
        return response


def get_request_id(request: Request) -> str:
    """Get request ID from request state."""
    return getattr(request.state, "request_id", "unknown")
