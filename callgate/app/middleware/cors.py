"""Permissive CORS for the trigger-call endpoint.

The endpoint is called from a static page that may be hosted anywhere, and
the shared password is its only protection, so every origin is allowed.
Starlette's CORSMiddleware only decorates requests that carry an Origin
header and answers preflights with a text body; this middleware sets the
headers on every response and answers any OPTIONS request with an empty 200.
"""

from typing import Dict

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

ALLOW_METHODS = "POST, OPTIONS"
ALLOW_HEADERS = "Content-Type"


def cors_headers() -> Dict[str, str]:
    return {
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Allow-Methods": ALLOW_METHODS,
        "Access-Control-Allow-Headers": ALLOW_HEADERS,
    }


class PermissiveCORSMiddleware(BaseHTTPMiddleware):
    """Answer preflights directly and add allow-any-origin headers to responses.

    OPTIONS requests never reach the router, so they bypass rate limiting.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        if request.method == "OPTIONS":
            return Response(status_code=200, headers=cors_headers())

        response = await call_next(request)
        response.headers.update(cors_headers())
        return response
