"""Middleware package for the call gateway."""

from callgate.app.middleware.cors import PermissiveCORSMiddleware
from callgate.app.middleware.rate_limit import require_rate_limit
from callgate.app.middleware.request_id import RequestIdMiddleware, get_request_id

__all__ = [
    "PermissiveCORSMiddleware",
    "require_rate_limit",
    "RequestIdMiddleware",
    "get_request_id",
]
