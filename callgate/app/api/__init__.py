"""API endpoints package for the call gateway."""

from callgate.app.api.trigger_call import router as trigger_call_router

__all__ = [
    "trigger_call_router",
]
