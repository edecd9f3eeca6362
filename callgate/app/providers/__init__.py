"""Voice-call providers for the call gateway.

This package provides:
- Provider interface and value objects (CallProvider, CallRequest, UpstreamCallResult)
- ElevenLabs implementation (ElevenLabsProvider)
- Offline provider for development (MockCallProvider)
- Provider selection (create_provider, get_call_provider)
"""

from callgate.app.providers.base import CallProvider, CallRequest, UpstreamCallResult
from callgate.app.providers.elevenlabs import ElevenLabsProvider, map_error_response
from callgate.app.providers.factory import create_provider, get_call_provider
from callgate.app.providers.mock import MockCallProvider

__all__ = [
    "CallProvider",
    "CallRequest",
    "UpstreamCallResult",
    "ElevenLabsProvider",
    "map_error_response",
    "MockCallProvider",
    "create_provider",
    "get_call_provider",
]
