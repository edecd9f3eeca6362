"""Provider selection.

Builds the configured CallProvider, reusing the shared HTTP client when the
application lifespan has opened one.
"""

from typing import Optional

import httpx

from callgate.app.core.config import settings
from callgate.app.core.http_client import get_http_client
from callgate.app.core.logging import get_logger
from callgate.app.providers.base import CallProvider
from callgate.app.providers.elevenlabs import ElevenLabsProvider
from callgate.app.providers.mock import MockCallProvider

logger = get_logger(__name__)


def create_provider(http_client: Optional[httpx.AsyncClient] = None) -> CallProvider:
    """Create the provider named by settings.

    Args:
        http_client: Shared client; a per-call client is used when None
    """
    if settings.mock_provider:
        return MockCallProvider()

    return ElevenLabsProvider(
        api_key=settings.elevenlabs_api_key,
        agent_id=settings.elevenlabs_agent_id,
        base_url=settings.elevenlabs_base_url,
        call_path=settings.elevenlabs_call_path,
        phone_number_id=settings.elevenlabs_phone_number_id,
        http_client=http_client,
        timeout=settings.httpx_read_timeout,
    )


def get_call_provider() -> CallProvider:
    """FastAPI dependency returning the provider for this request."""
    try:
        http_client = get_http_client()
    except RuntimeError:
        # Lifespan not running (e.g. TestClient used without a with-block)
        http_client = None
    return create_provider(http_client)
