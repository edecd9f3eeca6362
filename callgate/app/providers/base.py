from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, Dict, Optional

import httpx


@dataclass(frozen=True)
class CallRequest:
    """A validated request to place one demo call."""
    phone_number: str
    business_name: str
    owner_name: str = ""
    # Correlates provider log lines with the inbound request; never sent upstream
    request_id: Optional[str] = None


@dataclass
class UpstreamCallResult:
    """What the provider told us about the call it started.

    ``raw`` is the provider's response body, kept for logging only.
    """
    conversation_id: Optional[str]
    status: str = "initiated"
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)


class CallProvider(ABC):
    """Base class for voice-call providers.

    Subclasses can accept an external httpx.AsyncClient for connection pooling,
    or create their own per call if not provided.

    The contract to the rest of the gateway is place_call(): given a
    validated CallRequest it returns an UpstreamCallResult or raises an
    UpstreamError subclass. Endpoint paths and payload shapes stay inside
    the subclass.
    """

    name: str = "base"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0
    ):
        """Initialize the provider.

        Args:
            base_url: The API base URL
            api_key: The API key for authentication
            http_client: Optional shared HTTP client for connection pooling
            timeout: Request timeout in seconds for a per-call client
        """
        self._http_client = http_client
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.timeout = timeout

    @asynccontextmanager
    async def _client_context(self) -> AsyncGenerator[httpx.AsyncClient, None]:
        """Yield the shared client, or a per-call client that is closed afterwards."""
        if self._http_client is not None:
            yield self._http_client
            return

        client = httpx.AsyncClient(timeout=self.timeout)
        try:
            yield client
        finally:
            await client.aclose()

    def _get_endpoint_url(self, endpoint: str) -> str:
        """Build full URL for an API endpoint.

        Args:
            endpoint: API endpoint path (e.g., "/convai/phone-calls")
        """
        if not endpoint.startswith("/"):
            endpoint = f"/{endpoint}"
        return f"{self.base_url}{endpoint}"

    @abstractmethod
    async def place_call(self, call: CallRequest) -> UpstreamCallResult:
        """Ask the provider to dial call.phone_number with the voice agent.

        Raises:
            UpstreamError: A typed failure reason (see callgate.app.exceptions)
        """

    def is_configured(self) -> bool:
        """Whether the provider has the credentials it needs to place a call."""
        return bool(self.api_key)
