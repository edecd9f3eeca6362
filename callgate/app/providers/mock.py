"""Mock provider for local development.

Accepts every call without contacting a voice provider, so the frontend can
be exercised without spending provider credit.

Enable by setting environment variable:
    CALLGATE_MOCK_PROVIDER=true
"""

import asyncio
import uuid
from typing import Optional

from callgate.app.core.logging import get_log_context, get_logger
from callgate.app.exceptions import UpstreamError
from callgate.app.providers.base import CallProvider, CallRequest, UpstreamCallResult

logger = get_logger(__name__)


class MockCallProvider(CallProvider):
    """Mock voice provider that returns a generated conversation id.

    Args:
        delay: Simulated provider latency in seconds
        fail_with: Error to raise from every call, for exercising error paths
    """

    name = "mock"

    def __init__(self, delay: float = 0.0, fail_with: Optional[UpstreamError] = None):
        super().__init__(base_url="http://mock.provider", api_key="mock-key")
        self.delay = delay
        self.fail_with = fail_with
        self.calls: list[CallRequest] = []

    async def place_call(self, call: CallRequest) -> UpstreamCallResult:
        self.calls.append(call)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with

        conversation_id = f"mock_{uuid.uuid4().hex[:16]}"
        logger.info(
            f"Mock call to {call.business_name}: {conversation_id}",
            extra=get_log_context(request_id=call.request_id, provider=self.name),
        )
        return UpstreamCallResult(
            conversation_id=conversation_id,
            raw={"conversation_id": conversation_id, "mock": True},
        )
