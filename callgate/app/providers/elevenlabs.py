"""ElevenLabs Conversational AI outbound-call provider.

ElevenLabs has moved the outbound-call endpoint and its payload shape more
than once, so the path is configurable and the status mapping below is the
only thing the rest of the gateway relies on:

    2xx   -> UpstreamCallResult
    400   -> UpstreamClientError (provider detail passed through)
    401   -> UpstreamAuthError (surfaced as 500)
    402   -> UpstreamBalanceError
    429   -> UpstreamRateLimitedError
    other -> UpstreamServerError
    transport failure -> UpstreamUnreachableError
"""

from typing import Any, Dict, Optional

import httpx

from callgate.app.core.logging import get_log_context, get_logger
from callgate.app.exceptions import (
    ConfigMissingError,
    UpstreamAuthError,
    UpstreamBalanceError,
    UpstreamClientError,
    UpstreamError,
    UpstreamRateLimitedError,
    UpstreamServerError,
    UpstreamUnreachableError,
)
from callgate.app.providers.base import CallProvider, CallRequest, UpstreamCallResult

logger = get_logger(__name__)

DEFAULT_BASE_URL = "https://api.elevenlabs.io/v1"
DEFAULT_CALL_PATH = "/convai/phone-calls"

# Keys different API revisions have used for the new call's identifier
_CALL_ID_KEYS = ("conversation_id", "call_id", "callSid")


def extract_detail(body: Any) -> Optional[str]:
    """Pull a short human-readable message out of a provider error body.

    ElevenLabs returns ``{"detail": "..."}``, ``{"detail": {"message": ...}}``
    or a list of validation errors under ``detail``.
    """
    if not isinstance(body, dict):
        return None
    detail = body.get("detail")
    if isinstance(detail, str) and detail.strip():
        return detail.strip()
    if isinstance(detail, dict):
        message = detail.get("message")
        if isinstance(message, str) and message.strip():
            return message.strip()
    if isinstance(detail, list) and detail:
        first = detail[0]
        if isinstance(first, dict) and isinstance(first.get("msg"), str):
            return first["msg"]
    return None


def map_error_response(status_code: int, body: Any) -> UpstreamError:
    """Translate a non-2xx provider response into the gateway's error taxonomy."""
    if status_code == 400:
        return UpstreamClientError(extract_detail(body), upstream_status=400)
    if status_code == 401:
        return UpstreamAuthError(upstream_status=401)
    if status_code == 402:
        return UpstreamBalanceError(upstream_status=402)
    if status_code == 429:
        return UpstreamRateLimitedError(upstream_status=429)
    return UpstreamServerError(status_code)


class ElevenLabsProvider(CallProvider):
    """Places outbound calls through an ElevenLabs conversational agent.

    If http_client is provided, it will be used for all requests (connection reuse).
    """

    name = "elevenlabs"

    def __init__(
        self,
        api_key: str,
        agent_id: str,
        base_url: str = DEFAULT_BASE_URL,
        call_path: str = DEFAULT_CALL_PATH,
        phone_number_id: str = "",
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0
    ):
        """Initialize ElevenLabs provider.

        Args:
            api_key: ElevenLabs API key, sent as xi-api-key
            agent_id: Conversational agent that runs the demo call
            base_url: The ElevenLabs API base URL
            call_path: Outbound-call endpoint path
            phone_number_id: Caller-ID number id; required by the Twilio
                outbound-call endpoint, omitted from the payload when empty
            http_client: Optional shared HTTP client
            timeout: Request timeout in seconds
        """
        super().__init__(base_url, api_key, http_client, timeout)
        self.agent_id = agent_id
        self.call_path = call_path
        self.phone_number_id = phone_number_id

    def _build_headers(self) -> Dict[str, str]:
        return {
            "xi-api-key": self.api_key,
            "Content-Type": "application/json",
        }

    def is_configured(self) -> bool:
        return bool(self.api_key and self.agent_id)

    def build_payload(self, call: CallRequest) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "agent_id": self.agent_id,
            "phone_number": call.phone_number,
            "conversation_initiation_client_data": {
                "dynamic_variables": {
                    "business_name": call.business_name,
                    "owner_name": call.owner_name,
                },
            },
        }
        if self.phone_number_id:
            payload["agent_phone_number_id"] = self.phone_number_id
            payload["to_number"] = call.phone_number
        return payload

    async def place_call(self, call: CallRequest) -> UpstreamCallResult:
        """Start an outbound call.

        Raises:
            ConfigMissingError: If the API key or agent id is not configured
            UpstreamError: If the provider rejects the call or cannot be reached
        """
        missing = []
        if not self.api_key:
            missing.append("ELEVENLABS_API_KEY")
        if not self.agent_id:
            missing.append("ELEVENLABS_AGENT_ID")
        if missing:
            raise ConfigMissingError(missing)

        url = self._get_endpoint_url(self.call_path)

        try:
            async with self._client_context() as client:
                resp = await client.post(
                    url, headers=self._build_headers(), json=self.build_payload(call)
                )
        except httpx.HTTPError as e:
            logger.warning(
                f"Voice provider unreachable: {type(e).__name__}",
                extra=get_log_context(request_id=call.request_id, provider=self.name),
            )
            raise UpstreamUnreachableError() from e

        try:
            body = resp.json()
        except ValueError:
            body = None

        if not resp.is_success:
            error = map_error_response(resp.status_code, body)
            logger.warning(
                f"Voice provider returned {resp.status_code}: {error.message}",
                extra=get_log_context(
                    request_id=call.request_id,
                    provider=self.name,
                    status_code=resp.status_code,
                ),
            )
            raise error

        if not isinstance(body, dict):
            body = {}
        conversation_id = next(
            (str(body[key]) for key in _CALL_ID_KEYS if body.get(key)), None
        )
        return UpstreamCallResult(conversation_id=conversation_id, raw=body)
