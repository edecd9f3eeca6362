"""Trigger-call endpoint: starts an AI demo call to a prospect."""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from callgate.app.core.logging import get_log_context, get_logger
from callgate.app.core.security import validate_credential_format, verify_credential
from callgate.app.exceptions import InvalidRequestBodyError
from callgate.app.middleware.rate_limit import RateLimitResult, require_rate_limit
from callgate.app.middleware.request_id import get_request_id
from callgate.app.providers.base import CallProvider
from callgate.app.providers.factory import get_call_provider
from callgate.app.services.validation import build_call_request, parse_body

router = APIRouter()
logger = get_logger(__name__)


async def read_json_body(request: Request) -> object:
    """Decode the request body; an empty body counts as an empty object."""
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        return await request.json()
    except ValueError as e:
        raise InvalidRequestBodyError("Invalid JSON in request body") from e


@router.post("/trigger-call", response_model=None)
@router.post("/api/trigger-call", response_model=None)
async def trigger_call(
    request: Request,
    rate_limit: RateLimitResult = Depends(require_rate_limit),
    provider: CallProvider = Depends(get_call_provider),
) -> JSONResponse:
    """Validate the request and ask the voice provider to place the call.

    Checks run in a fixed order and the first failure ends the request
    (rate limiting has already happened in the dependency):
    1. credential format (401)
    2. credential value against ACCESS_PASSWORD_HASH (401, or 500 if unset)
    3. phone number (400)
    4. business name (400)
    5. provider call (status depends on the provider's answer)

    All failures are raised as GatewayException subclasses and rendered by
    the application's exception handler.
    """
    request_id = get_request_id(request)

    body = parse_body(await read_json_body(request))

    credential = validate_credential_format(body.password_hash)
    verify_credential(credential)

    call = build_call_request(body, request_id=request_id)

    result = await provider.place_call(call)

    logger.info(
        f"Call initiated to {call.business_name}",
        extra=get_log_context(
            request_id=request_id,
            client_key=getattr(request.state, "client_key", None),
            provider=provider.name,
            conversation_id=result.conversation_id,
        ),
    )

    return JSONResponse(
        status_code=200,
        content={
            "success": True,
            "conversation_id": result.conversation_id,
            "status": result.status,
            "message": f"Call started to {call.business_name}",
        },
        headers={
            "X-RateLimit-Limit": str(rate_limit.limit),
            "X-RateLimit-Remaining": str(rate_limit.remaining),
        },
    )
