"""Input validation for trigger-call requests.

The checks are plain predicates so the endpoint can run them in a fixed
order and report only the first failure.
"""

import re
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from callgate.app.exceptions import (
    BusinessNameInvalidError,
    InvalidRequestBodyError,
    PhoneInvalidError,
)
from callgate.app.providers.base import CallRequest

# North American numbers only: +1 followed by exactly ten ASCII digits
PHONE_PATTERN = re.compile(r"\+1[0-9]{10}")
MIN_BUSINESS_NAME_LENGTH = 2


class TriggerCallBody(BaseModel):
    """Request body for POST /trigger-call.

    Values are kept exactly as sent. Types are checked by the endpoint in
    order, so a malformed credential is a 401 even when other fields are
    also wrong, and field types are only reported after authentication.
    """
    model_config = ConfigDict(extra="ignore")

    phone_number: Any = None
    business_name: Any = None
    owner_name: Any = None
    password_hash: Any = None


def parse_body(data: Any) -> TriggerCallBody:
    """Wrap a decoded JSON body in TriggerCallBody.

    Raises:
        InvalidRequestBodyError: If the body is not a JSON object
    """
    if not isinstance(data, dict):
        raise InvalidRequestBodyError("Invalid JSON in request body")
    return TriggerCallBody.model_validate(data)


def is_valid_phone(phone_number: Any) -> bool:
    return isinstance(phone_number, str) and PHONE_PATTERN.fullmatch(phone_number) is not None


def is_valid_business_name(business_name: Any) -> bool:
    return (
        isinstance(business_name, str)
        and len(business_name.strip()) >= MIN_BUSINESS_NAME_LENGTH
    )


def validate_phone(phone_number: Any) -> str:
    if not is_valid_phone(phone_number):
        raise PhoneInvalidError()
    return phone_number


def validate_business_name(business_name: Any) -> str:
    if not is_valid_business_name(business_name):
        raise BusinessNameInvalidError()
    return business_name.strip()


def build_call_request(body: TriggerCallBody, request_id: Optional[str] = None) -> CallRequest:
    """Validate phone and business name, in that order, and build the CallRequest.

    Raises:
        PhoneInvalidError: If the phone number is not +1 and ten digits
        BusinessNameInvalidError: If the business name is shorter than two characters
        InvalidRequestBodyError: If owner_name is present but not a string
    """
    phone_number = validate_phone(body.phone_number)
    business_name = validate_business_name(body.business_name)
    if body.owner_name is not None and not isinstance(body.owner_name, str):
        raise InvalidRequestBodyError()
    owner_name = (body.owner_name or "").strip()
    return CallRequest(
        phone_number=phone_number,
        business_name=business_name,
        owner_name=owner_name,
        request_id=request_id,
    )
