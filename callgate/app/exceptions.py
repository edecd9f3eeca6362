"""Custom exceptions for the call gateway.

Every failure in the trigger-call pipeline is raised as a GatewayException
subclass and rendered by a single handler into the JSON envelope
``{"success": false, "error": <message>, ...}``.
"""

from typing import Any, Dict, Optional


class GatewayException(Exception):
    """Base class for gateway exceptions with HTTP status code.

    Subclasses define their status_code and a default user-facing message.
    ``headers`` are added to the HTTP response, ``extra`` is merged into the
    JSON body.
    """
    status_code: int = 500
    default_message: str = "Server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    @property
    def headers(self) -> Optional[Dict[str, str]]:
        return None

    @property
    def extra(self) -> Dict[str, Any]:
        return {}


class MethodNotAllowedError(GatewayException):
    status_code = 405
    default_message = "Method not allowed"


class InvalidRequestBodyError(GatewayException):
    """Raised when the body is not a JSON object or a field has the wrong type."""
    status_code = 400
    default_message = "Invalid request body"


class RateLimitedError(GatewayException):
    """Raised when the caller exceeded the sliding-window limit.

    Maps to HTTP 429 with a Retry-After header.
    """
    status_code = 429

    def __init__(self, retry_after: int):
        self.retry_after = retry_after
        super().__init__(f"Too many requests. Try again in {retry_after}s.")

    @property
    def headers(self) -> Dict[str, str]:
        return {"Retry-After": str(self.retry_after)}

    @property
    def extra(self) -> Dict[str, Any]:
        return {"retryAfter": self.retry_after}


class AuthFormatInvalidError(GatewayException):
    """Raised when the credential is missing or not a 64-char hex token."""
    status_code = 401
    default_message = "Invalid password format"


class AuthMismatchError(GatewayException):
    status_code = 401
    default_message = "Invalid password"


class ConfigMissingError(GatewayException):
    """Raised when a required deployment setting is empty.

    The missing setting names are kept for server-side logging only; the
    caller sees a generic message.
    """
    status_code = 500
    default_message = "Server configuration error"

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__()


class PhoneInvalidError(GatewayException):
    status_code = 400
    default_message = "Invalid phone format. Use +1XXXXXXXXXX"


class BusinessNameInvalidError(GatewayException):
    status_code = 400
    default_message = "Business name required"


class UpstreamError(GatewayException):
    """Base class for failures reported by (or reaching) the voice provider.

    Attributes:
        upstream_status: HTTP status returned by the provider, None when the
            provider could not be reached
    """
    status_code = 500
    default_message = "Server error"

    def __init__(self, message: Optional[str] = None, upstream_status: Optional[int] = None):
        self.upstream_status = upstream_status
        super().__init__(message)


class UpstreamClientError(UpstreamError):
    """Provider rejected the request as invalid (400); its detail is passed through."""
    status_code = 400
    default_message = "Voice provider rejected the request"


class UpstreamAuthError(UpstreamError):
    """Provider rejected our API key. An operator problem, so surfaced as 500."""
    status_code = 500
    default_message = "Invalid voice provider credentials"


class UpstreamBalanceError(UpstreamError):
    status_code = 402
    default_message = "Insufficient account balance"


class UpstreamRateLimitedError(UpstreamError):
    status_code = 429
    default_message = "Upstream rate limit exceeded"


class UpstreamServerError(UpstreamError):
    status_code = 500

    def __init__(self, upstream_status: int):
        super().__init__(f"Upstream error {upstream_status}", upstream_status=upstream_status)


class UpstreamUnreachableError(UpstreamError):
    status_code = 500
    default_message = "Server error"
