import re
import secrets

from callgate.app.core.config import settings
from callgate.app.exceptions import (
    AuthFormatInvalidError,
    AuthMismatchError,
    ConfigMissingError,
)

# SHA-256 hex digest as produced by the frontend password gate
CREDENTIAL_PATTERN = re.compile(r"[0-9a-fA-F]{64}")


def is_valid_credential_format(token: object) -> bool:
    """Return True if token looks like a 64-character hex digest.

    This is a format check only; it says nothing about whether the token
    is the right one.
    """
    return isinstance(token, str) and CREDENTIAL_PATTERN.fullmatch(token) is not None


def validate_credential_format(token: object) -> str:
    """Check the submitted credential's shape.

    Raises:
        AuthFormatInvalidError: If the token is missing or malformed
    """
    if token is None or token == "":
        raise AuthFormatInvalidError("Password required")
    if not is_valid_credential_format(token):
        raise AuthFormatInvalidError()
    return token


def credentials_match(submitted: str, expected: str) -> bool:
    """Case-insensitive, constant-time comparison of two hex tokens."""
    return secrets.compare_digest(
        submitted.lower().encode("utf-8"),
        expected.lower().encode("utf-8"),
    )


def verify_credential(submitted: str, expected: str | None = None) -> None:
    """Compare a submitted credential against the deployment's shared secret.

    Fails closed: an unconfigured secret rejects every request.

    Args:
        submitted: Token from the request body (already format-checked)
        expected: Expected token, defaults to settings.access_password_hash

    Raises:
        ConfigMissingError: If no expected token is configured
        AuthMismatchError: If the tokens differ
    """
    if expected is None:
        expected = settings.access_password_hash
    expected = (expected or "").strip()
    if not expected:
        raise ConfigMissingError(["ACCESS_PASSWORD_HASH"])
    if not credentials_match(submitted, expected):
        raise AuthMismatchError()
