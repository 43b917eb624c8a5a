"""Security utilities for webhook verification and log masking."""

from typing import Any, Mapping, Optional

from twilio.request_validator import RequestValidator

from escalator.config import settings


def validate_twilio_signature(
    url: str,
    params: Mapping[str, Any],
    signature: Optional[str],
    auth_token: Optional[str] = None
) -> bool:
    """Check an X-Twilio-Signature header against the request URL and form."""
    if not signature:
        return False

    token = auth_token if auth_token is not None else settings.TWILIO_AUTH_TOKEN
    if not token:
        return False

    validator = RequestValidator(token)
    return validator.validate(url, dict(params), signature)


def sanitize_phone(phone: str) -> str:
    """Sanitize phone number for logging."""
    if len(phone) <= 4:
        return phone

    return phone[:2] + "*" * (len(phone) - 4) + phone[-2:]

