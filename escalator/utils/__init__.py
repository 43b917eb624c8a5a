"""Utility modules for Escalator."""

from .logging import get_logger, setup_logging
from .security import validate_twilio_signature, sanitize_phone
from .validation import validate_phone, normalize_phone, sanitize_input, extract_ack_code

__all__ = [
    "get_logger",
    "setup_logging",
    "validate_twilio_signature",
    "sanitize_phone",
    "validate_phone",
    "normalize_phone",
    "sanitize_input",
    "extract_ack_code",
]
