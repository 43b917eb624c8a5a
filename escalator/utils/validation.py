"""Input validation utilities."""

import re
from typing import Optional


def validate_phone(phone: str) -> bool:
    """Validate phone number format (basic validation)."""
    # Remove common formatting characters
    cleaned = re.sub(r'[^\d+]', '', phone)

    # Basic validation: starts with + or digit, 7-15 digits total
    pattern = r'^(\+?\d{7,15})$'
    return bool(re.match(pattern, cleaned))


def normalize_phone(phone: str) -> str:
    """Strip formatting so the same number always compares equal."""
    return re.sub(r'[^\d+]', '', phone)


def sanitize_input(text: str, max_length: int = 1000) -> str:
    """Sanitize input text by removing potentially harmful content."""
    if not text:
        return ""

    # Remove potential script tags and other HTML
    text = re.sub(r'<[^>]*>', '', text)

    # Remove control characters except newlines and tabs
    text = re.sub(r'[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]', '', text)

    # Limit length
    if len(text) > max_length:
        text = text[:max_length] + "..."

    return text.strip()


def extract_ack_code(body: str) -> Optional[str]:
    """Pull an acknowledgment code out of a free-text SMS reply.

    Recipients are asked to reply with the bare code but frequently echo the
    quotes from the prompt or add stray whitespace.
    """
    if not body:
        return None

    cleaned = body.strip().strip('"\'').strip()
    if re.fullmatch(r'\d+', cleaned):
        return cleaned

    return None
