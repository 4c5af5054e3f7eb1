"""
Reference IDs
=============
Random, URL-safe identifiers for stored content and the ``content-ref:``
token that carries them through message text.
"""

import re
import secrets
from typing import Optional, List

REFERENCE_PREFIX = "content-ref:"

# 32 random bytes -> 43 base64url characters (256 bits)
REFERENCE_ID_BYTES = 32

_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{22,128}$")
_TOKEN_PATTERN = re.compile(r"content-ref:([A-Za-z0-9_-]+)")


def generate_reference_id() -> str:
    """Generate a new reference id."""
    return secrets.token_urlsafe(REFERENCE_ID_BYTES)


def is_valid_reference_id(reference_id: str) -> bool:
    """Check that a string has the shape of a reference id."""
    if not reference_id or not isinstance(reference_id, str):
        return False
    return _ID_PATTERN.match(reference_id) is not None


def format_reference(reference_id: str) -> str:
    """Render the token embedded in message text."""
    return f"{REFERENCE_PREFIX}{reference_id}"


def extract_reference_id(text: str) -> Optional[str]:
    """
    Pull a reference id out of a token or bare id.

    Returns:
        The id, or None if the input holds neither
    """
    if not text or not isinstance(text, str):
        return None
    text = text.strip()
    match = _TOKEN_PATTERN.search(text)
    if match:
        return match.group(1)
    return text if is_valid_reference_id(text) else None


def find_reference_ids(text: str) -> List[str]:
    """All reference ids embedded in text, in order of appearance."""
    if not text:
        return []
    return _TOKEN_PATTERN.findall(text)


__all__ = [
    'REFERENCE_PREFIX',
    'generate_reference_id',
    'is_valid_reference_id',
    'format_reference',
    'extract_reference_id',
    'find_reference_ids',
]
