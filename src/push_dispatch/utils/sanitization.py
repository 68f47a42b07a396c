"""Secret and push-token sanitization for logging and error messages.

Credentials (service account keys, bearer tokens, passwords) are replaced
with a redaction marker. Device push tokens are not secrets in the same
sense, but they are long-lived device identifiers, so they are masked to a
short prefix/suffix that stays useful for correlating log lines.

Examples:
    >>> mask_token("dGhpcy1pcy1hLWxvbmctdG9rZW4")
    'dGhp...rZW4'

    >>> sanitize_value({"private_key": "-----BEGIN...", "count": 42})
    {'private_key': '<REDACTED>', 'count': 42}

    >>> sanitize_value({"invalid_tokens": ["dGhpcy1pcy1hLWxvbmctdG9rZW4"]})
    {'invalid_tokens': ['dGhp...rZW4']}
"""

from __future__ import annotations

import re
import threading
from collections.abc import Mapping, Sequence
from typing import Final, TypeIs

# Redaction marker for sanitized values
REDACTED: Final[str] = "<REDACTED>"

# Tokens shorter than this are fully redacted instead of masked
_MIN_MASKABLE_LENGTH: Final[int] = 12

# Credential-bearing field names (case-insensitive)
_SENSITIVE_FIELD_PATTERNS: Final[tuple[re.Pattern[str], ...]] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r".*secret.*",
        r".*password.*",
        r".*credential.*",
        r".*private.*",
        r".*api[-_]?key.*",
        r".*auth.*",
        r".*bearer.*",
    )
)

# Push-token field names: token, tokens, device_token, invalid_tokens, ...
# Count-style fields such as token_count deliberately do not match.
_PUSH_TOKEN_FIELD_PATTERN: Final[re.Pattern[str]] = re.compile(r"^(?:.*_)?tokens?$", re.IGNORECASE)

# Credentials embedded in URLs
_GENERIC_TOKEN_IN_QUERY: Final[re.Pattern[str]] = re.compile(
    r"([?&](?:access_token|token|api[-_]?key|auth|secret|bearer)=)([^&\s]+)",
    re.IGNORECASE,
)
_BEARER_HEADER: Final[re.Pattern[str]] = re.compile(r"(Bearer\s+)([A-Za-z0-9._~+/=-]+)")

# Patterns registered by gateway plugins at import time
_registered_patterns: list[tuple[re.Pattern[str], str]] = []
_patterns_lock = threading.Lock()


def register_sanitization_pattern(pattern: re.Pattern[str], replacement: str) -> None:
    """Register an additional free-text pattern to scrub from log output.

    Gateway plugins call this at import time so that transport-specific
    identifiers are removed from messages without this module knowing them.

    Args:
        pattern: Compiled regular expression to search for
        replacement: Replacement string (may use group references)
    """
    with _patterns_lock:
        if all(existing.pattern != pattern.pattern for existing, _ in _registered_patterns):
            _registered_patterns.append((pattern, replacement))


def mask_token(token: str) -> str:
    """Mask a push token down to a short prefix and suffix.

    Args:
        token: Push token to mask

    Returns:
        Masked token, or REDACTED when the token is too short to mask safely

    Examples:
        >>> mask_token("abcdefghijklmnop")
        'abcd...mnop'
        >>> mask_token("short")
        '<REDACTED>'
    """
    if len(token) < _MIN_MASKABLE_LENGTH:
        return REDACTED
    return f"{token[:4]}...{token[-4:]}"


def is_sensitive_field(field_name: str) -> bool:
    """Check if a field name indicates credential data.

    Examples:
        >>> is_sensitive_field("private_key")
        True
        >>> is_sensitive_field("credentials_file")
        True
        >>> is_sensitive_field("recipient_id")
        False
    """
    return any(pattern.match(field_name) for pattern in _SENSITIVE_FIELD_PATTERNS)


def is_push_token_field(field_name: str) -> bool:
    """Check if a field name holds one or more push tokens.

    Examples:
        >>> is_push_token_field("invalid_tokens")
        True
        >>> is_push_token_field("invalid_token_count")
        False
    """
    return _PUSH_TOKEN_FIELD_PATTERN.match(field_name) is not None


def sanitize_text(text: str) -> str:
    """Scrub credentials and registered token patterns from free text.

    Examples:
        >>> sanitize_text("GET https://example.com/v1?access_token=abc123")
        'GET https://example.com/v1?access_token=<REDACTED>'
    """
    if not text:
        return text
    sanitized = _GENERIC_TOKEN_IN_QUERY.sub(rf"\1{REDACTED}", text)
    sanitized = _BEARER_HEADER.sub(rf"\1{REDACTED}", sanitized)
    with _patterns_lock:
        patterns = tuple(_registered_patterns)
    for pattern, replacement in patterns:
        sanitized = pattern.sub(replacement, sanitized)
    return sanitized


def _is_primitive(value: object) -> TypeIs[str | int | float | bool | None]:
    return isinstance(value, (str, int, float, bool, type(None)))


def _is_mapping(value: object) -> TypeIs[Mapping[str, object]]:
    return isinstance(value, Mapping)


def _is_sequence(value: object) -> TypeIs[Sequence[object]]:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes))


def _mask_tokens(value: object) -> object:
    if isinstance(value, str):
        return mask_token(value)
    if _is_sequence(value):
        masked = [_mask_tokens(item) for item in value]
        return tuple(masked) if isinstance(value, tuple) else masked
    return value


def sanitize_value(
    value: object,
    *,
    field_name: str | None = None,
) -> object:
    """Recursively sanitize sensitive values from structured data.

    Walks nested dicts, lists and tuples and sanitizes values based on:
    1. Credential field names (redacted entirely)
    2. Push-token field names (masked)
    3. Credential and registered patterns inside string values

    Args:
        value: The value to sanitize (can be any type)
        field_name: Optional field name for context-aware sanitization

    Returns:
        Sanitized value

    Examples:
        >>> sanitize_value({"api_key": "secret", "count": 42})
        {'api_key': '<REDACTED>', 'count': 42}
    """
    if field_name:
        if is_sensitive_field(field_name):
            return REDACTED
        if is_push_token_field(field_name):
            return _mask_tokens(value)

    if _is_primitive(value):
        if type(value) is str:
            return sanitize_text(value)
        return value

    if _is_mapping(value):
        sanitized_dict: dict[str, object] = {
            key: sanitize_value(val, field_name=str(key)) for key, val in value.items()
        }
        return sanitized_dict

    if _is_sequence(value):
        sanitized_items: list[object] = [sanitize_value(item) for item in value]
        if isinstance(value, tuple):
            return tuple(sanitized_items)
        return sanitized_items

    # Fail-safe for unexpected types
    return sanitize_text(str(value))


def sanitize_exception(exc: BaseException) -> str:
    """Render an exception as ``Type: message`` with secrets removed.

    Examples:
        >>> sanitize_exception(ValueError("bad url ?token=abc"))
        'ValueError: bad url ?token=<REDACTED>'
    """
    return f"{type(exc).__name__}: {sanitize_text(str(exc))}"


def sanitize_args(args: tuple[object, ...]) -> tuple[object, ...]:
    """Sanitize the args tuple of a LogRecord before formatting."""
    return tuple(sanitize_value(arg) for arg in args)


def sanitize_mapping(data: Mapping[str, object]) -> dict[str, object]:
    """Sanitize a mapping (e.g., logging extra dict) for safe output."""
    return {key: sanitize_value(val, field_name=key) for key, val in data.items()}
