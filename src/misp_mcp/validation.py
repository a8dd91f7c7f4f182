"""Input validation for MCP tool arguments.

Security design:
1. Length checks FIRST (prevents ReDoS)
2. Simple patterns only (no complex regex)

The client itself passes values to MISP verbatim; these checks only
guard the tool surface exposed to MCP callers.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any

from .errors import ValidationError

MAX_TAG_LENGTH = 255          # MISP tag name column size
MAX_TAGS = 20                 # Per include/exclude list
MAX_EVENT_ID_LENGTH = 20
MAX_DATE_LENGTH = 50
MAX_PAGE = 10_000

_ISO_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_LAST_PATTERN = re.compile(r"^\d{1,6}[smhdw]?$")

SENSITIVE_FIELDS = frozenset({"key", "token", "authorization", "password", "secret"})


def validate_no_null_bytes(value: str, field: str) -> None:
    """Reject null bytes which can cause truncation attacks."""
    if "\x00" in value:
        raise ValidationError(f"{field} contains invalid null byte")


def validate_length(value: str | None, max_length: int, field: str) -> None:
    """Validate input length and check for null bytes.

    Must be called before any regex or parsing operations.
    """
    if value is not None and isinstance(value, str):
        if len(value) > max_length:
            raise ValidationError(f"{field} exceeds maximum length of {max_length} characters")
        validate_no_null_bytes(value, field)


def _require_str(value: Any, field: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    return value.strip()


def validate_tags(values: Any, field: str = "tags") -> list[str]:
    """Validate a list of tag names.

    Tag content is not interpreted; MISP's leading ``+``/``-`` conventions
    pass through unchanged.
    """
    if values is None:
        return []
    if not isinstance(values, list):
        raise ValidationError(f"{field} must be a list of strings")
    if len(values) > MAX_TAGS:
        raise ValidationError(f"Cannot specify more than {MAX_TAGS} {field}")

    tags = []
    for value in values:
        if not isinstance(value, str):
            raise ValidationError(f"{field} must be a list of strings")
        value = value.strip()
        if not value:
            raise ValidationError(f"{field} cannot contain empty tags")
        validate_length(value, MAX_TAG_LENGTH, field)
        if "&&" in value:
            raise ValidationError(f"{field} cannot contain '&&'")
        tags.append(value)
    return tags


def validate_date(value: Any, field: str = "date") -> str:
    """Validate a YYYY-MM-DD date, returning "" when absent."""
    value = _require_str(value, field)
    if not value:
        return ""
    validate_length(value, MAX_DATE_LENGTH, field)

    # strptime alone would also take single-digit fields such as 2024-1-5
    if not _ISO_DATE_PATTERN.match(value):
        raise ValidationError(f"{field} must be in YYYY-MM-DD format")
    try:
        parsed = datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        raise ValidationError(f"{field} is not a valid calendar date") from None

    if not (1970 <= parsed.year <= 2100):
        raise ValidationError(f"{field} year must be between 1970 and 2100")
    return value


def validate_bool(value: Any, field: str, default: bool = False) -> bool:
    """Require a JSON boolean, returning ``default`` when absent."""
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ValidationError(f"{field} must be a boolean")
    return value


def validate_last(value: Any) -> str:
    """Validate a relative time window such as ``7d`` or ``12h``."""
    value = _require_str(value, "last")
    if not value:
        return ""
    validate_length(value, 10, "last")
    if not _LAST_PATTERN.match(value):
        raise ValidationError("last must look like 30m, 12h, 7d or 2w")
    return value


def validate_event_id(value: Any) -> str:
    """Validate a numeric event id, returning "" when absent."""
    if isinstance(value, int) and not isinstance(value, bool):
        value = str(value)
    value = _require_str(value, "event_id")
    if not value:
        return ""
    validate_length(value, MAX_EVENT_ID_LENGTH, "event_id")
    if not (value.isascii() and value.isdigit()):
        raise ValidationError("event_id must be a positive integer")
    return value


def validate_since(value: Any) -> datetime | None:
    """Parse an ISO 8601 timestamp; naive values are taken as UTC."""
    value = _require_str(value, "since")
    if not value:
        return None
    validate_length(value, MAX_DATE_LENGTH, "since")
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(
            "since must be ISO8601 format (YYYY-MM-DD or YYYY-MM-DDTHH:MM:SSZ)"
        ) from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def validate_limit(value: Any, max_value: int) -> int:
    """Clamp limit to 0..max_value; 0 means server default paging."""
    if value is None:
        return 0
    if not isinstance(value, int) or isinstance(value, bool):
        try:
            value = int(value)
        except (TypeError, ValueError):
            raise ValidationError("limit must be an integer") from None
    return max(0, min(value, max_value))


def validate_page(value: Any) -> int:
    """Clamp page to 1..MAX_PAGE."""
    if value is None:
        return 1
    if not isinstance(value, int) or isinstance(value, bool):
        try:
            value = int(value)
        except (TypeError, ValueError):
            raise ValidationError("page must be an integer") from None
    return max(1, min(value, MAX_PAGE))


def sanitize_for_log(value: Any) -> Any:
    """Sanitize value for safe logging.

    Security: Prevents log injection and sensitive data exposure.
    """
    if isinstance(value, str):
        sanitized = value.encode("unicode_escape").decode("ascii")
        if len(sanitized) > 500:
            sanitized = sanitized[:500] + "...[truncated]"
        return sanitized
    elif isinstance(value, dict):
        return _filter_sensitive(value)
    elif isinstance(value, list):
        return [sanitize_for_log(v) for v in value[:10]]
    else:
        return value


def _filter_sensitive(data: dict[str, Any]) -> dict[str, Any]:
    """Filter sensitive fields from data before logging."""
    result = {}
    for key, value in data.items():
        key_lower = str(key).lower()
        if any(s in key_lower for s in SENSITIVE_FIELDS):
            result[key] = "***REDACTED***"
        else:
            result[key] = sanitize_for_log(value)
    return result
