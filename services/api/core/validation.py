"""
Validation utilities for the document moderation API.
Ensures data integrity and provides clear error messages.
"""
import re
from typing import Any, Iterable, List, Optional

from core.errors import ValidationFailure
from models.version import VERSION_STATUSES

STATUS_FILTER_ALL = "all"
STATUS_FILTERS = (STATUS_FILTER_ALL,) + VERSION_STATUSES

# Deliberately loose: one @, no whitespace, a dot in the domain part.
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_status_filter(value: Optional[str]) -> str:
    """
    Normalize a worklist/listing filter.

    Rules:
    - case-insensitive, surrounding whitespace ignored
    - must be one of: all, pending, approved, rejected

    Raises:
        ValidationFailure if the value is not a known filter
    """
    v = (value or "").strip().lower()
    if v not in STATUS_FILTERS:
        raise ValidationFailure(
            f"status filter must be one of {list(STATUS_FILTERS)}, got {value!r}",
            code="INVALID_STATUS_FILTER",
        )
    return v


def validate_version_status(value: Optional[str]) -> str:
    """Like validate_status_filter, but `all` is not a status."""
    v = (value or "").strip().lower()
    if v not in VERSION_STATUSES:
        raise ValidationFailure(
            f"status must be one of {list(VERSION_STATUSES)}, got {value!r}",
            code="INVALID_STATUS",
        )
    return v


def require_text(value: Any, field_name: str, max_length: int = 500) -> str:
    """
    Require a non-blank string.

    Raises:
        ValidationFailure if missing, blank, or longer than max_length
    """
    s = str(value or "").strip()
    if not s:
        raise ValidationFailure(f"{field_name} is required", code="MISSING_FIELD")
    if len(s) > max_length:
        raise ValidationFailure(
            f"{field_name} must be at most {max_length} characters, got {len(s)}",
            code="FIELD_TOO_LONG",
        )
    return s


def validate_collaborator_emails(emails: Optional[Iterable[str]]) -> List[str]:
    """
    Validate and de-duplicate collaborator emails (case-insensitive),
    keeping first-seen order.

    Raises:
        ValidationFailure listing every malformed address
    """
    seen = set()
    out: List[str] = []
    bad: List[str] = []

    for raw in emails or []:
        e = str(raw or "").strip()
        if not e:
            continue
        if not _EMAIL_RE.match(e):
            bad.append(e)
            continue
        key = e.lower()
        if key in seen:
            continue
        seen.add(key)
        out.append(e)

    if bad:
        raise ValidationFailure(
            f"Malformed collaborator email(s): {', '.join(bad)}",
            code="INVALID_COLLABORATOR_EMAIL",
        )
    return out
