"""Search query validation: raw request parameters to a bounded SearchQuery.

Shared by both search modes. Pure: no store access, no side effects.
"""
from __future__ import annotations

import re
from dataclasses import dataclass

DEFAULT_LIMIT = 10
MAX_LIMIT = 50
MIN_QUERY_LENGTH = 2

_INTEGER_RE = re.compile(r"^[+-]?[0-9]+$")


class SearchValidationError(ValueError):
    """Caller-input error detected before any store access."""

    status_code = 400
    message = "Invalid search request"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        if message:
            self.message = message


class NotAuthenticated(SearchValidationError):
    status_code = 401
    message = "User not authenticated"


class MissingQuery(SearchValidationError):
    message = "Query parameter is required"


class QueryTooShort(SearchValidationError):
    message = "Query must be at least 2 characters"


class InvalidLimit(SearchValidationError):
    message = "Limit must be a positive integer"


class InvalidOffset(SearchValidationError):
    message = "Offset must be a non-negative integer"


@dataclass(frozen=True, slots=True)
class SearchQuery:
    """A validated, immutable search request."""
    text: str      # trimmed, len >= MIN_QUERY_LENGTH
    owner_id: str
    limit: int     # 1..MAX_LIMIT
    offset: int = 0  # partial mode only


def _parse_int(raw: object) -> int | None:
    """Strictly parse an int from an int or a decimal string; None if not possible."""
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str):
        candidate = raw.strip()
        if _INTEGER_RE.match(candidate):
            return int(candidate)
    return None


def _is_absent(raw: object) -> bool:
    return raw is None or (isinstance(raw, str) and raw == "")


def validate(
    raw_text: str | None,
    raw_limit: str | int | None = None,
    raw_offset: str | int | None = None,
    *,
    owner_id: str | None,
    default_limit: int = DEFAULT_LIMIT,
    max_limit: int = MAX_LIMIT,
    min_length: int = MIN_QUERY_LENGTH,
) -> SearchQuery:
    """Normalize and validate raw search parameters.

    Raises the matching SearchValidationError subclass on the first problem
    found, checked in order: owner, text, limit, offset. Limits above
    max_limit are capped, not rejected.
    """
    if not owner_id:
        raise NotAuthenticated()

    if raw_text is None or raw_text == "":
        raise MissingQuery()

    text = raw_text.strip()
    if len(text) < min_length:
        raise QueryTooShort(f"Query must be at least {min_length} characters")

    if _is_absent(raw_limit):
        limit = default_limit
    else:
        parsed_limit = _parse_int(raw_limit)
        if parsed_limit is None or parsed_limit <= 0:
            raise InvalidLimit()
        limit = min(parsed_limit, max_limit)

    if _is_absent(raw_offset):
        offset = 0
    else:
        parsed_offset = _parse_int(raw_offset)
        if parsed_offset is None or parsed_offset < 0:
            raise InvalidOffset()
        offset = parsed_offset

    return SearchQuery(text=text, owner_id=owner_id, limit=limit, offset=offset)
