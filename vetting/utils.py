"""Shared utility functions used across vetting modules."""
from __future__ import annotations

import json
import re
import unicodedata
from datetime import UTC, datetime
from typing import Any

_MISSING = object()


def json_parse(value: str | None, default: Any = _MISSING) -> Any:
    """Safely parse a JSON string, returning *default* on failure.

    If no default is given, returns ``{}`` on parse error.
    """
    try:
        return json.loads(value or "")
    except (json.JSONDecodeError, TypeError):
        return {} if default is _MISSING else default


def utc_now() -> datetime:
    """Naive UTC timestamp, matching what SQLite hands back from DateTime columns."""
    return datetime.now(UTC).replace(tzinfo=None)


def slugify(value: str) -> str:
    """Lowercase ASCII slug: ``"José O'Neil Jr."`` -> ``"jose-o-neil-jr"``."""
    normalized = unicodedata.normalize("NFKD", value or "")
    normalized = "".join(ch for ch in normalized if not unicodedata.combining(ch))
    normalized = re.sub(r"[^a-zA-Z0-9]+", "-", normalized.lower())
    return normalized.strip("-")
