"""
Utility functions for log-relay.

Includes id/time helpers, bindings formatting and index-name sanitizing.
"""

import json
import re
import uuid
from datetime import date, datetime, timezone
from typing import Any, Optional, Sequence

TRUNCATED_SUFFIX = "...[truncated]"

_UNSAFE_INDEX_CHARS = re.compile(r"[^a-z0-9_.-]+")


def generate_id(prefix: str = "") -> str:
    """Generate a UUID string, optionally prefixed (e.g. ``txn-``)."""
    return f"{prefix}{uuid.uuid4()}"


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def format_bindings(bindings: Sequence[Any], max_size: int = 2048) -> Optional[str]:
    """
    Serialize query bindings to JSON, capped at ``max_size`` bytes.

    Returns None for an empty sequence. Oversized payloads are cut at the
    byte limit and suffixed with ``...[truncated]``.
    """
    if not bindings:
        return None

    formatted = json.dumps(list(bindings), default=str, ensure_ascii=False)
    encoded = formatted.encode("utf-8")
    if max_size > 0 and len(encoded) > max_size:
        return encoded[:max_size].decode("utf-8", errors="ignore") + TRUNCATED_SUFFIX
    return formatted


def sanitize_index(index: Optional[str]) -> str:
    """Lower-case an index name and keep only ``[a-z0-9_.-]``; ``log`` if empty."""
    index = (index or "").strip().lower()
    if not index:
        return "log"
    return _UNSAFE_INDEX_CHARS.sub("_", index)


def utc_today() -> date:
    """Current calendar date in UTC."""
    return utc_now().date()
