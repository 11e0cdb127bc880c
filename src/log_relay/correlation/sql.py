"""
Regex heuristics for SQL introspection.

These are deliberately small: query kind from the leading keyword, table
name from the first ``from|into|update|table`` target, and the row id from
the binding that feeds a ``WHERE ... id = ?`` placeholder. Anything a real
parser would be needed for is out of reach and returns None.
"""

from __future__ import annotations

import re
from typing import Any, Iterable, Optional, Sequence

WRITE_QUERY_TYPES = frozenset({"INSERT", "UPDATE", "DELETE"})
ROW_ID_QUERY_TYPES = frozenset({"UPDATE", "DELETE", "SELECT"})

DEFAULT_IGNORE_PATTERNS = (
    "select * from `migrations`",
    "select * from `jobs`",
    "select * from `failed_jobs`",
    "select * from `job_batches`",
)

_QUERY_TYPE_RE = re.compile(
    r"^\s*(SELECT|INSERT|UPDATE|DELETE|CREATE|DROP|ALTER|TRUNCATE|REPLACE)\s+",
    re.IGNORECASE,
)
_TABLE_RE = re.compile(r"\b(?:from|into|update|table)\s+[`\"']?(\w+)[`\"']?", re.IGNORECASE)
_WHERE_ID_RE = re.compile(r"\bwhere\b.*?(?<![\w])[`\"]?id[`\"]?\s*=\s*\?", re.IGNORECASE | re.DOTALL)
_ID_BEFORE_PLACEHOLDER_RE = re.compile(r"(?<![\w])[`\"]?id[`\"]?\s*=\s*$", re.IGNORECASE)

_ACTIONS = {
    "SELECT": "read",
    "INSERT": "create",
    "UPDATE": "update",
    "DELETE": "delete",
}


def extract_query_type(sql: str) -> Optional[str]:
    """Upper-cased leading keyword, or None for anything unrecognised."""
    m = _QUERY_TYPE_RE.match(sql or "")
    return m.group(1).upper() if m else None


def extract_table(sql: str) -> Optional[str]:
    """First table named after from/into/update/table, quotes stripped, lower-cased."""
    m = _TABLE_RE.search(sql or "")
    return m.group(1).lower() if m else None


def extract_row_id(sql: str, query_type: Optional[str], bindings: Sequence[Any]) -> Optional[str]:
    """
    Row id bound to the ``id = ?`` placeholder of a WHERE clause.

    The placeholder's ordinal (number of ``?`` before it) indexes into
    ``bindings``. INSERT never has one: the id is not known yet.
    """
    if query_type not in ROW_ID_QUERY_TYPES:
        return None

    where = _WHERE_ID_RE.search(sql)
    if where is None:
        return None

    for ordinal, m in enumerate(re.finditer(r"\?", sql)):
        if m.start() < where.start():
            continue
        if _ID_BEFORE_PLACEHOLDER_RE.search(sql[where.start() : m.start()]):
            if ordinal < len(bindings) and bindings[ordinal] is not None:
                return str(bindings[ordinal])
            return None

    return None


def should_ignore(sql: str, patterns: Iterable[str]) -> bool:
    """Case-insensitive substring match against any ignore pattern."""
    lowered = (sql or "").lower()
    return any(p and p.lower() in lowered for p in patterns)


def action_for(query_type: Optional[str]) -> str:
    if query_type is None:
        return "unknown"
    return _ACTIONS.get(query_type, query_type.lower())


def guess_model_name(table: Optional[str]) -> Optional[str]:
    """``blog_posts`` -> ``BlogPost``; naive English singular of the last word."""
    if not table:
        return None
    words = [w for w in re.split(r"[_\W]+", table) if w]
    if not words:
        return None
    last = words[-1]
    if last.endswith("ies") and len(last) > 3:
        last = last[:-3] + "y"
    elif last.endswith(("sses", "shes", "ches", "xes")):
        last = last[:-2]
    elif last.endswith("s") and not last.endswith("ss"):
        last = last[:-1]
    words[-1] = last
    return "".join(w[:1].upper() + w[1:] for w in words)
