"""
JSON encoding for outbound documents.

Values JSON cannot represent natively (datetimes, decimals, sets, models)
are converted; anything else raises SerializationError, and callers that
must not lose the entry substitute a minimal marker record instead.
"""

from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from pathlib import PurePath
from typing import Any, Dict
from uuid import UUID

from loguru import logger
from pydantic import BaseModel

from ..errors import SerializationError
from ..models import LogEntry


def _default(o: Any) -> Any:
    if isinstance(o, (datetime, date)):
        return o.isoformat()
    if isinstance(o, Enum):
        return o.value
    if isinstance(o, (Decimal, UUID, PurePath)):
        return str(o)
    if isinstance(o, (set, frozenset, tuple)):
        return list(o)
    if isinstance(o, bytes):
        return o.decode("utf-8", errors="replace")
    if isinstance(o, BaseModel):
        return o.model_dump(mode="json")
    raise TypeError(f"Object of type {type(o).__name__} is not JSON serializable")


def dumps(doc: Any) -> str:
    """JSON text that is guaranteed to encode as UTF-8."""
    try:
        text = json.dumps(doc, default=_default, ensure_ascii=False)
        text.encode("utf-8")
        return text
    except (TypeError, ValueError) as exc:
        raise SerializationError(str(exc)) from exc


def marker_record(entry: LogEntry, index: str, error: Exception) -> Dict[str, Any]:
    return {
        "@timestamp": entry.timestamp.isoformat(),
        "log_index": index,
        "message": entry.message,
        "level": entry.level.value,
        "json_error": str(error),
    }


def encode_document(doc: Dict[str, Any], entry: LogEntry, index: str) -> str:
    """Encode ``doc``; on failure encode the marker record for ``entry`` instead."""
    try:
        return dumps(doc)
    except SerializationError as exc:
        logger.debug(f"Serialization failed for {index} entry, writing marker record: {exc}")
        # ASCII output, so a message with lone surrogates still encodes
        return json.dumps(marker_record(entry, index, exc), default=str)
