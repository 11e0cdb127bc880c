"""
Builders that turn a LogEntry into the search document or broker value.
"""

from __future__ import annotations

import socket
from typing import Any, Dict, Optional, Protocol

from ..models import LogEntry

DEFAULT_INDEX = "general_log"


class SearchDocumentBuilder(Protocol):
    def index(self, entry: LogEntry) -> Optional[str]:
        """Target index for ``entry``; None/blank means the sink default."""
        ...

    def document(self, entry: LogEntry) -> Dict[str, Any]:
        """The ``_source`` to index."""
        ...


class BrokerValueBuilder(Protocol):
    def __call__(self, entry: LogEntry) -> Dict[str, Any]: ...


class DefaultSearchDocumentBuilder:
    """Flat documents: ``@timestamp``, ``level``, ``request_id`` then every field.

    ``log_index`` only routes and is not stored. Environment, hostname and
    service name are filled in when configured and not already present.
    """

    def __init__(
        self,
        *,
        environment: Optional[str] = None,
        service_name: Optional[str] = None,
        hostname: Optional[str] = None,
    ) -> None:
        self._common = {
            "environment": environment,
            "hostname": hostname if hostname is not None else socket.gethostname(),
            "service_name": service_name,
        }

    def index(self, entry: LogEntry) -> Optional[str]:
        return entry.log_index

    def document(self, entry: LogEntry) -> Dict[str, Any]:
        doc: Dict[str, Any] = {
            "@timestamp": entry.timestamp.isoformat(),
            "level": entry.level.value,
            "message": entry.message,
            "request_id": entry.fields.get("request_id"),
        }
        for key, value in entry.fields.items():
            if key != "log_index" and key not in doc:
                doc[key] = value
        for key, value in self._common.items():
            if value and doc.get(key) is None:
                doc[key] = value
        return doc


class DefaultBrokerValueBuilder:
    """Envelope value: timestamp, level, channel, message and raw fields."""

    def __call__(self, entry: LogEntry) -> Dict[str, Any]:
        return {
            "timestamp": entry.timestamp.isoformat(),
            "level": entry.level.value,
            "channel": entry.channel,
            "message": entry.message,
            "context": dict(entry.fields),
        }


class IndexKeyBrokerValueBuilder:
    """``{"<log_index>": {...fields, "@timestamp": ...}}``; consumers route on the key."""

    def __init__(self, default_index: str = DEFAULT_INDEX) -> None:
        self._default_index = default_index

    def __call__(self, entry: LogEntry) -> Dict[str, Any]:
        doc = {k: v for k, v in entry.fields.items() if k != "log_index"}
        doc["@timestamp"] = entry.timestamp.isoformat()
        return {entry.log_index or self._default_index: doc}
