"""
Pydantic data models for log-relay.

Input events observed from the host runtime and the immutable log entries
that flow through the buffer, dispatcher and sinks.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .utils import utc_now


class LogLevel(str, Enum):
    """Syslog-style severities (RFC 5424 order)."""

    DEBUG = "debug"
    INFO = "info"
    NOTICE = "notice"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"
    ALERT = "alert"
    EMERGENCY = "emergency"

    @classmethod
    def parse(cls, value: "LogLevel | str") -> "LogLevel":
        if isinstance(value, LogLevel):
            return value
        name = str(value).strip().lower()
        if name == "warn":
            name = "warning"
        return cls(name)

    @property
    def loguru_level(self) -> str:
        """Closest loguru level name (loguru has no notice/alert/emergency)."""
        return _LOGURU_LEVELS[self]


_LOGURU_LEVELS = {
    LogLevel.DEBUG: "DEBUG",
    LogLevel.INFO: "INFO",
    LogLevel.NOTICE: "INFO",
    LogLevel.WARNING: "WARNING",
    LogLevel.ERROR: "ERROR",
    LogLevel.CRITICAL: "CRITICAL",
    LogLevel.ALERT: "CRITICAL",
    LogLevel.EMERGENCY: "CRITICAL",
}


class LogEntry(BaseModel):
    """A structured log record bound to one destination channel."""

    model_config = ConfigDict(frozen=True)

    channel: str
    level: LogLevel = LogLevel.INFO
    message: str
    fields: Mapping[str, Any] = Field(default_factory=dict, validate_default=True)
    timestamp: datetime = Field(default_factory=utc_now)

    @field_validator("level", mode="before")
    @classmethod
    def _parse_level(cls, v):
        return LogLevel.parse(v)

    @field_validator("fields", mode="after")
    @classmethod
    def _freeze_fields(cls, v):
        return MappingProxyType(dict(v))

    @property
    def log_index(self) -> Optional[str]:
        index = self.fields.get("log_index")
        if isinstance(index, str) and index.strip():
            return index
        return None


class QueryEvent(BaseModel):
    """A database statement that finished executing."""

    sql: str
    bindings: List[Any] = Field(default_factory=list)
    elapsed_ms: float = 0.0
    connection_name: str = "default"


class ModelEventKind(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class ModelEvent(BaseModel):
    """ORM lifecycle notification for a single row."""

    kind: ModelEventKind
    model_type: str
    table: str
    connection_name: str = "default"
    primary_key: Optional[str] = None
    previous_attributes: Optional[Dict[str, Any]] = None
    after_attributes: Optional[Dict[str, Any]] = None

    @field_validator("primary_key", mode="before")
    @classmethod
    def _stringify_key(cls, v):
        if v is None or v == "":
            return None
        return str(v)
