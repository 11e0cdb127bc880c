"""
Custom exceptions for log-relay.

Provides structured error handling for sink delivery with retry
classification. Delivery problems never fail the host request or job;
at worst a log entry is missing or late.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

import httpx


class OnError(str, Enum):
    """What a sink does with an I/O failure it cannot recover from."""

    SWALLOW = "swallow"  # log and drop
    PROPAGATE = "propagate"  # re-raise so the dispatcher can fall back

    @classmethod
    def from_silent(cls, silent: bool) -> "OnError":
        return cls.SWALLOW if silent else cls.PROPAGATE


class LogRelayError(Exception):
    """Base error for log-relay."""

    pass


class TransientIoError(LogRelayError):
    """Connection failures, timeouts and 5xx responses; retried with backoff."""

    pass


class ClientRejection(LogRelayError):
    """4xx responses; terminal, never retried."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SerializationError(LogRelayError):
    """A log entry could not be encoded for the wire."""

    pass


class UnknownChannelError(LogRelayError, KeyError):
    """No sink is registered for a channel."""

    def __str__(self) -> str:
        return Exception.__str__(self)


@dataclass(frozen=True)
class PartialBatchFailure:
    """Summary of a bulk response where some documents were rejected.

    Reported and logged, never raised: accepted documents count as
    delivered and rejected ones are not resubmitted.
    """

    index: str
    failed_count: int
    total_count: int
    first_error_type: Optional[str] = None
    first_error_reason: Optional[str] = None

    @property
    def first_error(self) -> Optional[str]:
        if self.first_error_type is None and self.first_error_reason is None:
            return None
        return f"{self.first_error_type}: {self.first_error_reason}"


def _url_of(response: httpx.Response) -> str:
    try:
        return str(response.request.url)
    except RuntimeError:
        return "<unknown>"


def map_http_error(e: Union[Exception, httpx.Response]) -> LogRelayError:
    if isinstance(e, httpx.Response):
        status = e.status_code
        if 400 <= status < 500:
            return ClientRejection(f"HTTP {status} from {_url_of(e)}", status_code=status)
        return TransientIoError(f"HTTP {status} from {_url_of(e)}")
    if isinstance(e, LogRelayError):
        return e
    if isinstance(e, httpx.HTTPStatusError):
        return map_http_error(e.response)
    if isinstance(e, (httpx.TransportError, TimeoutError, ConnectionError)):
        return TransientIoError(str(e) or type(e).__name__)
    return LogRelayError(str(e))
