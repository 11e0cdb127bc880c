"""
Message-broker sink for a Kafka-style REST proxy.

A batch becomes exactly one POST to ``{url}/topics/{topic}`` carrying every
record; the proxy acknowledges the request as a whole.
"""

from __future__ import annotations

import time
from typing import Optional, Sequence

import httpx

from ..errors import OnError, map_http_error
from ..models import LogEntry
from .base import BatchSink
from .builders import BrokerValueBuilder, IndexKeyBrokerValueBuilder
from .encoding import encode_document

BROKER_HEADERS = {
    # REST proxy JSON v2 embedded format
    "Content-Type": "application/vnd.kafka.json.v2+json",
    "Accept": "application/vnd.kafka.v2+json",
}


class BrokerSink(BatchSink):
    name = "broker"

    def __init__(
        self,
        rest_proxy_url: str,
        topic: str,
        *,
        value_builder: Optional[BrokerValueBuilder] = None,
        timeout: float = 2.0,
        on_error: OnError = OnError.SWALLOW,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._url = f"{rest_proxy_url.rstrip('/')}/topics/{topic}"
        self._value_builder = value_builder or IndexKeyBrokerValueBuilder()
        self.on_error = on_error
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)

    @property
    def url(self) -> str:
        return self._url

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def write(self, entry: LogEntry) -> None:
        self._post([entry], mode="single")

    def write_batch(self, entries: Sequence[LogEntry]) -> None:
        if entries:
            self._post(entries, mode="batch")

    def _payload(self, entries: Sequence[LogEntry]) -> str:
        records = []
        for entry in entries:
            value = encode_document(self._value_builder(entry), entry, entry.log_index or "general_log")
            records.append('{"value":' + value + "}")
        return '{"records":[' + ",".join(records) + "]}"

    def _post(self, entries: Sequence[LogEntry], *, mode: str) -> None:
        body = self._payload(entries).encode("utf-8")

        started = time.perf_counter()
        try:
            response = self._client.post(self._url, content=body, headers=BROKER_HEADERS)
        except httpx.HTTPError as exc:
            self._fail(map_http_error(exc), mode, started)
            return
        if response.status_code >= 400:
            self._fail(map_http_error(response), mode, started)
            return
        self._observe(mode, "success", started)
