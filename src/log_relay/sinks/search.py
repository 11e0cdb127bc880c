"""
Search-engine sink using the ``_bulk`` NDJSON API.

One bulk request per target index. Connection failures and 5xx responses
are retried with exponential backoff; 4xx responses are terminal. A 2xx
bulk response can still report per-document failures, which are counted
and logged but never resubmitted.
"""

from __future__ import annotations

import json
import time
from typing import Callable, Dict, List, Optional, Sequence
from urllib.parse import quote

import httpx
from loguru import logger
from prometheus_client import Counter

from ..errors import LogRelayError, OnError, PartialBatchFailure, map_http_error
from ..models import LogEntry
from ..policy import RetryPolicy
from .base import BatchSink
from .builders import DEFAULT_INDEX, DefaultSearchDocumentBuilder, SearchDocumentBuilder
from .encoding import encode_document

BULK_ITEMS_FAILED_TOTAL = Counter(
    "log_relay_bulk_items_failed_total",
    "Documents rejected inside otherwise successful bulk responses",
    ["index"],
)

BULK_ACTIONS = ("index", "create", "update", "delete")

JSON_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}
NDJSON_HEADERS = {"Content-Type": "application/x-ndjson", "Accept": "application/json"}


def verify_bulk_response(response: httpx.Response, index: str, total: int) -> Optional[PartialBatchFailure]:
    """Summarize rejected documents in a bulk response, or None if all went through.

    Non-2xx statuses, empty or malformed bodies, and items without a
    recognizable action are ignored.
    """
    if not 200 <= response.status_code < 300:
        return None
    try:
        data = response.json()
    except ValueError:
        return None
    if not isinstance(data, dict) or data.get("errors") is not True:
        return None

    items = data.get("items")
    if not isinstance(items, list):
        return None

    failed = 0
    first_type: Optional[str] = None
    first_reason: Optional[str] = None
    for item in items:
        if not isinstance(item, dict):
            continue
        action = next((item[k] for k in BULK_ACTIONS if k in item), None)
        if not isinstance(action, dict):
            continue

        status = action.get("status")
        if isinstance(status, int) and not isinstance(status, bool):
            is_failure = not 200 <= status < 300
        else:
            is_failure = "error" in action
        if not is_failure:
            continue

        failed += 1
        if failed == 1:
            error = action.get("error")
            if isinstance(error, dict):
                first_type = error.get("type")
                first_reason = error.get("reason")
            elif error is not None:
                first_reason = str(error)

    if failed == 0:
        return None
    return PartialBatchFailure(
        index=index,
        failed_count=failed,
        total_count=total,
        first_error_type=first_type,
        first_error_reason=first_reason,
    )


class SearchBulkSink(BatchSink):
    """
    Deliver entries to a search engine (OpenSearch/Elasticsearch compatible).

    Example:
        with SearchBulkSink("http://localhost:9200", max_retries=3) as sink:
            sink.write_batch(entries)
    """

    name = "search"

    def __init__(
        self,
        base_url: str,
        default_index: str = DEFAULT_INDEX,
        *,
        document_builder: Optional[SearchDocumentBuilder] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = 2.0,
        verify_tls: bool = True,
        max_retries: int = 3,
        retry_policy: Optional[RetryPolicy] = None,
        on_error: OnError = OnError.SWALLOW,
        client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._default_index = default_index or DEFAULT_INDEX
        self._builder = document_builder or DefaultSearchDocumentBuilder()
        self._auth = (username, password or "") if username else None
        self._retry = retry_policy or RetryPolicy(max_attempts=max_retries)
        self.on_error = on_error
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout, verify=verify_tls)
        self._sleep = sleep

    @property
    def bulk_url(self) -> str:
        return f"{self._base_url}/_bulk"

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    # --------------------------- public API

    def write(self, entry: LogEntry) -> None:
        index = self._index_for(entry)
        url = f"{self._base_url}/{quote(index, safe='')}/_doc"
        body = encode_document(self._builder.document(entry), entry, index)

        started = time.perf_counter()
        try:
            self._post_with_retry(url, content=body.encode("utf-8"), headers=JSON_HEADERS)
        except LogRelayError as exc:
            self._fail(exc, "single", started)
            return
        self._observe("single", "success", started)

    def write_batch(self, entries: Sequence[LogEntry]) -> List[PartialBatchFailure]:
        """Bulk-index ``entries``, one request per target index.

        Returns the partial-failure summaries, one per index group whose
        response reported rejected documents.
        """
        groups: Dict[str, List[LogEntry]] = {}
        for entry in entries:
            groups.setdefault(self._index_for(entry), []).append(entry)

        failures = []
        for index, group in groups.items():
            failure = self._write_bulk_for_index(index, group)
            if failure is not None:
                failures.append(failure)
        return failures

    # --------------------------- internals

    def _index_for(self, entry: LogEntry) -> str:
        index = self._builder.index(entry)
        if not isinstance(index, str) or not index.strip():
            return self._default_index
        return index

    def _write_bulk_for_index(self, index: str, entries: Sequence[LogEntry]) -> Optional[PartialBatchFailure]:
        action_line = json.dumps({"index": {"_index": index}})
        lines = []
        for entry in entries:
            lines.append(action_line)
            lines.append(encode_document(self._builder.document(entry), entry, index))
        body = "\n".join(lines) + "\n"

        started = time.perf_counter()
        try:
            response = self._post_with_retry(self.bulk_url, content=body.encode("utf-8"), headers=NDJSON_HEADERS)
        except LogRelayError as exc:
            self._fail(exc, "batch", started)
            return None
        self._observe("batch", "success", started)

        failure = verify_bulk_response(response, index, len(entries))
        if failure is not None:
            BULK_ITEMS_FAILED_TOTAL.labels(index=index).inc(failure.failed_count)
            logger.warning(
                f"Bulk insert into {index!r}: {failure.failed_count} of {failure.total_count} "
                f"documents failed (first error: {failure.first_error})"
            )
        return failure

    def _post_with_retry(self, url: str, **kwargs) -> httpx.Response:
        """POST with retry on transient failures; raises the mapped error when giving up."""
        if self._auth is not None:
            kwargs["auth"] = self._auth

        attempt = 0
        while True:
            attempt += 1
            try:
                response = self._client.post(url, **kwargs)
            except httpx.HTTPError as exc:
                error = map_http_error(exc)
            else:
                if response.status_code < 400:
                    return response
                error = map_http_error(response)

            if not self._retry.should_retry(error, attempt):
                raise error

            delay_ms = self._retry.next_backoff_ms(attempt)
            logger.debug(f"Retrying {url} in {delay_ms}ms (attempt {attempt + 1}/{self._retry.max_attempts}): {error}")
            self._sleep(delay_ms / 1000.0)
