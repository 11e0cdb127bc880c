"""
Fixtures for sink unit tests.
"""

import httpx
import pytest
from helpers import bulk_response, ndjson_lines


@pytest.fixture()
def no_sleep():
    """Sleep stand-in that records requested delays."""
    delays = []
    return delays.append, delays


@pytest.fixture()
def ok_handler():
    """Answers every request with a clean bulk/doc response."""

    def _handle(request):
        if request.url.path.endswith("/_bulk"):
            count = len(ndjson_lines(request)) // 2
            return httpx.Response(200, json=bulk_response(*([201] * count)))
        return httpx.Response(201, json={"result": "created"})

    return _handle
