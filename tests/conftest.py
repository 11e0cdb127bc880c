"""
Pytest configuration and fixtures for log-relay.

Provides recording sinks, injectable clocks, httpx mock clients and
loguru capture.
"""

from datetime import date

import httpx
import pytest
from helpers import FakeClock, RecordingBatchSink, RecordingSink
from loguru import logger


@pytest.fixture
def recording_sink():
    return RecordingSink()


@pytest.fixture
def batch_sink():
    return RecordingBatchSink()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def today():
    """Fixed 'today' for file sink and retention tests."""
    return date(2024, 5, 17)


@pytest.fixture
def log_messages():
    """Capture loguru output for the duration of a test."""
    messages = []
    handler_id = logger.add(messages.append, level="DEBUG", format="{message}")
    yield messages
    logger.remove(handler_id)


@pytest.fixture
def mock_client():
    """Build an httpx.Client whose requests are answered by ``handler``.

    Every request is appended to ``client.requests`` for inspection.
    """
    clients = []

    def _build(handler):
        requests = []

        def _handle(request):
            requests.append(request)
            return handler(request)

        client = httpx.Client(transport=httpx.MockTransport(_handle))
        client.requests = requests
        clients.append(client)
        return client

    yield _build
    for client in clients:
        client.close()
