"""
Root test configuration for all tests.

Provides a mocked transport and fast retry policies so no test touches the
network or waits on real backoff delays.
"""

from typing import Generator
from unittest.mock import AsyncMock

import pytest

from client_api.config import ClientApiOptions, get_settings
from client_api.http.transport import TransportError, TransportResponse
from client_api.retry import RetryConfig


def _http_error(status: int, data=None, headers=None, status_text: str = "") -> TransportError:
    return TransportError(
        f"HTTP {status}",
        url="http://api.test/resource",
        method="GET",
        response=TransportResponse(
            status=status,
            status_text=status_text,
            data=data,
            headers=headers or {},
        ),
    )


@pytest.fixture
def http_error():
    """Factory for the TransportError a transport raises on an error response."""
    return _http_error


@pytest.fixture
def mock_http_api() -> AsyncMock:
    """
    Create a mock HttpApi with async get/post/put/delete.

    Each verb returns None unless a test sets ``return_value`` or ``side_effect``.
    """
    api = AsyncMock()
    api.get = AsyncMock(return_value=None)
    api.post = AsyncMock(return_value=None)
    api.put = AsyncMock(return_value=None)
    api.delete = AsyncMock(return_value=None)
    return api


@pytest.fixture
def fast_retry_config() -> RetryConfig:
    """Retry policy with 1ms deterministic delays and the default retry count."""
    return RetryConfig(
        max_retries=3, initial_delay_ms=1, max_delay_ms=10, enable_jitter=False
    )


@pytest.fixture
def client_options(fast_retry_config: RetryConfig) -> ClientApiOptions:
    """Client options using the fast retry policy."""
    return ClientApiOptions(retry_config=fast_retry_config)


@pytest.fixture(autouse=True)
def clear_settings_cache() -> Generator[None, None, None]:
    """Reset the cached settings around each test so env patches take effect."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
