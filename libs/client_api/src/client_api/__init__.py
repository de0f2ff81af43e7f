"""Typed-key REST client with path resolution and retrying operations."""

from .config import ClientApiOptions, ClientApiSettings, get_settings
from .errors import (
    ClientApiError,
    ErrorKind,
    classify,
    create_http_error,
    create_network_error,
    is_client_api_error,
    is_retryable_error,
)
from .http import AiohttpHttpApi, HttpApi, HttpWrapper, RequestOptions
from .keys import ComKey, LocKey, PriKey, generate_key_array, key_from_wire
from .operations import ClientApi, create_client_api
from .paths import PathResolver, resolve_path
from .retry import RetryConfig, calculate_delay, execute_with_retry

__all__ = [
    "AiohttpHttpApi",
    "ClientApi",
    "ClientApiError",
    "ClientApiOptions",
    "ClientApiSettings",
    "ComKey",
    "ErrorKind",
    "HttpApi",
    "HttpWrapper",
    "LocKey",
    "PriKey",
    "PathResolver",
    "RequestOptions",
    "RetryConfig",
    "calculate_delay",
    "classify",
    "create_client_api",
    "create_http_error",
    "create_network_error",
    "execute_with_retry",
    "generate_key_array",
    "get_settings",
    "is_client_api_error",
    "is_retryable_error",
    "key_from_wire",
    "resolve_path",
]
