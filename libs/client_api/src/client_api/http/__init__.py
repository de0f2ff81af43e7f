"""HTTP transport and retrying wrapper."""

from .transport import (
    AiohttpHttpApi,
    HttpApi,
    RequestOptions,
    TransportError,
    TransportResponse,
)
from .wrapper import HttpWrapper

__all__ = [
    "AiohttpHttpApi",
    "HttpApi",
    "HttpWrapper",
    "RequestOptions",
    "TransportError",
    "TransportResponse",
]
