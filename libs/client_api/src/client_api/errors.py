"""Classified error taxonomy for client API operations.

Every failure that leaves this package is a :class:`ClientApiError` tagged with
an :class:`ErrorKind`. Raw transport failures (``aiohttp`` exceptions,
:class:`~client_api.http.transport.TransportError`, OS-level socket errors) are
normalized through :func:`classify`, which decides the kind and whether the
failure is worth retrying.
"""

import asyncio
import errno
import json
import socket
from collections.abc import Mapping
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from enum import Enum
from types import MappingProxyType
from typing import Any

import aiohttp


class ErrorKind(str, Enum):
    """Closed set of error kinds produced by the classifier."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    CONFLICT = "conflict"
    RATE_LIMIT = "rate_limit"
    SERVER = "server"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    HTTP = "http"
    CONFIGURATION = "configuration"
    PARSE = "parse"

    @property
    def code(self) -> str:
        """Upper-case error code, e.g. ``RATE_LIMIT_ERROR``."""
        return f"{self.name}_ERROR"


_RETRYABLE_KINDS = frozenset(
    {ErrorKind.NETWORK, ErrorKind.TIMEOUT, ErrorKind.RATE_LIMIT, ErrorKind.SERVER}
)

_CONNECTION_CODES = frozenset(
    {"ECONNREFUSED", "ENOTFOUND", "ENETUNREACH", "EHOSTUNREACH", "ECONNRESET", "EAI_AGAIN"}
)
_TIMEOUT_CODES = frozenset({"ECONNABORTED", "ETIMEDOUT"})


class ClientApiError(Exception):
    """Single classified error raised by every client API operation.

    Attributes:
        kind: Classified :class:`ErrorKind`.
        message: Human-readable description.
        is_retryable: Whether the retry executor may try the call again.
        timestamp: UTC creation time.
        context: Read-only diagnostic context (status, body, url, method,
            caller-supplied keys, and after a failed retry loop the attempt
            count and elapsed time).
        status_code: HTTP status for HTTP-derived kinds.
        status_text: HTTP reason phrase, when known.
        retry_after: Server retry hint in seconds (rate limits only).
        validation_errors: Field errors returned with a 400 response.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        is_retryable: bool | None = None,
        context: Mapping[str, Any] | None = None,
        status_code: int | None = None,
        status_text: str | None = None,
        retry_after: float | None = None,
        validation_errors: list[dict[str, Any]] | None = None,
        timestamp: datetime | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.is_retryable = (
            kind in _RETRYABLE_KINDS if is_retryable is None else is_retryable
        )
        self.timestamp = timestamp or datetime.now(UTC)
        self.context: Mapping[str, Any] = MappingProxyType(dict(context or {}))
        self.status_code = status_code
        self.status_text = status_text
        self.retry_after = retry_after
        self.validation_errors = list(validation_errors or [])

    @property
    def code(self) -> str:
        """Upper-case error code derived from :attr:`kind`."""
        return self.kind.code

    def with_context(self, extra: Mapping[str, Any] | None) -> "ClientApiError":
        """Return a copy carrying ``extra`` context; existing keys are never overwritten.

        Args:
            extra: Additional context entries.

        Returns:
            ``self`` when nothing new is added, otherwise a new error with the
            same kind, payload, timestamp and cause.
        """
        new_keys = {k: v for k, v in (extra or {}).items() if k not in self.context}
        if not new_keys:
            return self
        copy = ClientApiError(
            self.kind,
            self.message,
            is_retryable=self.is_retryable,
            context={**new_keys, **self.context},
            status_code=self.status_code,
            status_text=self.status_text,
            retry_after=self.retry_after,
            validation_errors=self.validation_errors,
            timestamp=self.timestamp,
        )
        copy.__cause__ = self.__cause__
        copy.__suppress_context__ = True
        return copy

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error for structured logging or transport."""
        return {
            "name": type(self).__name__,
            "kind": self.kind.value,
            "code": self.code,
            "message": self.message,
            "is_retryable": self.is_retryable,
            "timestamp": self.timestamp.isoformat(),
            "status_code": self.status_code,
            "retry_after": self.retry_after,
            "validation_errors": self.validation_errors,
            "context": {k: _safe_value(v) for k, v in self.context.items()},
        }

    def __repr__(self) -> str:
        return (
            f"ClientApiError(kind={self.kind.value!r}, message={self.message!r}, "
            f"is_retryable={self.is_retryable})"
        )


def _safe_value(value: Any) -> Any:
    if value is None or isinstance(value, str | int | float | bool):
        return value
    if isinstance(value, Mapping):
        return {str(k): _safe_value(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [_safe_value(v) for v in value]
    return repr(value)


def _chain(error: ClientApiError, cause: BaseException | None) -> ClientApiError:
    if cause is not None and cause is not error:
        error.__cause__ = cause
        error.__suppress_context__ = True
    return error


def configuration_error(message: str, **context: Any) -> ClientApiError:
    """Build a non-retryable configuration error (programmer or setup mistake)."""
    return ClientApiError(
        ErrorKind.CONFIGURATION, f"Configuration error: {message}", context=context
    )


def parse_error(message: str, **context: Any) -> ClientApiError:
    """Build a non-retryable error for unparseable or malformed responses."""
    return ClientApiError(ErrorKind.PARSE, f"Parse error: {message}", context=context)


def _body_field(body: Any, name: str) -> Any:
    if isinstance(body, Mapping):
        return body.get(name)
    return None


def _header(headers: Mapping[str, Any] | None, name: str) -> Any:
    if not headers:
        return None
    if name in headers:
        return headers[name]
    lowered = name.lower()
    for key, value in headers.items():
        if str(key).lower() == lowered:
            return value
    return None


def parse_retry_after(value: Any) -> float | None:
    """Convert a ``Retry-After`` value (seconds or HTTP-date) to seconds.

    Returns:
        Non-negative seconds, or ``None`` if the value cannot be interpreted.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return max(float(value), 0.0)
    text = str(value).strip()
    if not text:
        return None
    try:
        return max(float(text), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(text)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max((when - datetime.now(UTC)).total_seconds(), 0.0)


def create_http_error(
    status_code: int,
    status_text: str = "",
    response_body: Any = None,
    context: Mapping[str, Any] | None = None,
    headers: Mapping[str, Any] | None = None,
) -> ClientApiError:
    """Create the classified error for an HTTP error response.

    Args:
        status_code: HTTP status code of the response.
        status_text: Reason phrase.
        response_body: Decoded response body, if any.
        context: Caller context merged into the error context.
        headers: Response headers (used for ``Retry-After``).

    Returns:
        The :class:`ClientApiError` matching the status code.
    """
    context = dict(context or {})
    headers = headers if headers is not None else context.get("headers")
    error_context = {
        **context,
        "status_code": status_code,
        "status_text": status_text,
        "response_body": response_body,
    }
    body_message = _body_field(response_body, "message")
    common: dict[str, Any] = {
        "context": error_context,
        "status_code": status_code,
        "status_text": status_text,
    }

    match status_code:
        case 400:
            return ClientApiError(
                ErrorKind.VALIDATION,
                f"Validation error: {body_message or status_text or 'Request validation failed'}",
                validation_errors=_body_field(response_body, "validationErrors") or [],
                **common,
            )
        case 401:
            return ClientApiError(
                ErrorKind.AUTHENTICATION,
                body_message or "Authentication failed - invalid or expired credentials",
                **common,
            )
        case 403:
            return ClientApiError(
                ErrorKind.AUTHORIZATION,
                body_message or "Access forbidden - insufficient permissions",
                **common,
            )
        case 404:
            resource = _body_field(response_body, "resource") or "Resource"
            identifier = _body_field(response_body, "identifier")
            message = (
                f"{resource} with identifier '{identifier}' not found"
                if identifier
                else f"{resource} not found"
            )
            return ClientApiError(ErrorKind.NOT_FOUND, message, **common)
        case 409:
            return ClientApiError(
                ErrorKind.CONFLICT, f"Conflict: {body_message or status_text}", **common
            )
        case 413:
            max_size = _body_field(response_body, "maxSize")
            message = (
                f"Request payload too large - maximum size is {max_size}"
                if max_size
                else "Request payload too large"
            )
            return ClientApiError(ErrorKind.PAYLOAD_TOO_LARGE, message, **common)
        case 429:
            retry_after = parse_retry_after(_body_field(response_body, "retryAfter"))
            if retry_after is None:
                retry_after = parse_retry_after(_header(headers, "Retry-After"))
            message = (
                f"Rate limit exceeded - retry after {retry_after:g} seconds"
                if retry_after
                else "Rate limit exceeded"
            )
            return ClientApiError(
                ErrorKind.RATE_LIMIT, message, retry_after=retry_after, **common
            )
        case _ if status_code >= 500:
            return ClientApiError(
                ErrorKind.SERVER,
                body_message or status_text or f"Server error ({status_code})",
                **common,
            )
        case _:
            return ClientApiError(
                ErrorKind.HTTP,
                body_message or f"HTTP error {status_code}: {status_text}",
                is_retryable=not 400 <= status_code < 500,
                **common,
            )


def _error_code(error: BaseException) -> str | None:
    code = getattr(error, "code", None)
    if isinstance(code, str) and code:
        return code.upper()
    if isinstance(error, socket.gaierror):
        return "ENOTFOUND"
    number = getattr(error, "errno", None)
    if isinstance(number, int):
        return errno.errorcode.get(number)
    return None


def create_network_error(
    error: BaseException, context: Mapping[str, Any] | None = None
) -> ClientApiError:
    """Create the classified error for a failure that produced no HTTP response.

    Timeouts map to :attr:`ErrorKind.TIMEOUT`; everything else, including
    unrecognized failures, maps to :attr:`ErrorKind.NETWORK` so it stays
    retryable.
    """
    code = _error_code(error)
    raw_message = str(error) or type(error).__name__
    error_context = {
        "original_error": repr(error),
        "error_code": code,
        **dict(context or {}),
    }
    lowered = raw_message.lower()

    if (
        isinstance(error, asyncio.TimeoutError | TimeoutError | aiohttp.ServerTimeoutError)
        or code in _TIMEOUT_CODES
        or "timeout" in lowered
        or "timed out" in lowered
    ):
        timeout = getattr(error, "timeout", None) or error_context.get("timeout_ms")
        message = (
            f"Request timed out after {timeout}ms"
            if isinstance(timeout, int | float)
            else f"Request timed out: {raw_message}"
        )
        return _chain(ClientApiError(ErrorKind.TIMEOUT, message, context=error_context), error)

    if (
        isinstance(error, aiohttp.ClientConnectionError | ConnectionError)
        or code in _CONNECTION_CODES
        or "network" in lowered
    ):
        return _chain(
            ClientApiError(
                ErrorKind.NETWORK, f"Network error: {raw_message}", context=error_context
            ),
            error,
        )

    return _chain(
        ClientApiError(
            ErrorKind.NETWORK,
            f"Network error: {raw_message or 'Unknown network error'}",
            context=error_context,
        ),
        error,
    )


def classify(
    error: BaseException, context: Mapping[str, Any] | None = None
) -> ClientApiError:
    """Normalize any raised exception into a :class:`ClientApiError`.

    Args:
        error: Raw exception raised by a transport or operation.
        context: Caller context (operation, path, url...). Merged without
            overwriting anything an already classified error carries.

    Returns:
        The classified error. The raw exception is kept as ``__cause__``.
    """
    # Local import keeps errors importable by the transport module.
    from client_api.http.transport import TransportError

    if isinstance(error, ClientApiError):
        return error.with_context(context)

    context = dict(context or {})

    if isinstance(error, TransportError) and error.response is not None:
        response = error.response
        return _chain(
            create_http_error(
                response.status,
                response.status_text,
                response.data,
                {
                    "url": error.url,
                    "method": error.method,
                    "headers": dict(response.headers),
                    **context,
                },
                headers=response.headers,
            ),
            error,
        )

    if isinstance(error, json.JSONDecodeError | aiohttp.ContentTypeError):
        return _chain(
            parse_error(str(error), original_error=repr(error), **context), error
        )

    if isinstance(error, aiohttp.ClientResponseError):
        request_info = error.request_info
        headers = dict(error.headers or {})
        return _chain(
            create_http_error(
                error.status,
                error.message,
                None,
                {
                    "url": str(request_info.real_url) if request_info else None,
                    "method": request_info.method if request_info else None,
                    "headers": headers,
                    **context,
                },
                headers=headers,
            ),
            error,
        )

    status = getattr(error, "status", None)
    if isinstance(status, int) and not isinstance(status, bool) and status >= 400:
        response = getattr(error, "response", None)
        return _chain(
            create_http_error(
                status,
                getattr(response, "status_text", "") or "",
                getattr(response, "data", None),
                context,
                headers=getattr(response, "headers", None),
            ),
            error,
        )

    return create_network_error(error, context)


def is_client_api_error(error: Any) -> bool:
    """Return whether ``error`` is a classified client API error."""
    return isinstance(error, ClientApiError)


def is_retryable_error(error: Any) -> bool:
    """Return whether ``error`` is a classified error flagged as retryable."""
    return isinstance(error, ClientApiError) and error.is_retryable
