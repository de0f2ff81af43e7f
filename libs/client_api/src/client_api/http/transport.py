"""Transport primitive: send one HTTP request, return one decoded body or raise.

:class:`HttpApi` is the protocol the operations depend on. :class:`AiohttpHttpApi`
is the default implementation on top of :class:`aiohttp.ClientSession`; it never
retries on its own and reports error responses as :class:`TransportError`.
"""

import asyncio
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import TracebackType
from typing import Any, Protocol

import aiohttp
from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)


class RequestOptions(BaseModel):
    """Per-request options passed to the transport."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    params: dict[str, str] | None = None
    headers: dict[str, str] | None = None
    is_authenticated: bool = False
    timeout_s: float | None = None

    def with_overrides(self, **overrides: Any) -> "RequestOptions":
        """Return a new options object with ``overrides`` applied.

        Raises:
            TypeError: If an override names an unknown option.
        """
        if not overrides:
            return self
        unexpected = set(overrides) - set(type(self).model_fields)
        if unexpected:
            raise TypeError(f"Unexpected request option(s): {sorted(unexpected)}")
        current = {name: getattr(self, name) for name in type(self).model_fields}
        return type(self).model_validate({**current, **overrides})


@dataclass(frozen=True)
class TransportResponse:
    """Error response captured by a transport."""

    status: int
    status_text: str = ""
    data: Any = None
    headers: Mapping[str, str] = field(default_factory=dict)


class TransportError(Exception):
    """Raw failure raised by a transport before classification.

    Attributes:
        message: Description of the failure.
        status: HTTP status, when a response was received.
        code: Low-level error code (``ECONNREFUSED``...), when known.
        url: Request URL.
        method: HTTP method.
        response: Captured error response, when one was received.
    """

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        code: str | None = None,
        url: str | None = None,
        method: str | None = None,
        response: TransportResponse | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status if status is not None else (response.status if response else None)
        self.code = code
        self.url = url
        self.method = method
        self.response = response


class HttpApi(Protocol):
    """Minimal async HTTP surface consumed by the client operations."""

    async def get(self, url: str, options: RequestOptions | None = None) -> Any: ...

    async def post(
        self, url: str, body: Any = None, options: RequestOptions | None = None
    ) -> Any: ...

    async def put(
        self, url: str, body: Any = None, options: RequestOptions | None = None
    ) -> Any: ...

    async def delete(self, url: str, options: RequestOptions | None = None) -> Any: ...


def _json_default(value: Any) -> Any:
    if hasattr(value, "isoformat"):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class AiohttpHttpApi:
    """:class:`HttpApi` implementation backed by ``aiohttp``.

    Args:
        base_url: Prefix for relative request paths.
        session: Optional externally managed session. When omitted, a session
            is created lazily for the running event loop and closed by
            :meth:`close`.
        timeout_s: Default total timeout per request.
        headers: Default headers sent with every request.
        auth_token: Static bearer token added only to authenticated requests.
    """

    def __init__(
        self,
        base_url: str,
        *,
        session: aiohttp.ClientSession | None = None,
        timeout_s: float = 30.0,
        headers: Mapping[str, str] | None = None,
        auth_token: str | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._session_event_loop: asyncio.AbstractEventLoop | None = None
        self._timeout_s = float(timeout_s)
        self._headers = {"Accept": "application/json", **dict(headers or {})}
        self._auth_token = auth_token

    async def __aenter__(self) -> "AiohttpHttpApi":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the owned session, if any."""
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        if self._owns_session:
            self._session = None
            self._session_event_loop = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if not self._owns_session:
            if self._session is None:
                raise RuntimeError("Injected aiohttp session is missing")
            return self._session
        current_loop = asyncio.get_running_loop()
        if self._session is None or self._session_event_loop is not current_loop:
            if self._session is not None:
                try:
                    await self._session.close()
                except Exception:
                    logger.debug("Ignoring error while closing old session", exc_info=True)
            self._session = aiohttp.ClientSession()
            self._session_event_loop = current_loop
            logger.debug("Created aiohttp session for %s", self.base_url)
        return self._session

    def build_url(self, url: str) -> str:
        """Join ``url`` with the base URL unless it is already absolute."""
        if url.startswith(("http://", "https://")):
            return url
        return f"{self.base_url}/{url.lstrip('/')}"

    def _build_headers(self, options: RequestOptions) -> dict[str, str]:
        headers = {**self._headers, **(options.headers or {})}
        if options.is_authenticated and self._auth_token:
            headers.setdefault("Authorization", f"Bearer {self._auth_token}")
        return headers

    async def request(
        self,
        method: str,
        url: str,
        body: Any = None,
        options: RequestOptions | None = None,
    ) -> Any:
        """Send one request and return the decoded response body.

        Returns:
            Decoded JSON, the raw text for non-JSON bodies, or ``None`` for an
            empty body.

        Raises:
            TransportError: If the server answered with status >= 400.
            aiohttp.ClientError: On connection-level failures.
            asyncio.TimeoutError: If the request exceeded its timeout.
        """
        options = options or RequestOptions()
        method = method.upper()
        full_url = self.build_url(url)
        kwargs: dict[str, Any] = {
            "headers": self._build_headers(options),
            "params": options.params or None,
            "timeout": aiohttp.ClientTimeout(total=options.timeout_s or self._timeout_s),
        }
        if body is not None:
            kwargs["data"] = json.dumps(body, default=_json_default)
            kwargs["headers"]["Content-Type"] = "application/json"

        logger.debug("%s %s params=%s", method, full_url, options.params)
        session = await self._get_session()
        async with session.request(method, full_url, **kwargs) as response:
            text = await response.text()
            content_type = response.headers.get("Content-Type", "")
            if response.status >= 400:
                data = self._decode_lenient(text, content_type)
                raise TransportError(
                    f"HTTP {response.status} for {method} {full_url}",
                    url=full_url,
                    method=method,
                    response=TransportResponse(
                        status=response.status,
                        status_text=response.reason or "",
                        data=data,
                        headers=dict(response.headers),
                    ),
                )
            return self._decode(text, content_type)

    @classmethod
    def _decode_lenient(cls, text: str, content_type: str) -> Any:
        try:
            return cls._decode(text, content_type)
        except ValueError:
            return text

    @staticmethod
    def _decode(text: str, content_type: str) -> Any:
        if not text:
            return None
        if "json" in content_type or text[:1] in ("{", "[") or text in ("true", "false", "null"):
            return json.loads(text)
        return text

    async def get(self, url: str, options: RequestOptions | None = None) -> Any:
        return await self.request("GET", url, options=options)

    async def post(
        self, url: str, body: Any = None, options: RequestOptions | None = None
    ) -> Any:
        return await self.request("POST", url, body, options)

    async def put(
        self, url: str, body: Any = None, options: RequestOptions | None = None
    ) -> Any:
        return await self.request("PUT", url, body, options)

    async def delete(self, url: str, options: RequestOptions | None = None) -> Any:
        return await self.request("DELETE", url, options=options)
