"""HTTP verbs wrapped with the retry executor."""

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

from client_api.errors import ErrorKind, classify, configuration_error
from client_api.http.transport import HttpApi, RequestOptions
from client_api.retry import (
    DEFAULT_RETRY_CONFIG,
    ErrorHandler,
    RetryConfig,
    execute_with_retry,
)

logger = logging.getLogger(__name__)

RAISE = object()

_METHODS = frozenset({"GET", "POST", "PUT", "DELETE"})


class HttpWrapper:
    """Run every transport call through :func:`execute_with_retry`.

    The retry config is replaced, never mutated: :meth:`update_retry_config`
    swaps in a new frozen object, and each call reads the current object once
    when it starts, so in-flight retry loops keep the policy they began with.

    Args:
        api: Transport used for single attempts.
        retry_config: Base retry policy.
        error_handler: Called once per failed call with the final error.
    """

    def __init__(
        self,
        api: HttpApi,
        retry_config: RetryConfig | None = None,
        error_handler: ErrorHandler | None = None,
    ) -> None:
        self.api = api
        self._retry_config = retry_config or DEFAULT_RETRY_CONFIG
        self._error_handler = error_handler

    @property
    def retry_config(self) -> RetryConfig:
        """Current retry policy snapshot."""
        return self._retry_config

    def update_retry_config(self, **changes: Any) -> RetryConfig:
        """Replace the retry policy with a copy carrying ``changes``.

        Returns:
            The new policy.
        """
        self._retry_config = self._retry_config.merge(changes)
        logger.debug("Retry config updated: %s", sorted(changes))
        return self._retry_config

    async def execute(
        self,
        method: str,
        url: str,
        body: Any = None,
        options: RequestOptions | None = None,
        *,
        operation_name: str | None = None,
        context: Mapping[str, Any] | None = None,
        not_found: Any = RAISE,
        cancel_event: asyncio.Event | None = None,
    ) -> Any:
        """Send ``method`` to ``url`` with retries and return the decoded body.

        Args:
            method: HTTP verb.
            url: Resource path or absolute URL.
            body: JSON-serializable request body.
            options: Transport options.
            operation_name: Name used in logs and error context; defaults to
                the verb.
            context: Extra diagnostic context.
            not_found: Value returned, without retrying, when an attempt fails
                with a not-found error. The default :data:`RAISE` treats
                not-found like any other error.
            cancel_event: Cancellation signal honored between attempts.

        Raises:
            ClientApiError: The final classified error.
        """
        method = method.upper()
        if method not in _METHODS:
            raise configuration_error(f"Unsupported HTTP method: {method}", url=url)
        config = self._retry_config
        call_context = {"url": url, "method": method, **dict(context or {})}
        if body is not None:
            call_context.setdefault("has_data", True)

        async def _send() -> Any:
            match method:
                case "GET":
                    return await self.api.get(url, options)
                case "POST":
                    return await self.api.post(url, body, options)
                case "PUT":
                    return await self.api.put(url, body, options)
                case _:
                    return await self.api.delete(url, options)

        async def _attempt() -> Any:
            if not_found is RAISE:
                return await _send()
            try:
                return await _send()
            except Exception as error:
                if classify(error).kind is not ErrorKind.NOT_FOUND:
                    raise
                logger.debug("%s %s not found; returning %r", method, url, not_found)
                return not_found

        return await execute_with_retry(
            _attempt,
            operation_name or method,
            call_context,
            config,
            error_handler=self._error_handler,
            cancel_event=cancel_event,
        )

    async def get(
        self,
        url: str,
        options: RequestOptions | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> Any:
        return await self.execute("GET", url, options=options, context=context)

    async def post(
        self,
        url: str,
        body: Any = None,
        options: RequestOptions | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> Any:
        return await self.execute("POST", url, body, options, context=context)

    async def put(
        self,
        url: str,
        body: Any = None,
        options: RequestOptions | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> Any:
        return await self.execute("PUT", url, body, options, context=context)

    async def delete(
        self,
        url: str,
        options: RequestOptions | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> Any:
        return await self.execute("DELETE", url, options=options, context=context)
