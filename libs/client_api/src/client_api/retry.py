"""Retry executor with exponential backoff, jitter and classified errors.

Each call to :func:`execute_with_retry` runs an independent, strictly
sequential retry loop over a frozen :class:`RetryConfig` snapshot. Failures are
classified once per attempt; only the final classified error is raised.
"""

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator

from client_api.errors import ClientApiError, ErrorKind, classify

T = TypeVar("T")

logger = logging.getLogger(__name__)

ShouldRetry = Callable[[ClientApiError, int], bool]
OnRetry = Callable[[ClientApiError, int, float], None]
ErrorHandler = Callable[[ClientApiError, Mapping[str, Any]], None]
Sleep = Callable[[float], Awaitable[Any]]


class RetryConfig(BaseModel):
    """Immutable retry policy.

    Attributes:
        max_retries: Retries after the first attempt (total calls = max_retries + 1).
        initial_delay_ms: Delay before the first retry, in milliseconds.
        max_delay_ms: Upper bound for any computed delay, in milliseconds.
        backoff_multiplier: Exponential growth factor per attempt.
        enable_jitter: Scale delays by a uniform factor in [0.5, 1.0].
        should_retry: Optional predicate ``(error, attempt) -> bool`` replacing
            the default retryability decision.
        on_retry: Optional callback ``(error, attempt, delay_ms)`` invoked
            before each backoff sleep.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_retries: int = Field(default=3, ge=0)
    initial_delay_ms: int = Field(default=1000, gt=0)
    max_delay_ms: int = Field(default=30000, gt=0)
    backoff_multiplier: float = Field(default=2.0, gt=1.0)
    enable_jitter: bool = True
    should_retry: ShouldRetry | None = None
    on_retry: OnRetry | None = None

    @model_validator(mode="after")
    def validate_delay_bounds(self) -> "RetryConfig":
        """Ensure the delay cap is not below the initial delay.

        Raises:
            ValueError: If ``max_delay_ms < initial_delay_ms``.
        """
        if self.max_delay_ms < self.initial_delay_ms:
            raise ValueError("max_delay_ms must be >= initial_delay_ms")
        return self

    def merge(self, overrides: "Mapping[str, Any] | RetryConfig | None") -> "RetryConfig":
        """Return a new config with ``overrides`` applied; ``self`` is untouched.

        Args:
            overrides: Field overrides, or another config whose explicitly set
                fields win.

        Returns:
            The merged, validated config.
        """
        if overrides is None:
            return self
        if isinstance(overrides, RetryConfig):
            overrides = {
                name: getattr(overrides, name) for name in overrides.model_fields_set
            }
        if not overrides:
            return self
        current = {name: getattr(self, name) for name in type(self).model_fields}
        return type(self).model_validate({**current, **dict(overrides)})

    @classmethod
    def from_settings(cls, settings: Any) -> "RetryConfig":
        """Build a policy from ``ClientApiSettings``-style ``retry_*`` attributes."""
        return cls(
            max_retries=settings.retry_max_retries,
            initial_delay_ms=settings.retry_initial_delay_ms,
            max_delay_ms=settings.retry_max_delay_ms,
            backoff_multiplier=settings.retry_backoff_multiplier,
            enable_jitter=settings.retry_enable_jitter,
        )


DEFAULT_RETRY_CONFIG = RetryConfig()


def calculate_delay(
    attempt: int, config: RetryConfig, rng: random.Random | None = None
) -> float:
    """Compute the backoff delay in milliseconds for a zero-based attempt.

    ``min(initial_delay_ms * backoff_multiplier ** attempt, max_delay_ms)``,
    scaled by a uniform factor in [0.5, 1.0] when jitter is enabled.
    """
    try:
        exponential = config.initial_delay_ms * config.backoff_multiplier**attempt
    except OverflowError:
        exponential = float(config.max_delay_ms)
    capped = min(exponential, config.max_delay_ms)
    if not config.enable_jitter:
        return capped
    return capped * (rng or random).uniform(0.5, 1.0)


def default_should_retry(error: ClientApiError, attempt: int, config: RetryConfig) -> bool:
    """Retry while attempts remain and the classified error is retryable."""
    return attempt < config.max_retries and error.is_retryable


def execute_error_handler(
    error_handler: ErrorHandler | None,
    error: ClientApiError,
    context: Mapping[str, Any],
) -> None:
    """Invoke a caller error handler without letting it mask ``error``."""
    if error_handler is None:
        return
    try:
        error_handler(error, context)
    except Exception:
        logger.exception(
            "Custom error handler failed while handling %s: %s", error.code, error.message
        )


def _decide_retry(config: RetryConfig, error: ClientApiError, attempt: int) -> bool:
    if config.should_retry is None:
        return default_should_retry(error, attempt, config)
    try:
        return bool(config.should_retry(error, attempt))
    except Exception:
        logger.exception("Custom should_retry predicate failed; not retrying")
        return False


def _notify_retry(config: RetryConfig, error: ClientApiError, attempt: int, delay: float) -> None:
    if config.on_retry is None:
        return
    try:
        config.on_retry(error, attempt, delay)
    except Exception:
        logger.exception("on_retry callback failed")


async def _backoff(delay_ms: float, sleep: Sleep, cancel_event: asyncio.Event | None) -> bool:
    """Suspend for ``delay_ms``; return True when cancelled during the wait."""
    if cancel_event is None:
        await sleep(delay_ms / 1000)
        return False
    if cancel_event.is_set():
        return True
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=delay_ms / 1000)
    except TimeoutError:
        return False
    return True


async def execute_with_retry(
    operation: Callable[[], Awaitable[T]],
    operation_name: str,
    context: Mapping[str, Any] | None = None,
    retry_config: RetryConfig | None = None,
    *,
    error_handler: ErrorHandler | None = None,
    cancel_event: asyncio.Event | None = None,
    sleep: Sleep | None = None,
    rng: random.Random | None = None,
) -> T:
    """Run ``operation`` until it succeeds or the retry policy gives up.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt.
        operation_name: Name used in logs and in the error context.
        context: Diagnostic context attached to classified errors.
        retry_config: Policy snapshot; defaults to :data:`DEFAULT_RETRY_CONFIG`.
        error_handler: Called exactly once with the final error.
        cancel_event: When set, no further attempt is started and a pending
            backoff is interrupted.
        sleep: Awaitable sleep used for backoff when no ``cancel_event`` is
            given; defaults to :func:`asyncio.sleep`.
        rng: Random source for jitter.

    Returns:
        The operation result.

    Raises:
        ClientApiError: The final classified error, with ``total_attempts``,
            ``duration_ms`` and ``attempt_errors`` in its context.
        asyncio.CancelledError: If ``cancel_event`` is already set before the
            first attempt.
    """
    config = retry_config or DEFAULT_RETRY_CONFIG
    sleep = sleep or asyncio.sleep
    base_context = {"operation": operation_name, **dict(context or {})}
    if cancel_event is not None and cancel_event.is_set():
        raise asyncio.CancelledError(f"{operation_name} cancelled before first attempt")

    start = time.monotonic()
    attempt_errors: list[str] = []
    cancelled = False
    attempt = 0

    while True:
        logger.debug(
            "Executing %s (attempt %d/%d)", operation_name, attempt + 1, config.max_retries + 1
        )
        try:
            result = await operation()
        except Exception as raw:
            error = classify(raw, base_context)
            attempt_errors.append(error.code)
        else:
            if attempt > 0:
                logger.info(
                    "%s succeeded after %d retries (%.0fms)",
                    operation_name,
                    attempt,
                    (time.monotonic() - start) * 1000,
                )
            return result

        if attempt >= config.max_retries:
            break
        if not _decide_retry(config, error, attempt):
            logger.debug(
                "Not retrying %s: %s (%s) is not retryable",
                operation_name,
                error.code,
                error.message,
            )
            break

        delay = calculate_delay(attempt, config, rng)
        if error.kind is ErrorKind.RATE_LIMIT and error.retry_after:
            delay = max(delay, error.retry_after * 1000)

        logger.warning(
            "Retrying %s (attempt %d) after %.0fms: %s",
            operation_name,
            attempt + 2,
            delay,
            error.message,
        )
        _notify_retry(config, error, attempt, delay)

        if await _backoff(delay, sleep, cancel_event):
            cancelled = True
            break
        attempt += 1

    duration_ms = (time.monotonic() - start) * 1000
    extra: dict[str, Any] = {
        "total_attempts": attempt + 1,
        "duration_ms": round(duration_ms, 3),
        "attempt_errors": attempt_errors,
    }
    if cancelled:
        extra["cancelled"] = True
    final_error = error.with_context(extra)

    execute_error_handler(error_handler, final_error, final_error.context)

    logger.error(
        "%s failed after %d attempt(s) in %.0fms: %s [%s, retryable=%s]. %s",
        operation_name,
        attempt + 1,
        duration_ms,
        final_error.message,
        final_error.code,
        final_error.is_retryable,
        "All retries exhausted; check connectivity and server status."
        if final_error.is_retryable
        else "Check request parameters, authentication and server-side validation.",
    )
    raise final_error
