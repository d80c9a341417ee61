"""
Resilient transport for provider calls.

Wraps one network operation with a per-attempt timeout, exponential
backoff retries (tenacity) and short-circuiting of errors that retrying
cannot fix.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from whatcanieat.domain.shared.errors import (
    NON_RETRYABLE_CODES,
    DomainError,
    ErrorCode,
    RequestTimeoutError,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]

_STATUS_CODES = {
    400: ErrorCode.INVALID_REQUEST,
    401: ErrorCode.AUTHORIZATION,
    403: ErrorCode.AUTHORIZATION,
    429: ErrorCode.RATE_LIMITED,
}


def _status_of(exc: BaseException) -> Optional[int]:
    # google.genai APIError exposes .code, aiohttp ClientResponseError .status
    for attr in ("status", "code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def _sniff_message(message: str) -> Optional[ErrorCode]:
    text = message.lower()
    if any(token in text for token in ("api key", "unauthorized", "forbidden", "permission")):
        return ErrorCode.AUTHORIZATION
    if "quota" in text or "rate limit" in text:
        return ErrorCode.RATE_LIMITED
    if "invalid" in text and "request" in text:
        return ErrorCode.INVALID_REQUEST
    return None


def classify_error(exc: BaseException) -> ErrorCode:
    """
    Classify an exception raised by a provider call.

    Order: structured code on our own exceptions, then the HTTP status
    carried by vendor exceptions, then message text as a last resort.

    Args:
        exc: Exception raised by an attempt

    Returns:
        ErrorCode (TRANSPORT when nothing more specific applies)

    Example:
        >>> classify_error(Exception("Rate limit exceeded"))
        <ErrorCode.RATE_LIMITED: 'RATE_LIMITED'>
    """
    status = _status_of(exc)
    if isinstance(exc, DomainError) and exc.code is not ErrorCode.TRANSPORT:
        return exc.code
    if status is not None:
        return _STATUS_CODES.get(status, ErrorCode.TRANSPORT)
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return ErrorCode.TIMEOUT
    return _sniff_message(str(exc)) or ErrorCode.TRANSPORT


def is_retryable(exc: BaseException) -> bool:
    """True unless the error is permanent (auth, quota, bad request, config, parse)."""
    return classify_error(exc) not in NON_RETRYABLE_CODES


class ResilientTransport:
    """
    Timeout + retry wrapper around a single provider operation.

    Attempt ``n`` failing with a retryable error waits
    ``min(base_delay * 2**(n-1), max_delay)`` before attempt ``n+1``.
    There is no wait after the last attempt; the last error is re-raised.

    Example:
        >>> transport = ResilientTransport(timeout_seconds=30, max_retries=3)
        >>> text = await transport.call(lambda: client.generate(prompt))
    """

    def __init__(
        self,
        timeout_seconds: float = 30.0,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
        sleep: Optional[SleepFn] = None,
        name: str = "provider",
    ) -> None:
        """
        Initialize transport.

        Args:
            timeout_seconds: Per-attempt timeout
            max_retries: Total attempts (values below 1 mean a single attempt)
            base_delay: First backoff delay in seconds
            max_delay: Backoff cap in seconds
            sleep: Awaitable sleep function (for testing)
            name: Provider tag for logs
        """
        self.timeout_seconds = timeout_seconds
        self.max_retries = max(1, max_retries)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.name = name
        self._sleep_fn: SleepFn = sleep or asyncio.sleep

    async def _sleep(self, seconds: float) -> None:
        await self._sleep_fn(float(seconds))

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "Provider call failed, retrying",
            provider=self.name,
            attempt=retry_state.attempt_number,
            max_attempts=self.max_retries,
            delay_s=retry_state.next_action.sleep if retry_state.next_action else None,
            error=str(exc),
        )

    async def _attempt(self, operation: Callable[[], Awaitable[T]]) -> T:
        try:
            return await asyncio.wait_for(operation(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise RequestTimeoutError(
                f"Request timeout after {int(self.timeout_seconds * 1000)}ms"
            ) from e

    async def call(
        self,
        operation: Callable[[], Awaitable[T]],
        max_attempts: Optional[int] = None,
    ) -> T:
        """
        Run ``operation`` with timeout and retries.

        Args:
            operation: Zero-argument coroutine factory, called once per attempt
            max_attempts: Override attempt count for this call

        Returns:
            Result of the first successful attempt

        Raises:
            Exception: Last error, after retries are exhausted or on a
                non-retryable failure
        """
        attempts = self.max_retries if max_attempts is None else max(1, max_attempts)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=self.base_delay, max=self.max_delay),
            retry=retry_if_exception(is_retryable),
            sleep=self._sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    result = await self._attempt(operation)
        except Exception as e:
            logger.error(
                "Provider call failed",
                provider=self.name,
                error=str(e),
                error_code=classify_error(e).value,
                retryable=is_retryable(e),
            )
            raise

        return result
