# chatbridge/retry.py

"""
Retry policy around provider calls, and classification of upstream errors.

`RetryTemplate` wraps a provider call with exponential backoff using
`tenacity`. Only transient failures are retried: `TransientAiError` and
network-level `httpx.TransportError`s. Everything else propagates on the
first attempt, and the original exception is re-raised after the last one.

`ResponseErrorHandler` decides which of the two an HTTP error status is:

    on_http_codes          -> transient, always
    4xx                    -> non-transient (unless on_client_errors)
    exclude_on_http_codes  -> non-transient
    anything else          -> transient

Defaults (10 attempts, 2s initial wait, x5 per attempt, capped at 3 minutes)
match the retry properties in `chatbridge.config`.
"""

import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, Optional, Tuple, Type, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from chatbridge.config import RetryProperties, settings
from chatbridge.exceptions import AdapterError, NonTransientAiError, TransientAiError
from chatbridge.metrics import RETRY_ATTEMPTS


logger = logging.getLogger("chatbridge.retry")

T = TypeVar("T")

_EMPTY = object()

RETRYABLE_ERRORS: Tuple[Type[BaseException], ...] = (TransientAiError, httpx.TransportError)


class RetryTemplate:
    def __init__(
        self,
        max_attempts: int = 10,
        initial_interval: float = 2.0,
        multiplier: float = 5.0,
        max_interval: float = 180.0,
        retry_on: Tuple[Type[BaseException], ...] = RETRYABLE_ERRORS,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.initial_interval = initial_interval
        self.multiplier = multiplier
        self.max_interval = max_interval
        self.retry_on = retry_on

    @classmethod
    def from_properties(cls, props: RetryProperties) -> "RetryTemplate":
        return cls(
            max_attempts=props.max_attempts,
            initial_interval=props.initial_interval,
            multiplier=props.multiplier,
            max_interval=props.max_interval,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.initial_interval,
                exp_base=self.multiplier,
                max=self.max_interval,
            ),
            retry=retry_if_exception_type(self.retry_on),
            before_sleep=self._before_sleep,
            reraise=True,
        )

    @staticmethod
    def _before_sleep(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        RETRY_ATTEMPTS.labels(error=type(error).__name__).inc()
        logger.warning(
            f"Retry error. Retry count: {retry_state.attempt_number}",
            extra={
                "error": str(error),
                "sleep_seconds": retry_state.next_action.sleep if retry_state.next_action else 0,
            },
        )

    async def execute(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run `fn()` until it succeeds, fails permanently, or attempts run out."""
        result: Any = None
        async for attempt in self._retrying():
            with attempt:
                result = await fn()
        return result

    async def stream(self, factory: Callable[[], AsyncIterator[T]]) -> AsyncIterator[T]:
        """
        Open a stream with retries.

        The stream counts as open once it has produced its first element; from
        then on elements pass straight through and errors are not retried.
        """
        iterator: Optional[AsyncIterator[T]] = None
        first: Any = _EMPTY
        async for attempt in self._retrying():
            with attempt:
                iterator = factory().__aiter__()
                try:
                    first = await iterator.__anext__()
                except StopAsyncIteration:
                    first = _EMPTY

        if first is _EMPTY:
            return
        try:
            yield first
            async for item in iterator:
                yield item
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()


class ResponseErrorHandler:
    """Turns a non-success provider status into a transient or non-transient error."""

    def __init__(
        self,
        on_client_errors: bool = False,
        on_http_codes: Iterable[int] = (),
        exclude_on_http_codes: Iterable[int] = (),
    ):
        self.on_client_errors = on_client_errors
        self.on_http_codes = frozenset(on_http_codes)
        self.exclude_on_http_codes = frozenset(exclude_on_http_codes)

    @classmethod
    def from_properties(cls, props: RetryProperties) -> "ResponseErrorHandler":
        return cls(
            on_client_errors=props.on_client_errors,
            on_http_codes=props.on_http_codes,
            exclude_on_http_codes=props.exclude_on_http_codes,
        )

    @staticmethod
    def has_error(status_code: int) -> bool:
        return status_code >= 400

    def classify(self, status_code: int, body: str) -> AdapterError:
        message = f"{status_code} - {body}"
        if status_code in self.on_http_codes:
            return TransientAiError(message, upstream_status=status_code)
        if not self.on_client_errors and 400 <= status_code < 500:
            return NonTransientAiError(message, upstream_status=status_code)
        if status_code in self.exclude_on_http_codes:
            return NonTransientAiError(message, upstream_status=status_code)
        return TransientAiError(message, upstream_status=status_code)

    def check(self, response: httpx.Response) -> None:
        """Raise for an already-read response."""
        if self.has_error(response.status_code):
            raise self.classify(response.status_code, response.text)

    async def acheck(self, response: httpx.Response) -> None:
        """Raise for a streamed response, reading the error body first."""
        if self.has_error(response.status_code):
            await response.aread()
            raise self.classify(response.status_code, response.text)


def default_retry_template() -> RetryTemplate:
    return RetryTemplate.from_properties(settings.retry)


def default_error_handler() -> ResponseErrorHandler:
    return ResponseErrorHandler.from_properties(settings.retry)
