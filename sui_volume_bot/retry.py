"""
Retry Policy

One retry/backoff component shared by every strategy loop and by the RPC
transport, instead of inline try/sleep blocks in each caller.
"""

import asyncio
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from tenacity import (
    AsyncRetrying,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    stop_never,
    wait_fixed,
)

from .utils import logger, sanitize_error_message, ConfigError, TransientError


T = TypeVar("T")


class RetryPolicy:
    """
    Parameterized by (max attempts or infinite, delay, error-kind filter).

    Args:
        max_attempts: Total attempts, None for unlimited
        delay_seconds: Fixed wait between attempts
        retry_on: Exception types that are retried
        fatal: Exception types that are never retried, even when they
            also match ``retry_on``
    """

    def __init__(
        self,
        max_attempts: Optional[int] = 3,
        delay_seconds: float = 2.0,
        retry_on: Tuple[Type[BaseException], ...] = (TransientError,),
        fatal: Tuple[Type[BaseException], ...] = (ConfigError,),
    ):
        if max_attempts is not None and max_attempts < 1:
            raise ValueError("max_attempts must be at least 1 or None")
        self.max_attempts = max_attempts
        self.delay_seconds = delay_seconds
        self.retry_on = retry_on
        self.fatal = fatal

    def should_retry(self, error: BaseException) -> bool:
        return isinstance(error, self.retry_on) and not isinstance(error, self.fatal)

    def _tenacity_kwargs(self):
        return dict(
            stop=stop_never if self.max_attempts is None else stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.delay_seconds),
            retry=retry_if_exception(self.should_retry),
            before_sleep=self._log_retry,
            reraise=True,
        )

    def _log_retry(self, retry_state):
        error = retry_state.outcome.exception()
        logger.warning(
            f"Attempt {retry_state.attempt_number} failed: {sanitize_error_message(error)}. "
            f"Retrying in {self.delay_seconds:.1f}s..."
        )

    def call(self, func: Callable[..., T], *args, **kwargs) -> T:
        """Run a blocking callable under this policy."""
        for attempt in Retrying(**self._tenacity_kwargs()):
            with attempt:
                return func(*args, **kwargs)

    async def call_async(self, func: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        """Run a coroutine function under this policy."""
        async for attempt in AsyncRetrying(**self._tenacity_kwargs()):
            with attempt:
                return await func(*args, **kwargs)

    async def pause(self, stop: Optional[asyncio.Event] = None, seconds: Optional[float] = None) -> bool:
        """
        Wait between iterations, waking early on the stop signal.

        Returns:
            True if the stop signal was set during the wait
        """
        seconds = self.delay_seconds if seconds is None else seconds
        if stop is None:
            await asyncio.sleep(seconds)
            return False
        try:
            await asyncio.wait_for(stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True
