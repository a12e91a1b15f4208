import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

from contractflow.utils.logging import get_logger

LOGGER = get_logger(__name__)

T = TypeVar("T")


class RetryExhausted(Exception):
    """Raised when every attempt returned an unacceptable result."""

    def __init__(self, attempts: int, last_result: object):
        super().__init__(f"No acceptable result after {attempts} attempts")
        self.attempts = attempts
        self.last_result = last_result


class BoundedRetryPolicy:
    """Repeat an operation until its result is accepted, at most ``max_attempts`` times.

    Only unacceptable results are retried. Exceptions raised by the
    operation propagate immediately.
    """

    def __init__(self, max_attempts: int = 2, backoff_seconds: float = 0):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds

    async def execute(
        self,
        operation: Callable[[int], Awaitable[T]],
        accept: Callable[[T], bool],
    ) -> T:
        """Run ``operation(attempt)`` until ``accept(result)`` is true.

        Args:
            operation: Coroutine factory receiving the 1-based attempt number
            accept: Predicate on the operation's result

        Returns:
            The first accepted result

        Raises:
            RetryExhausted: Carrying the last result when no attempt was accepted
        """
        last_result: Optional[T] = None
        for attempt in range(1, self.max_attempts + 1):
            last_result = await operation(attempt)
            if accept(last_result):
                return last_result

            if attempt < self.max_attempts:
                LOGGER.warning(f"Attempt {attempt}/{self.max_attempts} not accepted, retrying")
                if self.backoff_seconds > 0:
                    await asyncio.sleep(self.backoff_seconds)

        raise RetryExhausted(self.max_attempts, last_result)
