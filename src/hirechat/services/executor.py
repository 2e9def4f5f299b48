"""Bounded retry of remote chat operations.

Every call to the chat server that may be rate limited goes through
:class:`RemoteExecutor`. Nothing else in the package sleeps or retries.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from hirechat.services.errors import RateLimitedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]
Sleeper = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently a rate-limited call is retried."""

    max_retries: int = 3
    base_delay: float = 1.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must not be negative")
        if self.base_delay < 0:
            raise ValueError("base_delay must not be negative")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, attempt: int, hint: float | None = None) -> float:
        """Return the wait before retry number ``attempt`` (zero based).

        A server-provided hint is honored exactly; otherwise the base delay
        doubles with every attempt.
        """
        if hint is not None:
            return hint
        return self.base_delay * (2 ** attempt)


class RemoteExecutor:
    """Run remote operations, retrying only when the server rate limits us."""

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    async def execute(self, operation: Operation[T], policy: RetryPolicy | None = None) -> T:
        """Await ``operation()`` with bounded retries on rate limiting.

        Args:
            operation: Zero-argument callable producing a fresh awaitable per attempt
            policy: Optional override of the executor's default policy

        Returns:
            The operation's result

        Raises:
            RateLimitedError: If every attempt was rate limited
            Exception: Any other error from the operation, unretried
        """
        active = policy or self.policy
        attempt = 0
        while True:
            try:
                return await operation()
            except RateLimitedError as exc:
                if attempt >= active.max_retries:
                    logger.warning(
                        "Chat server still rate limiting after %d attempts: %s",
                        active.max_attempts,
                        exc,
                    )
                    raise
                delay = active.delay_for(attempt, exc.retry_after)
                logger.info(
                    "Chat server rate limited attempt %d/%d; retrying in %.2fs",
                    attempt + 1,
                    active.max_attempts,
                    delay,
                )
                await self._sleep(delay)
                attempt += 1
