"""Backoff retry for transient store failures.

Infrastructure errors (dropped connections, pool timeouts) are retried with
exponential backoff against a fresh session. Anything else, including the
engine's own ``ConcurrentModification``, propagates on the first attempt.
"""

import asyncio
import logging
import random
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from auction_engine.core.config import settings
from auction_engine.core.exceptions import StoreUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryConfig:
    """Configuration for store retry behavior.

    Attributes:
        attempts: Total number of tries, the first one included
        initial_delay: Delay in seconds before the first retry (doubles each retry)
        max_delay: Upper bound on a single delay in seconds
        exponential_base: Base for exponential backoff
        jitter: Add up to 30% random delay so replicas do not retry in lockstep
    """

    def __init__(
        self,
        attempts: int = 3,
        initial_delay: float = 0.05,
        max_delay: float = 1.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
    ):
        self.attempts = attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter

    @classmethod
    def from_settings(cls) -> "RetryConfig":
        return cls(
            attempts=settings.STORE_RETRY_ATTEMPTS,
            initial_delay=settings.STORE_RETRY_BACKOFF_SECONDS,
            max_delay=settings.STORE_RETRY_MAX_DELAY_SECONDS,
        )

    def get_delay(self, attempt: int) -> float:
        """Delay before the retry that follows ``attempt`` (0-indexed).

        With initial_delay=0.05 and exponential_base=2: 0.05s, 0.1s, 0.2s, ...
        """
        delay = min(self.initial_delay * (self.exponential_base ** attempt), self.max_delay)
        if self.jitter:
            delay += random.uniform(0, 0.3 * delay)
        return delay


def is_transient(exc: BaseException) -> bool:
    """True for infrastructure failures worth retrying against a fresh connection."""
    if isinstance(exc, (OperationalError, InterfaceError, PoolTimeoutError, ConnectionError)):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


async def with_store_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    name: str,
    config: RetryConfig | None = None,
) -> T:
    """Run ``operation`` and retry transient failures with exponential backoff.

    Each attempt must open its own session.

    Raises:
        StoreUnavailable: every attempt failed with a transient error.
    """
    if config is None:
        config = RetryConfig.from_settings()

    for attempt in range(config.attempts):
        try:
            result = await operation()
        except Exception as e:
            if not is_transient(e):
                raise
            if attempt + 1 >= config.attempts:
                logger.error(
                    f"Store operation {name} failed after {config.attempts} attempts: {e}"
                )
                raise StoreUnavailable(f"Store unavailable during {name}") from e
            delay = config.get_delay(attempt)
            logger.warning(
                f"Transient store error in {name} (attempt {attempt + 1}/{config.attempts}), "
                f"retrying in {delay:.3f}s: {e}"
            )
            await asyncio.sleep(delay)
            continue

        if attempt > 0:
            logger.info(f"Store operation {name} succeeded on attempt {attempt + 1}")
        return result

    raise StoreUnavailable(f"Store unavailable during {name}")
