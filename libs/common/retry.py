"""Retry policy for idempotent operations against the database.

Usage:
    from libs.common.retry import RetryPolicy

    policy = RetryPolicy(max_attempts=3, delay=1.0)
    order = await policy.run(lambda: find_order(db, gateway_order_id))

Only wrap operations that are safe to repeat (reads, upserts keyed on a
unique column). Never wrap a partially applied multi-step mutation.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError

from libs.common.config import Settings, get_settings
from libs.common.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def is_transient_db_error(exc: BaseException) -> bool:
    """Connection drops and lock timeouts; not constraint or programming errors."""
    if isinstance(exc, OperationalError):
        return True
    if isinstance(exc, DBAPIError):
        return bool(exc.connection_invalidated)
    return isinstance(exc, (ConnectionError, asyncio.TimeoutError))


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    delay: float = 1.0
    backoff: float = 1.0
    max_delay: Optional[float] = None
    is_retryable: Callable[[BaseException], bool] = field(
        default=is_transient_db_error
    )

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.delay < 0:
            raise ValueError("delay must be >= 0")

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "RetryPolicy":
        settings = settings or get_settings()
        return cls(
            max_attempts=settings.DB_RETRY_ATTEMPTS,
            delay=settings.DB_RETRY_DELAY,
        )

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given (1-based) failed attempt."""
        wait = self.delay * (self.backoff ** (attempt - 1))
        if self.max_delay is not None:
            wait = min(wait, self.max_delay)
        return wait

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        attempt = 1
        while True:
            try:
                return await operation()
            except Exception as exc:
                if attempt >= self.max_attempts or not self.is_retryable(exc):
                    raise
                wait = self.delay_for(attempt)
                logger.warning(
                    "Transient failure on attempt %d/%d, retrying in %.2fs: %s",
                    attempt,
                    self.max_attempts,
                    wait,
                    exc,
                )
                await asyncio.sleep(wait)
                attempt += 1
