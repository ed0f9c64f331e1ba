"""Bounded exponential backoff for idempotent provisioning calls."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from eksorch.errors import EksOrchError
from eksorch.models.config import RetryConfig
from eksorch.observability.logging import get_logger

_log = get_logger("engine.retry")

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 4
    base_delay: float = 2.0
    max_delay: float = 60.0

    @classmethod
    def from_config(cls, config: RetryConfig) -> RetryPolicy:
        return cls(
            max_attempts=max(1, config.max_attempts),
            base_delay=config.base_delay,
            max_delay=config.max_delay,
        )

    def delay(self, attempt: int) -> float:
        """Backoff before attempt ``attempt + 1`` (attempt is 1-based)."""
        return min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))


NO_RETRY = RetryPolicy(max_attempts=1, base_delay=0.0, max_delay=0.0)


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    label: str = "",
    on_retry: Callable[[int, BaseException], None] | None = None,
) -> tuple[T, int]:
    """Run *fn* until it succeeds, a non-retryable error occurs, or attempts run out.

    Returns the result and the number of attempts used.
    """
    attempt = 1
    while True:
        try:
            return await fn(), attempt
        except EksOrchError as exc:
            if not exc.retryable or attempt >= policy.max_attempts:
                raise
            delay = policy.delay(attempt)
            _log.warning(
                "retrying_after_transient_error",
                target=label,
                attempt=attempt,
                max_attempts=policy.max_attempts,
                delay_s=delay,
                error=str(exc),
            )
            if on_retry is not None:
                on_retry(attempt, exc)
            await asyncio.sleep(delay)
            attempt += 1
