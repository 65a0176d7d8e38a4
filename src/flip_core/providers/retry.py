"""Retry policy — bounded attempts, exponential backoff on 429, linear otherwise."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import structlog

from flip_core.errors import QuoteFetchError, RateLimitedError, UpstreamError

log = structlog.get_logger("retry")

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Decide whether a failed upstream attempt is retried and after how long.

    Attempts are counted from 0. After a failed attempt *n*:
        rate limited:  rate_limit_base_s * 2**n
        transient:     transient_step_s * (n + 1)
    Once ``max_attempts`` attempts have failed the policy aborts.
    """

    max_attempts: int = 3
    rate_limit_base_s: float = 0.25
    transient_step_s: float = 0.2

    def next_delay(self, attempt: int, rate_limited: bool) -> float | None:
        """Return the delay before the next attempt, or None to abort."""
        if attempt + 1 >= self.max_attempts:
            return None
        if rate_limited:
            return self.rate_limit_base_s * (2 ** attempt)
        return self.transient_step_s * (attempt + 1)


async def call_with_retry(
    policy: RetryPolicy,
    func: Callable[[], Awaitable[T]],
    **log_context,
) -> T:
    """Run *func* under *policy*.

    Only :class:`UpstreamError` is retried. When the budget is exhausted a
    :class:`QuoteFetchError` chained to the last error is raised.
    """
    attempt = 0
    while True:
        try:
            return await func()
        except UpstreamError as exc:
            rate_limited = isinstance(exc, RateLimitedError)
            delay = policy.next_delay(attempt, rate_limited)
            if delay is None:
                log.warning(
                    "upstream_retries_exhausted",
                    attempts=attempt + 1,
                    error=str(exc),
                    **log_context,
                )
                raise QuoteFetchError(str(exc)) from exc
            log.debug(
                "upstream_retry",
                attempt=attempt + 1,
                delay_s=delay,
                rate_limited=rate_limited,
                **log_context,
            )
            await asyncio.sleep(delay)
            attempt += 1
