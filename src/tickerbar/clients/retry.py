"""
Bounded retry around any coroutine that returns a FetchOutcome.

Only TransientFailure results are retried. PermanentFailure and Success are
returned as soon as they are seen; exceptions are not retried and propagate.
On exhaustion the last TransientFailure is returned so the caller can decide
on a substitute (fallback quote, empty history).
"""

import logging
from datetime import timedelta
from typing import Any, Awaitable, Callable, List

from tenacity import (
    RetryCallState,
    retry,
    retry_if_result,
    stop_after_attempt,
    wait_fixed,
)

from tickerbar.core.models import FetchOutcome, HistoricalPoint, Quote, TransientFailure

logger = logging.getLogger(__name__)

DEFAULT_ATTEMPTS = 3
DEFAULT_BACKOFF = 1.0


def is_transient(outcome: Any) -> bool:
    return isinstance(outcome, TransientFailure)


def _last_outcome(retry_state: RetryCallState) -> Any:
    outcome = retry_state.outcome.result()
    logger.warning(
        "giving up after %d attempts: %s", retry_state.attempt_number, getattr(outcome, "reason", outcome)
    )
    return outcome


def _log_retry(retry_state: RetryCallState) -> None:
    outcome = retry_state.outcome.result()
    logger.info(
        "attempt %d failed (%s), retrying in %.1fs",
        retry_state.attempt_number,
        outcome.reason,
        retry_state.next_action.sleep if retry_state.next_action else 0.0,
    )


def with_retry(attempts: int = DEFAULT_ATTEMPTS, backoff: float = DEFAULT_BACKOFF) -> Callable:
    """Decorator: retry transient outcomes with a fixed backoff.

    Usage:
        @with_retry(attempts=3, backoff=1.0)
        async def fetch(symbol): ...
    """
    return retry(
        retry=retry_if_result(is_transient),
        stop=stop_after_attempt(attempts),
        wait=wait_fixed(backoff),
        before_sleep=_log_retry,
        retry_error_callback=_last_outcome,
    )


class RetryingFetcher:
    """Wraps a QuoteSource (anything with async fetch/fetch_history)."""

    def __init__(self, source, attempts: int = DEFAULT_ATTEMPTS, backoff: float = DEFAULT_BACKOFF) -> None:
        if attempts < 1:
            raise ValueError("attempts must be >= 1")
        self.source = source
        self.attempts = attempts
        self.backoff = backoff

    def _wrap(self, func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        return with_retry(self.attempts, self.backoff)(func)

    async def fetch(self, symbol: str) -> FetchOutcome[Quote]:
        return await self._wrap(self.source.fetch)(symbol)

    async def fetch_history(self, symbol: str, window: timedelta) -> FetchOutcome[List[HistoricalPoint]]:
        return await self._wrap(self.source.fetch_history)(symbol, window)
