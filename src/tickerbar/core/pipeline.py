"""
Concurrent batch refresh over a symbol list.

Each symbol is fetched in its own task; a symbol that cannot be fetched is
replaced by a fallback quote so the batch always has one entry per symbol.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

from tickerbar.core.models import HistoricalPoint, Quote, Success, correct_change
from tickerbar.core.symbols import canonical

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_WINDOW = timedelta(days=30)


class QuoteBoard:
    """Latest published quote set.

    Refreshes take a ticket before they start; a batch whose ticket is older
    than the last published one is discarded (last writer wins).
    """

    def __init__(self) -> None:
        self._issued = 0
        self._published = 0
        self._quotes: Dict[str, Quote] = {}
        self._history: Dict[str, List[HistoricalPoint]] = {}
        self.updated_at: Optional[datetime] = None

    def next_ticket(self) -> int:
        self._issued += 1
        return self._issued

    def publish(self, ticket: int, quotes: Iterable[Quote]) -> bool:
        if ticket < self._published:
            logger.info("discarding stale batch %d (current %d)", ticket, self._published)
            return False
        self._published = ticket
        self._quotes = {q.symbol: q for q in quotes}
        self.updated_at = datetime.now(timezone.utc)
        return True

    @property
    def quotes(self) -> List[Quote]:
        return list(self._quotes.values())

    def get(self, symbol: str) -> Optional[Quote]:
        return self._quotes.get(canonical(symbol))

    def set_history(self, symbol: str, points: List[HistoricalPoint]) -> None:
        self._history[canonical(symbol)] = list(points)

    def history(self, symbol: str) -> Optional[List[HistoricalPoint]]:
        return self._history.get(canonical(symbol))


class QuotePipeline:
    def __init__(self, fetcher, fallback, history_window: timedelta = DEFAULT_HISTORY_WINDOW) -> None:
        self.fetcher = fetcher
        self.fallback = fallback
        self.history_window = history_window

    async def _fetch_one(self, symbol: str) -> Quote:
        outcome = await self.fetcher.fetch(symbol)
        if isinstance(outcome, Success):
            return outcome.value
        logger.warning("fetch for %s failed (%s: %s), substituting fallback", symbol, outcome.kind.value, outcome.reason)
        return self.fallback.generate(symbol)

    async def refresh(self, symbols: Iterable[str]) -> List[Quote]:
        """Fetch every distinct symbol concurrently and return the corrected batch.

        The batch is returned only once every task has resolved.
        """
        wanted: List[str] = []
        for s in symbols:
            s = canonical(s)
            if s and s not in wanted:
                wanted.append(s)
        if not wanted:
            return []

        results = await asyncio.gather(*(self._fetch_one(s) for s in wanted), return_exceptions=True)

        batch = []
        for symbol, result in zip(wanted, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                logger.error("unexpected error fetching %s", symbol, exc_info=result)
                result = self.fallback.generate(symbol)
            batch.append(correct_change(result))
        logger.info("refreshed %d symbols", len(batch))
        return batch

    async def refresh_history(self, symbol: str) -> List[HistoricalPoint]:
        """Daily closes for *symbol*; any failure yields an empty list."""
        outcome = await self.fetcher.fetch_history(canonical(symbol), self.history_window)
        if isinstance(outcome, Success):
            return outcome.value
        logger.info("no history for %s: %s", symbol, outcome.reason)
        return []

    async def refresh_board(self, board: QuoteBoard, symbols: Iterable[str]) -> bool:
        ticket = board.next_ticket()
        batch = await self.refresh(symbols)
        return board.publish(ticket, batch)
