"""
Composition of the refresh cycle: store -> pipeline -> board -> alerts.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

from tickerbar.clients.fallback import FallbackQuoteProvider
from tickerbar.clients.retry import RetryingFetcher
from tickerbar.clients.yahoo_client import YahooChartClient
from tickerbar.core.alerts import AlertEvaluator
from tickerbar.core.models import AlertEvent
from tickerbar.core.notify import AlertFeed
from tickerbar.core.pipeline import QuoteBoard, QuotePipeline
from tickerbar.db.config_store import ConfigStore
from tickerbar.settings import Settings

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    store: ConfigStore
    client: YahooChartClient
    pipeline: QuotePipeline
    board: QuoteBoard
    evaluator: AlertEvaluator
    feed: AlertFeed
    poll_task: Optional[asyncio.Task] = field(default=None, repr=False)
    # held across load -> publish -> evaluate; rule state has one writer at a time
    cycle_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    async def run_cycle(self) -> List[AlertEvent]:
        """One refresh: read config, refresh the board, evaluate alerts."""
        async with self.cycle_lock:
            config = await self.store.load()
            published = await self.pipeline.refresh_board(self.board, config.symbols)
            if not published:
                return []
            return await self.evaluator.evaluate(self.board.quotes, config)

    async def reset_alerts(self) -> int:
        """Re-arm every rule; waits for any running cycle to finish first."""
        async with self.cycle_lock:
            return await self.evaluator.reset_all(await self.store.load())

    async def poll_loop(self) -> None:
        """Refresh forever; the interval is re-read from the store every cycle."""
        while True:
            try:
                events = await self.run_cycle()
                if events:
                    logger.info("%d alerts fired", len(events))
            except asyncio.CancelledError:
                raise
            except Exception:
                # keep polling; the next cycle reloads everything
                logger.exception("refresh cycle failed")
            try:
                interval = (await self.store.load()).refresh_interval
            except RuntimeError:
                logger.warning("config store closed, stopping poll loop")
                return
            await asyncio.sleep(interval)

    def start(self) -> None:
        if self.poll_task is None or self.poll_task.done():
            self.poll_task = asyncio.create_task(self.poll_loop())

    async def close(self) -> None:
        if self.poll_task is not None:
            self.poll_task.cancel()
            try:
                await self.poll_task
            except asyncio.CancelledError:
                pass
            self.poll_task = None
        await self.feed.drain()
        await self.client.close()
        await self.store.close()


async def build_services(settings: Settings, client: Optional[YahooChartClient] = None) -> Services:
    store = ConfigStore(db_path=settings.db_path, defaults=settings.defaults)
    await store.init()
    client = client or YahooChartClient(base_url=settings.base_url, timeout=settings.request_timeout)
    fetcher = RetryingFetcher(client, attempts=settings.retry_attempts, backoff=settings.retry_backoff)
    pipeline = QuotePipeline(
        fetcher, FallbackQuoteProvider(), history_window=timedelta(days=settings.history_days)
    )
    feed = AlertFeed()
    return Services(
        settings=settings,
        store=store,
        client=client,
        pipeline=pipeline,
        board=QuoteBoard(),
        evaluator=AlertEvaluator(store, feed),
        feed=feed,
    )
