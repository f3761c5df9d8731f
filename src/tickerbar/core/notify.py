"""
Alert delivery. The OS notification layer subscribes to AlertFeed; the feed
itself only logs and keeps a short history for the API.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import deque
from typing import Awaitable, Callable, Deque, List

from tickerbar.core.models import AlertNotification

logger = logging.getLogger(__name__)


class Notifier(ABC):
    @abstractmethod
    async def notify(self, notification: AlertNotification) -> None:
        """Deliver one alert."""
        ...


class AlertFeed(Notifier):
    def __init__(self, maxlen: int = 50) -> None:
        self._recent: Deque[AlertNotification] = deque(maxlen=maxlen)
        self._subscribers: List[Callable[[AlertNotification], Awaitable[None]]] = []
        self._sub_lock = asyncio.Lock()
        self._tasks: set = set()

    async def notify(self, notification: AlertNotification) -> None:
        logger.warning("ALERT %s: %s", notification.title, notification.message)
        self._recent.append(notification)

        async with self._sub_lock:
            subs = list(self._subscribers)
        # delivered in background tasks, notify() never waits on subscribers
        for cb in subs:
            task = asyncio.create_task(self._deliver(cb, notification))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _deliver(self, cb, notification: AlertNotification) -> None:
        try:
            await cb(notification)
        except Exception:
            logger.exception("alert subscriber failed for %s", notification.symbol)

    async def drain(self) -> None:
        """Wait for in-flight subscriber deliveries."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def recent(self) -> List[AlertNotification]:
        return list(self._recent)

    async def subscribe(self, callback: Callable[[AlertNotification], Awaitable[None]]) -> None:
        """Register an async callback called once per alert."""
        async with self._sub_lock:
            self._subscribers.append(callback)

    async def unsubscribe(self, callback: Callable[[AlertNotification], Awaitable[None]]) -> None:
        async with self._sub_lock:
            try:
                self._subscribers.remove(callback)
            except ValueError:
                pass
