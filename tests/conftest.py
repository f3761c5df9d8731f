"""Pytest configuration and fixtures."""

from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Optional

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from tickerbar.core.models import AppConfig, Quote, Success
from tickerbar.settings import Settings


def chart_payload(
    price: Optional[float] = 110.0,
    previous_close: Optional[float] = 100.0,
    volumes: Optional[List[Optional[int]]] = None,
    timestamps: Optional[List[int]] = None,
    closes: Optional[List[Optional[float]]] = None,
    **meta_extra: Any,
) -> Dict[str, Any]:
    """Chart envelope shaped like the upstream response."""
    meta: Dict[str, Any] = {"shortName": "Test Corp"}
    if price is not None:
        meta["regularMarketPrice"] = price
    if previous_close is not None:
        meta["chartPreviousClose"] = previous_close
    meta.update(meta_extra)
    return {
        "chart": {
            "result": [
                {
                    "meta": meta,
                    "timestamp": timestamps or [],
                    "indicators": {
                        "quote": [
                            {
                                "close": closes or [],
                                "volume": volumes if volumes is not None else [1000, 2000],
                            }
                        ]
                    },
                }
            ],
            "error": None,
        }
    }


@pytest.fixture
def make_chart():
    return chart_payload


@pytest.fixture
def make_quote() -> Callable[..., Quote]:
    def _make(symbol: str = "AAPL", price: float = 100.0, change_percent: float = 1.0, **kw) -> Quote:
        return Quote(
            symbol=symbol,
            name=kw.pop("name", f"{symbol} Inc."),
            price=price,
            change=kw.pop("change", price * change_percent / 100.0),
            change_percent=change_percent,
            volume=kw.pop("volume", 1_000_000),
            **kw,
        )

    return _make


class StubSource:
    """QuoteSource double: scripted outcomes per symbol, records every call.

    A script is consumed one outcome per call; the last outcome repeats.
    Symbols without a script succeed with a generated quote.
    """

    def __init__(self, make_quote, quotes=None, history=None):
        self._make_quote = make_quote
        self.quotes: Dict[str, list] = quotes or {}
        self.history: Dict[str, list] = history or {}
        self.calls: List[str] = []
        self.history_calls: List[str] = []
        self.closed = False

    def _next(self, script):
        return script.pop(0) if len(script) > 1 else script[0]

    async def fetch(self, symbol):
        self.calls.append(symbol)
        script = self.quotes.get(symbol)
        if not script:
            return Success(self._make_quote(symbol))
        outcome = self._next(script)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def fetch_history(self, symbol, window):
        self.history_calls.append(symbol)
        script = self.history.get(symbol)
        if not script:
            return Success([])
        return self._next(script)

    async def close(self):
        self.closed = True


@pytest.fixture
def stub_source(make_quote):
    def _make(quotes=None, history=None) -> StubSource:
        return StubSource(make_quote, quotes=quotes, history=history)

    return _make


class Upstream:
    """Fake chart endpoint. Responses are scripted per query symbol."""

    def __init__(self):
        self.responses: Dict[str, list] = {}
        self.requests: List[Dict[str, Any]] = []
        self.url = ""

    def script(self, symbol: str, *responses) -> None:
        """Each response is (status, body) where body is a dict, str, or a coroutine function."""
        self.responses[symbol] = list(responses)

    def calls_for(self, symbol: str) -> int:
        return sum(1 for r in self.requests if r["symbol"] == symbol)

    async def handle(self, request: web.Request) -> web.StreamResponse:
        symbol = request.match_info["symbol"]
        self.requests.append({"symbol": symbol, "query": dict(request.query), "headers": dict(request.headers)})
        script = self.responses.get(symbol) or [(200, chart_payload())]
        status, body = script.pop(0) if len(script) > 1 else script[0]
        if callable(body):
            body = await body()
        text = body if isinstance(body, str) else json.dumps(body)
        return web.Response(status=status, text=text, content_type="application/json")


@pytest_asyncio.fixture
async def upstream():
    fake = Upstream()
    app = web.Application()
    app.router.add_get("/v8/finance/chart/{symbol}", fake.handle)
    server = TestServer(app)
    await server.start_server()
    fake.url = str(server.make_url("/"))
    try:
        yield fake
    finally:
        await server.close()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        base_url="http://127.0.0.1:9",
        request_timeout=1.0,
        retry_attempts=3,
        retry_backoff=0.0,
        db_path=str(tmp_path / "tickerbar.db"),
        log_level="DEBUG",
        defaults=AppConfig(symbols=["AAPL", "MSFT"], refresh_interval=3600),
    )
