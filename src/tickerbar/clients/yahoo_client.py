"""
Chart-endpoint client: one request per call, parsed into a FetchOutcome. A listing
with a known correction gets one more request under the corrected symbol.

Transport errors, timeouts and 5xx/429 responses are transient; anything wrong
with the payload itself is permanent.
"""

import asyncio
import json
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import aiohttp

from tickerbar.core.models import (
    FailureKind,
    FetchOutcome,
    HistoricalPoint,
    PermanentFailure,
    Quote,
    Success,
    TransientFailure,
)
from tickerbar.core.symbols import canonical, corrected_symbol, normalize_symbol

logger = logging.getLogger(__name__)

YAHOO_BASE = "https://query1.finance.yahoo.com"
CHART_PATH = "/v8/finance/chart/{symbol}"

DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
        "(KHTML, like Gecko) Version/17.3.1 Safari/605.1.15"
    ),
    "Referer": "https://finance.yahoo.com",
    "Accept-Language": "en-US,en;q=0.9,zh-TW;q=0.8,zh;q=0.7",
}

QUOTE_LOOKBACK = timedelta(days=1)


def _number(val: Any) -> Optional[float]:
    if isinstance(val, bool) or not isinstance(val, (int, float)):
        return None
    return float(val)


def _positive(val: Any) -> Optional[float]:
    n = _number(val)
    return n if n is not None and n > 0 else None


def _first_quote_series(result: Dict[str, Any]) -> Dict[str, Any]:
    indicators = result.get("indicators")
    if not isinstance(indicators, dict):
        return {}
    series = indicators.get("quote")
    if isinstance(series, list) and series and isinstance(series[0], dict):
        return series[0]
    return {}


def last_volume(result: Dict[str, Any]) -> int:
    """Last non-null entry of the volume series, 0 when there is none."""
    volumes = _first_quote_series(result).get("volume") or []
    for vol in reversed(volumes):
        n = _number(vol)
        if n is not None and n >= 0:
            return int(n)
    return 0


def parse_quote(symbol: str, result: Dict[str, Any]) -> FetchOutcome[Quote]:
    """Build a Quote from one chart result entry."""
    meta = result.get("meta")
    if not isinstance(meta, dict):
        return PermanentFailure(f"{symbol}: result has no meta block", FailureKind.MISSING_FIELD)

    price = _positive(meta.get("regularMarketPrice"))
    previous_close = _positive(meta.get("chartPreviousClose"))
    if previous_close is None:
        previous_close = _positive(meta.get("previousClose"))
    if price is None or previous_close is None:
        return PermanentFailure(
            f"{symbol}: missing current price or previous close", FailureKind.MISSING_FIELD
        )

    change = price - previous_close
    change_percent = change / previous_close * 100.0

    return Success(
        Quote(
            symbol=symbol,
            name=meta.get("shortName") or meta.get("longName") or symbol,
            price=price,
            change=change,
            change_percent=change_percent,
            volume=last_volume(result),
            market_cap=_positive(meta.get("marketCap")),
            high_52_week=_positive(meta.get("fiftyTwoWeekHigh")),
            low_52_week=_positive(meta.get("fiftyTwoWeekLow")),
        )
    )


def parse_history(result: Dict[str, Any]) -> List[HistoricalPoint]:
    """(timestamp, close) pairs in time order; null closes are dropped."""
    timestamps = result.get("timestamp") or []
    closes = _first_quote_series(result).get("close") or []
    points = []
    for ts, close in zip(timestamps, closes):
        price = _number(close)
        if price is None or _number(ts) is None:
            continue
        points.append(HistoricalPoint(timestamp=datetime.fromtimestamp(ts, tz=timezone.utc), price=price))
    points.sort(key=lambda p: p.timestamp)
    return points


class YahooChartClient:
    """QuoteSource over the public chart endpoint.

    The aiohttp session is created on first use unless one is injected;
    close() only closes a session this client created.
    """

    def __init__(
        self,
        base_url: str = YAHOO_BASE,
        timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "YahooChartClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _get_chart(self, raw_symbol: str, start: datetime, end: datetime) -> FetchOutcome[Dict[str, Any]]:
        """Run the validation chain up to and including 'at least one result'."""
        normalized = normalize_symbol(raw_symbol)
        url = self.base_url + CHART_PATH.format(symbol=normalized.query_symbol)
        params = {
            "period1": str(int(start.timestamp())),
            "period2": str(int(end.timestamp())),
            "interval": "1d",
            "includePrePost": "true",
        }
        params.update(normalized.params)

        try:
            async with self._get_session().get(
                url, params=params, headers=DEFAULT_HEADERS, timeout=self.timeout
            ) as response:
                status = response.status
                body = await response.text()
        except asyncio.TimeoutError:
            return TransientFailure(f"{normalized.query_symbol}: request timed out", FailureKind.TIMEOUT)
        except aiohttp.ClientError as e:
            return TransientFailure(f"{normalized.query_symbol}: {e}", FailureKind.NETWORK)

        if not 200 <= status < 300:
            reason = f"{normalized.query_symbol}: HTTP {status}"
            if status >= 500 or status == 429:
                return TransientFailure(reason, FailureKind.HTTP_STATUS)
            return PermanentFailure(reason, FailureKind.HTTP_STATUS)

        if not body or not body.strip():
            return PermanentFailure(f"{normalized.query_symbol}: empty body", FailureKind.EMPTY_BODY)

        try:
            payload = json.loads(body)
        except ValueError as e:
            return PermanentFailure(f"{normalized.query_symbol}: invalid JSON ({e})", FailureKind.MALFORMED)

        chart = payload.get("chart") if isinstance(payload, dict) else None
        if not isinstance(chart, dict):
            return PermanentFailure(f"{normalized.query_symbol}: no chart envelope", FailureKind.MALFORMED)

        if chart.get("error") is not None:
            return PermanentFailure(
                f"{normalized.query_symbol}: upstream error {chart['error']}", FailureKind.UPSTREAM_ERROR
            )

        results = chart.get("result")
        if not isinstance(results, list) or not results or not isinstance(results[0], dict):
            return PermanentFailure(f"{normalized.query_symbol}: no result entries", FailureKind.NO_RESULT)

        return Success(results[0])

    async def fetch(self, symbol: str) -> FetchOutcome[Quote]:
        """Fetch the current quote for *symbol* using a one day lookback."""
        end = datetime.now(timezone.utc)
        outcome = await self._get_chart(symbol, end - QUOTE_LOOKBACK, end)
        if not isinstance(outcome, Success):
            logger.info("quote fetch failed: %s", outcome.reason)
            alternate = corrected_symbol(symbol)
            if alternate is None:
                return outcome
            logger.info("retrying %s as %s", canonical(symbol), alternate)
            outcome = await self._get_chart(alternate, end - QUOTE_LOOKBACK, end)
            if not isinstance(outcome, Success):
                logger.info("quote fetch failed: %s", outcome.reason)
                return outcome
        parsed = parse_quote(canonical(symbol), outcome.value)
        if isinstance(parsed, Success):
            q = parsed.value
            logger.debug("fetched %s price=%.4f change=%.4f (%.2f%%)", q.symbol, q.price, q.change, q.change_percent)
        else:
            logger.info("quote parse failed: %s", parsed.reason)
        return parsed

    async def fetch_history(self, symbol: str, window: timedelta = timedelta(days=30)) -> FetchOutcome[List[HistoricalPoint]]:
        """Fetch daily closes for *symbol* over the last *window*."""
        end = datetime.now(timezone.utc)
        started = time.monotonic()
        outcome = await self._get_chart(symbol, end - window, end)
        if not isinstance(outcome, Success):
            logger.info("history fetch failed: %s", outcome.reason)
            return outcome
        points = parse_history(outcome.value)
        logger.debug("fetched %d history points for %s in %.2fs", len(points), symbol, time.monotonic() - started)
        return Success(points)
