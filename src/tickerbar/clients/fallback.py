"""
Synthetic quotes used once the network path has given up on a symbol.
"""

import logging
import random
from typing import Dict, Optional, Tuple

from tickerbar.core.models import Provenance, Quote, correct_change
from tickerbar.core.symbols import OTC_SUFFIX, PRIMARY_SUFFIX, canonical

logger = logging.getLogger(__name__)

# name, price range, percent range, volume range
KNOWN_PROFILES: Dict[str, Tuple[str, Tuple[float, float], Tuple[float, float], Tuple[int, int]]] = {
    "AAPL": ("Apple Inc.", (160.0, 170.0), (-2.0, 2.0), (40_000_000, 50_000_000)),
    "MSFT": ("Microsoft Corporation", (300.0, 310.0), (-1.5, 1.5), (30_000_000, 40_000_000)),
    "GOOG": ("Alphabet Inc.", (140.0, 145.0), (-1.0, 1.0), (25_000_000, 35_000_000)),
    "AMZN": ("Amazon.com, Inc.", (178.0, 185.0), (-1.8, 1.8), (35_000_000, 45_000_000)),
    "NVDA": ("NVIDIA Corporation", (480.0, 495.0), (-1.2, 1.2), (20_000_000, 30_000_000)),
    "TSLA": ("Tesla, Inc.", (170.0, 180.0), (-5.0, 5.0), (50_000_000, 70_000_000)),
}

DEFAULT_PRICE = (10.0, 500.0)
DEFAULT_PERCENT = (-3.0, 3.0)
DEFAULT_VOLUME = (1_000_000, 20_000_000)
MARKET_CAP = (1e9, 2e11)


def _default_name(symbol: str) -> str:
    if symbol.endswith(PRIMARY_SUFFIX) or symbol.endswith(OTC_SUFFIX):
        return f"Taiwan Stock {symbol}"
    return f"{symbol} Corporation"


class FallbackQuoteProvider:
    """Generates complete, self-consistent quotes with random values."""

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self._rng = rng or random.Random()

    def generate(self, symbol: str) -> Quote:
        symbol = canonical(symbol)
        rng = self._rng
        name, price_range, percent_range, volume_range = KNOWN_PROFILES.get(
            symbol, (_default_name(symbol), DEFAULT_PRICE, DEFAULT_PERCENT, DEFAULT_VOLUME)
        )
        price = round(rng.uniform(*price_range), 2)
        change_percent = round(rng.uniform(*percent_range), 2)

        quote = Quote(
            symbol=symbol,
            name=name,
            price=price,
            change=0.0,
            change_percent=change_percent,
            volume=rng.randint(*volume_range),
            market_cap=rng.uniform(*MARKET_CAP),
            high_52_week=round(price * rng.uniform(1.05, 1.5), 2),
            low_52_week=round(price * rng.uniform(0.5, 0.95), 2),
            provenance=Provenance.FALLBACK,
        )
        logger.warning("using fallback data for %s (price=%.2f)", symbol, price)
        return correct_change(quote)
