"""
Symbol canonicalization for the chart endpoint.
Taiwan main-board symbols (.TW) need a 4-digit numeric code, OTC symbols (.TWO)
need their own region/lang query parameters. Everything else passes through.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional

PRIMARY_SUFFIX = ".TW"
OTC_SUFFIX = ".TWO"

# well-known main-board codes queried as-is
EXEMPT_CODES = frozenset(
    ["2330", "2454", "2317", "2412", "2308", "2303", "2881", "2882", "2886", "2891"]
)

OTC_PARAMS = {"region": "TW", "lang": "zh-TW", "corsDomain": "finance.yahoo.com"}

# listings users commonly enter under the wrong board; tried once after a failed fetch
SYMBOL_CORRECTIONS = {"2230.TWO": "2230.TW"}


class SymbolValidationError(ValueError):
    """Raised for user-entered symbols that must not reach the fetch path."""


@dataclass(frozen=True)
class NormalizedSymbol:
    query_symbol: str
    params: Dict[str, str] = field(default_factory=dict)


def canonical(raw: str) -> str:
    return (raw or "").strip().upper()


def normalize_symbol(raw: str) -> NormalizedSymbol:
    """Return the query form of *raw* plus any extra query parameters.

    Never fails: unknown shapes come back unchanged with no parameters.
    """
    symbol = canonical(raw)

    if symbol.endswith(OTC_SUFFIX):
        return NormalizedSymbol(symbol, dict(OTC_PARAMS))

    if symbol.endswith(PRIMARY_SUFFIX):
        code = symbol[: -len(PRIMARY_SUFFIX)]
        if code in EXEMPT_CODES or len(code) >= 4:
            return NormalizedSymbol(symbol)
        if code.isdigit():
            return NormalizedSymbol(f"{code.zfill(4)}{PRIMARY_SUFFIX}")

    return NormalizedSymbol(symbol)


def validate_new_symbol(raw: str, existing: Iterable[str]) -> str:
    """Canonicalize a user-entered symbol, rejecting blanks and duplicates."""
    symbol = canonical(raw)
    if not symbol:
        raise SymbolValidationError("symbol must be a non-empty string")
    if symbol in {canonical(s) for s in existing}:
        raise SymbolValidationError(f"symbol {symbol} is already in the list")
    return symbol


def corrected_symbol(raw: str) -> Optional[str]:
    """Alternate listing to try when *raw* cannot be fetched, if one is known."""
    return SYMBOL_CORRECTIONS.get(canonical(raw))
