"""
Data models for the quote pipeline.
No network or storage logic, only Pydantic models and typed structures.
"""

import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Generic, List, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

T = TypeVar("T")


class Provenance(str, Enum):
    LIVE = "live"
    FALLBACK = "fallback"


class Quote(BaseModel):
    """Canonical snapshot of one symbol.
    Every quote handed to callers has passed through correct_change().
    """
    model_config = ConfigDict(frozen=True)

    symbol: str = Field(..., min_length=1, description="Upper-cased ticker symbol")
    name: str = Field(..., description="Display name")
    price: float = Field(..., gt=0, description="Last price")
    change: float = Field(..., description="Signed change against previous close")
    change_percent: float = Field(..., description="Signed percent change")
    volume: int = Field(0, ge=0, description="Last non-null session volume")
    market_cap: Optional[float] = Field(None, gt=0, description="Market capitalization")
    high_52_week: Optional[float] = Field(None, gt=0, description="52 week high")
    low_52_week: Optional[float] = Field(None, gt=0, description="52 week low")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), description="Observation time")
    provenance: Provenance = Field(Provenance.LIVE, description="live upstream data or synthetic fallback")

    @field_validator("symbol", mode="before")
    @classmethod
    def _canonical_symbol(cls, v):
        # runs before min_length so whitespace-only symbols are rejected
        return v.strip().upper() if isinstance(v, str) else v

    @property
    def is_positive(self) -> bool:
        return self.change >= 0


def correct_change(quote: Quote) -> Quote:
    """Recompute `change` from `price` and `change_percent`."""
    return quote.model_copy(update={"change": quote.price * quote.change_percent / 100.0})


class HistoricalPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(..., description="Trading day")
    price: float = Field(..., description="Close price")


class AlertKind(str, Enum):
    PRICE_ABOVE = "price_above"
    PRICE_BELOW = "price_below"
    PERCENT_CHANGE_ABOVE = "percent_change_above"
    PERCENT_CHANGE_BELOW = "percent_change_below"

    @property
    def is_percent(self) -> bool:
        return self in (AlertKind.PERCENT_CHANGE_ABOVE, AlertKind.PERCENT_CHANGE_BELOW)


class AlertRule(BaseModel):
    """Threshold rule for one symbol.
    `triggered` is only written by AlertEvaluator and the bulk reset.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Rule identity")
    kind: AlertKind = Field(..., description="Predicate applied to the quote")
    threshold: float = Field(..., description="Threshold value")
    triggered: bool = Field(False, description="Edge-triggered latch")

    def is_breached(self, quote: Quote) -> bool:
        if self.kind is AlertKind.PRICE_ABOVE:
            return quote.price > self.threshold
        if self.kind is AlertKind.PRICE_BELOW:
            return quote.price < self.threshold
        if self.kind is AlertKind.PERCENT_CHANGE_ABOVE:
            return quote.change_percent > self.threshold
        return quote.change_percent < self.threshold


class DisplayFormat(str, Enum):
    SYMBOL_AND_PRICE = "symbol_and_price"
    SYMBOL_AND_CHANGE = "symbol_and_change"
    PRICE_ONLY = "price_only"
    CHANGE_ONLY = "change_only"
    CUSTOM = "custom"


class ColorMode(str, Enum):
    AUTOMATIC = "automatic"
    FIXED = "fixed"
    SYSTEM = "system"


class AppConfig(BaseModel):
    """User configuration as read from and written to the ConfigStore."""
    symbols: List[str] = Field(default_factory=lambda: ["AAPL", "MSFT", "GOOG"], description="Ordered unique symbols")
    refresh_interval: float = Field(60.0, gt=0, description="Seconds between refreshes")
    display_format: DisplayFormat = Field(DisplayFormat.SYMBOL_AND_PRICE)
    show_change_percent: bool = Field(True)
    custom_format: Optional[str] = Field(None, description="Template with {symbol} {price} {change} {percent}")
    color_mode: ColorMode = Field(ColorMode.AUTOMATIC)
    rotate_stocks: bool = Field(False)
    alert_rules: Dict[str, List[AlertRule]] = Field(default_factory=dict, description="Rules keyed by symbol")

    @field_validator("symbols")
    @classmethod
    def _unique_symbols(cls, v: List[str]) -> List[str]:
        seen: List[str] = []
        for s in v:
            s = s.strip().upper()
            if s and s not in seen:
                seen.append(s)
        return seen

    @field_validator("alert_rules")
    @classmethod
    def _upper_rule_keys(cls, v: Dict[str, List[AlertRule]]) -> Dict[str, List[AlertRule]]:
        return {k.strip().upper(): rules for k, rules in v.items()}


class AlertNotification(BaseModel):
    symbol: str
    title: str
    message: str
    sound: bool = True
    ts: int = Field(default_factory=lambda: int(time.time()))


class AlertEvent(BaseModel):
    symbol: str
    rule: AlertRule
    current_value: str = Field(..., description="Formatted value that breached the threshold")


# ---------------------------
# Fetch outcomes
# ---------------------------
class FailureKind(str, Enum):
    NETWORK = "network"
    TIMEOUT = "timeout"
    HTTP_STATUS = "http_status"
    EMPTY_BODY = "empty_body"
    MALFORMED = "malformed"
    UPSTREAM_ERROR = "upstream_error"
    NO_RESULT = "no_result"
    MISSING_FIELD = "missing_field"


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T


@dataclass(frozen=True)
class TransientFailure:
    reason: str
    kind: FailureKind = FailureKind.NETWORK


@dataclass(frozen=True)
class PermanentFailure:
    reason: str
    kind: FailureKind = FailureKind.MALFORMED


FetchOutcome = Union[Success[T], TransientFailure, PermanentFailure]
