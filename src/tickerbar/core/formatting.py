"""
Text formatting consumed by the presentation layer.
"""

from typing import Optional

from tickerbar.core.models import ColorMode, DisplayFormat, Quote


def format_price(value: float) -> str:
    return f"{value:.2f}"


def format_change(value: float) -> str:
    return f"{value:+.2f}"


def format_percent(value: float) -> str:
    return f"{value:+.2f}%"


def _abbreviate(value: float, units) -> str:
    for size, suffix in units:
        if value >= size:
            return f"{value / size:,.2f}".rstrip("0").rstrip(".") + suffix
    return f"{value:,.2f}".rstrip("0").rstrip(".")


def format_volume(volume: int) -> str:
    """45678900 -> '45.68M'"""
    if volume < 1_000:
        return str(volume)
    return _abbreviate(float(volume), ((1e9, "B"), (1e6, "M"), (1e3, "K")))


def format_market_cap(market_cap: Optional[float]) -> Optional[str]:
    if market_cap is None:
        return None
    return _abbreviate(market_cap, ((1e12, "T"), (1e9, "B"), (1e6, "M")))


def format_quote(
    quote: Quote,
    display_format: DisplayFormat,
    show_percent: bool = True,
    custom_format: Optional[str] = None,
) -> str:
    """Render one status line for *quote*.

    The custom template substitutes {symbol}, {price}, {change} and {percent};
    without a template it falls back to symbol + price.
    """
    price = format_price(quote.price)
    change = format_change(quote.change)
    percent = format_percent(quote.change_percent)

    if display_format is DisplayFormat.SYMBOL_AND_CHANGE:
        return f"{quote.symbol}: {change} ({percent})" if show_percent else f"{quote.symbol}: {change}"
    if display_format is DisplayFormat.PRICE_ONLY:
        return price
    if display_format is DisplayFormat.CHANGE_ONLY:
        return f"{change} ({percent})" if show_percent else change
    if display_format is DisplayFormat.CUSTOM and custom_format:
        return (
            custom_format.replace("{symbol}", quote.symbol)
            .replace("{price}", price)
            .replace("{change}", change)
            .replace("{percent}", percent)
        )
    return f"{quote.symbol}: {price}"


def format_alert_value(quote: Quote, percent: bool) -> str:
    return format_percent(quote.change_percent) if percent else format_price(quote.price)


def text_color(quote: Optional[Quote], color_mode: ColorMode) -> str:
    if color_mode is ColorMode.FIXED:
        return "white"
    if color_mode is ColorMode.SYSTEM or quote is None:
        return "default"
    return "green" if quote.is_positive else "red"
