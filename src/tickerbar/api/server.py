"""
HTTP surface for the presentation, notification and settings layers.
Routes read the wired Services from app.state; nothing here talks to the
upstream or the database directly.
"""

from typing import List, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from tickerbar.core.formatting import (
    format_market_cap,
    format_quote,
    format_volume,
    text_color,
)
from tickerbar.core.models import (
    AlertEvent,
    AlertKind,
    AlertNotification,
    AlertRule,
    AppConfig,
    HistoricalPoint,
    Quote,
)
from tickerbar.core.symbols import SymbolValidationError, canonical
from tickerbar.service import Services

router = APIRouter()


class DisplayRow(BaseModel):
    symbol: str
    text: str = Field(..., description="Status line in the configured display format")
    color: str
    volume: str
    market_cap: Optional[str] = None
    quote: Quote


class QuotesResponse(BaseModel):
    updated_at: Optional[str] = None
    rotate: bool = False
    rows: List[DisplayRow]


class SymbolRequest(BaseModel):
    symbol: str


class RuleRequest(BaseModel):
    kind: AlertKind
    threshold: float


def _services(request: Request) -> Services:
    return request.app.state.services


async def _quotes_response(services: Services) -> QuotesResponse:
    config = await services.store.load()
    rows = []
    for symbol in config.symbols:
        quote = services.board.get(symbol)
        if quote is None:
            continue
        rows.append(
            DisplayRow(
                symbol=quote.symbol,
                text=format_quote(quote, config.display_format, config.show_change_percent, config.custom_format),
                color=text_color(quote, config.color_mode),
                volume=format_volume(quote.volume),
                market_cap=format_market_cap(quote.market_cap),
                quote=quote,
            )
        )
    updated = services.board.updated_at
    return QuotesResponse(
        updated_at=updated.isoformat() if updated else None,
        rotate=config.rotate_stocks and len(rows) > 1,
        rows=rows,
    )


@router.get("/health")
async def health():
    return {"status": "ok"}


@router.get("/quotes", response_model=QuotesResponse)
async def list_quotes(request: Request):
    """Current quote set with display text and colors."""
    return await _quotes_response(_services(request))


@router.post("/quotes/refresh")
async def refresh_quotes(request: Request):
    """Run one refresh cycle now and return the new quote set plus fired alerts."""
    services = _services(request)
    events: List[AlertEvent] = await services.run_cycle()
    response = await _quotes_response(services)
    return {"quotes": response, "alerts": [e.model_dump(mode="json") for e in events]}


@router.get("/quotes/{symbol}/history", response_model=List[HistoricalPoint])
async def quote_history(symbol: str, request: Request):
    """Daily closes; an empty list when no history is available."""
    services = _services(request)
    points = await services.pipeline.refresh_history(symbol)
    services.board.set_history(symbol, points)
    return points


@router.get("/config", response_model=AppConfig)
async def get_config(request: Request):
    return await _services(request).store.load()


@router.put("/config", response_model=AppConfig)
async def put_config(config: AppConfig, request: Request):
    store = _services(request).store
    await store.save(config)
    return await store.load()


@router.post("/symbols", status_code=201)
async def add_symbol(body: SymbolRequest, request: Request):
    try:
        symbol = await _services(request).store.add_symbol(body.symbol)
    except SymbolValidationError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return {"symbol": symbol}


@router.delete("/symbols/{symbol}")
async def remove_symbol(symbol: str, request: Request):
    if not await _services(request).store.remove_symbol(symbol):
        raise HTTPException(status_code=404, detail=f"symbol {canonical(symbol)} not found")
    return {"removed": canonical(symbol)}


@router.post("/symbols/{symbol}/alerts", response_model=AlertRule, status_code=201)
async def add_alert(symbol: str, body: RuleRequest, request: Request):
    store = _services(request).store
    config = await store.load()
    if canonical(symbol) not in config.symbols:
        raise HTTPException(status_code=404, detail=f"symbol {canonical(symbol)} not found")
    return await store.add_rule(symbol, body.kind, body.threshold)


@router.delete("/alerts/{rule_id}")
async def remove_alert(rule_id: str, request: Request):
    if not await _services(request).store.remove_rule(rule_id):
        raise HTTPException(status_code=404, detail="alert rule not found")
    return {"removed": rule_id}


@router.post("/alerts/reset")
async def reset_alerts(request: Request):
    """Re-arm every alert rule for every symbol."""
    cleared = await _services(request).reset_alerts()
    return {"reset": cleared}


@router.get("/alerts/recent", response_model=List[AlertNotification])
async def recent_alerts(request: Request):
    return _services(request).feed.recent()
