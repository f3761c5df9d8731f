"""
Edge-triggered threshold alerts.

Each rule is either ARMED (triggered=False) or FIRED (triggered=True).
ARMED -> FIRED happens when the rule's predicate holds for a fresh quote;
FIRED -> ARMED only through reset_all(). A sustained breach fires once.
"""

import logging
from enum import Enum
from typing import Iterable, List

from tickerbar.core.formatting import format_alert_value
from tickerbar.core.models import (
    AlertEvent,
    AlertKind,
    AlertNotification,
    AlertRule,
    AppConfig,
    Quote,
)

logger = logging.getLogger(__name__)


class AlertState(str, Enum):
    ARMED = "armed"
    FIRED = "fired"


def state_of(rule: AlertRule) -> AlertState:
    return AlertState.FIRED if rule.triggered else AlertState.ARMED


def alert_message(quote: Quote, rule: AlertRule, current: str) -> str:
    if rule.kind is AlertKind.PRICE_ABOVE:
        return f"{quote.name} price rose above {rule.threshold:g}, now {current}"
    if rule.kind is AlertKind.PRICE_BELOW:
        return f"{quote.name} price fell below {rule.threshold:g}, now {current}"
    if rule.kind is AlertKind.PERCENT_CHANGE_ABOVE:
        return f"{quote.name} is up more than {rule.threshold:g}%, now {current}"
    return f"{quote.name} is down more than {abs(rule.threshold):g}%, now {current}"


class AlertEvaluator:
    """Single writer of AlertRule.triggered.

    store:    persists a rule right after its state changes (ConfigStore)
    notifier: receives one AlertNotification per ARMED -> FIRED transition
    """

    def __init__(self, store, notifier) -> None:
        self.store = store
        self.notifier = notifier

    async def evaluate(self, quotes: Iterable[Quote], config: AppConfig) -> List[AlertEvent]:
        events: List[AlertEvent] = []
        for quote in quotes:
            for rule in config.alert_rules.get(quote.symbol, []):
                if state_of(rule) is AlertState.FIRED or not rule.is_breached(quote):
                    continue
                events.append(await self._fire(quote, rule))
        return events

    async def _fire(self, quote: Quote, rule: AlertRule) -> AlertEvent:
        rule.triggered = True
        await self.store.save_rule(quote.symbol, rule)

        current = format_alert_value(quote, rule.kind.is_percent)
        logger.info("rule %s (%s %g) fired for %s at %s", rule.id, rule.kind.value, rule.threshold, quote.symbol, current)
        await self.notifier.notify(
            AlertNotification(
                symbol=quote.symbol,
                title=f"Stock alert: {quote.symbol}",
                message=alert_message(quote, rule, current),
                sound=True,
            )
        )
        return AlertEvent(symbol=quote.symbol, rule=rule.model_copy(), current_value=current)

    async def reset_all(self, config: AppConfig) -> int:
        """Re-arm every rule of every symbol. Returns how many stored rules were fired."""
        for rules in config.alert_rules.values():
            for rule in rules:
                rule.triggered = False
        cleared = await self.store.reset_alerts()
        logger.info("reset %d fired alert rules", cleared)
        return cleared
