"""Tests for edge-triggered alert evaluation."""

import pytest
import pytest_asyncio

from tickerbar.core.alerts import AlertEvaluator, AlertState, state_of
from tickerbar.core.models import AlertKind, AlertRule, AppConfig, correct_change
from tickerbar.core.notify import AlertFeed, Notifier
from tickerbar.db.config_store import ConfigStore


class RecordingNotifier(Notifier):
    def __init__(self):
        self.sent = []

    async def notify(self, notification):
        self.sent.append(notification)


class OrderCheckingStore:
    """Records save_rule calls and which notifications had been sent at that time."""

    def __init__(self, notifier):
        self.notifier = notifier
        self.saved = []

    async def save_rule(self, symbol, rule):
        self.saved.append((symbol, rule.id, rule.triggered, len(self.notifier.sent)))

    async def reset_alerts(self):
        return 0


@pytest_asyncio.fixture
async def store(tmp_path):
    s = ConfigStore(db_path=str(tmp_path / "alerts.db"), defaults=AppConfig(symbols=["AAPL"]))
    await s.init()
    yield s
    await s.close()


async def test_sustained_breach_fires_once(store, make_quote):
    notifier = RecordingNotifier()
    evaluator = AlertEvaluator(store, notifier)
    await store.add_rule("AAPL", AlertKind.PRICE_ABOVE, 150.0)
    config = await store.load()

    fired = []
    for price in (140.0, 160.0, 170.0):
        fired.append(len(await evaluator.evaluate([make_quote("AAPL", price=price)], config)))

    assert fired == [0, 1, 0]
    assert len(notifier.sent) == 1
    assert (await store.load()).alert_rules["AAPL"][0].triggered


async def test_reset_rearms(store, make_quote):
    notifier = RecordingNotifier()
    evaluator = AlertEvaluator(store, notifier)
    await store.add_rule("AAPL", AlertKind.PRICE_ABOVE, 150.0)
    config = await store.load()

    await evaluator.evaluate([make_quote("AAPL", price=160.0)], config)
    assert await evaluator.reset_all(config) == 1
    assert state_of(config.alert_rules["AAPL"][0]) is AlertState.ARMED
    assert not (await store.load()).alert_rules["AAPL"][0].triggered

    events = await evaluator.evaluate([make_quote("AAPL", price=170.0)], config)
    assert len(events) == 1
    assert len(notifier.sent) == 2


async def test_reset_with_nothing_fired(store):
    evaluator = AlertEvaluator(store, RecordingNotifier())
    await store.add_rule("AAPL", AlertKind.PRICE_BELOW, 10.0)
    assert await evaluator.reset_all(await store.load()) == 0


async def test_fired_state_persists_before_notification(make_quote):
    notifier = RecordingNotifier()
    fake_store = OrderCheckingStore(notifier)
    rule = AlertRule(kind=AlertKind.PRICE_BELOW, threshold=100.0)
    config = AppConfig(symbols=["MSFT"], alert_rules={"MSFT": [rule]})

    await AlertEvaluator(fake_store, notifier).evaluate([make_quote("MSFT", price=90.0)], config)

    assert fake_store.saved == [("MSFT", rule.id, True, 0)]
    assert len(notifier.sent) == 1


async def test_notification_content(make_quote):
    notifier = RecordingNotifier()
    rule = AlertRule(kind=AlertKind.PRICE_ABOVE, threshold=150.0)
    config = AppConfig(symbols=["AAPL"], alert_rules={"AAPL": [rule]})
    quote = make_quote("AAPL", price=160.5, name="Apple Inc.")

    events = await AlertEvaluator(OrderCheckingStore(notifier), notifier).evaluate([quote], config)

    note = notifier.sent[0]
    assert note.symbol == "AAPL"
    assert note.title == "Stock alert: AAPL"
    assert "Apple Inc." in note.message
    assert "160.50" in note.message
    assert note.sound is True
    assert events[0].current_value == "160.50"
    assert events[0].rule.triggered


@pytest.mark.parametrize(
    "kind,threshold,change_percent,expected",
    [
        (AlertKind.PERCENT_CHANGE_ABOVE, 2.0, 3.5, True),
        (AlertKind.PERCENT_CHANGE_ABOVE, 2.0, 1.5, False),
        (AlertKind.PERCENT_CHANGE_BELOW, -2.0, -3.0, True),
        (AlertKind.PERCENT_CHANGE_BELOW, -2.0, -1.0, False),
    ],
)
async def test_percent_rules(make_quote, kind, threshold, change_percent, expected):
    notifier = RecordingNotifier()
    rule = AlertRule(kind=kind, threshold=threshold)
    config = AppConfig(symbols=["TSLA"], alert_rules={"TSLA": [rule]})
    quote = correct_change(make_quote("TSLA", price=200.0, change_percent=change_percent))

    events = await AlertEvaluator(OrderCheckingStore(notifier), notifier).evaluate([quote], config)

    assert bool(events) is expected
    if expected:
        assert events[0].current_value.endswith("%")
        assert notifier.sent[0].message.endswith(events[0].current_value)


async def test_threshold_equality_does_not_fire(make_quote):
    notifier = RecordingNotifier()
    rule = AlertRule(kind=AlertKind.PRICE_ABOVE, threshold=100.0)
    config = AppConfig(symbols=["AAPL"], alert_rules={"AAPL": [rule]})
    events = await AlertEvaluator(OrderCheckingStore(notifier), notifier).evaluate(
        [make_quote("AAPL", price=100.0)], config
    )
    assert events == []


async def test_rules_for_other_symbols_ignored(make_quote):
    notifier = RecordingNotifier()
    rule = AlertRule(kind=AlertKind.PRICE_ABOVE, threshold=1.0)
    config = AppConfig(symbols=["AAPL", "MSFT"], alert_rules={"MSFT": [rule]})
    events = await AlertEvaluator(OrderCheckingStore(notifier), notifier).evaluate(
        [make_quote("AAPL", price=100.0)], config
    )
    assert events == []
    assert not rule.triggered


async def test_multiple_rules_fire_independently(make_quote):
    notifier = RecordingNotifier()
    above = AlertRule(kind=AlertKind.PRICE_ABOVE, threshold=50.0)
    pct = AlertRule(kind=AlertKind.PERCENT_CHANGE_ABOVE, threshold=1.0)
    config = AppConfig(symbols=["AAPL"], alert_rules={"AAPL": [above, pct]})
    evaluator = AlertEvaluator(OrderCheckingStore(notifier), notifier)

    events = await evaluator.evaluate([make_quote("AAPL", price=60.0, change_percent=0.5)], config)
    assert [e.rule.id for e in events] == [above.id]

    events = await evaluator.evaluate([make_quote("AAPL", price=60.0, change_percent=2.0)], config)
    assert [e.rule.id for e in events] == [pct.id]


async def test_feed_keeps_recent_and_delivers(make_quote):
    feed = AlertFeed(maxlen=2)
    received = []

    async def on_alert(note):
        received.append(note.symbol)

    await feed.subscribe(on_alert)
    rule = AlertRule(kind=AlertKind.PRICE_ABOVE, threshold=1.0)
    for symbol in ("A", "B", "C"):
        config = AppConfig(symbols=[symbol], alert_rules={symbol: [rule.model_copy(update={"id": symbol})]})
        await AlertEvaluator(OrderCheckingStore(RecordingNotifier()), feed).evaluate(
            [make_quote(symbol, price=10.0)], config
        )

    await feed.drain()
    assert [n.symbol for n in feed.recent()] == ["B", "C"]
    assert received == ["A", "B", "C"]
