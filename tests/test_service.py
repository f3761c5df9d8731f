"""Tests for service wiring and the background poll loop."""

import asyncio

import pytest_asyncio

from tickerbar.core.models import AlertKind, Success
from tickerbar.service import build_services


@pytest_asyncio.fixture
async def services(settings, stub_source):
    svc = await build_services(settings, client=stub_source())
    yield svc
    await svc.close()


async def wait_for(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        assert asyncio.get_running_loop().time() < deadline, "condition not reached"
        await asyncio.sleep(0.01)


async def test_run_cycle_publishes_and_fires(services):
    await services.store.add_rule("AAPL", AlertKind.PRICE_ABOVE, 50.0)
    events = await services.run_cycle()
    assert [q.symbol for q in services.board.quotes] == ["AAPL", "MSFT"]
    assert [e.symbol for e in events] == ["AAPL"]
    assert await services.run_cycle() == []


async def test_poll_loop_survives_failing_cycle(services):
    config = await services.store.load()
    await services.store.save(config.model_copy(update={"refresh_interval": 0.01}))

    calls = []
    real_refresh_board = services.pipeline.refresh_board

    async def flaky(board, symbols):
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("cycle blew up")
        return await real_refresh_board(board, symbols)

    services.pipeline.refresh_board = flaky
    services.start()
    await wait_for(lambda: services.board.updated_at is not None)
    assert len(calls) >= 2


async def test_close_stops_polling_and_releases_resources(settings, stub_source):
    source = stub_source()
    svc = await build_services(settings, client=source)
    svc.start()
    await wait_for(lambda: svc.board.updated_at is not None)
    task = svc.poll_task

    await svc.close()

    assert task.cancelled()
    assert source.closed
    assert svc.poll_task is None


async def test_overlapping_cycles_fire_a_rule_once(settings, make_quote):
    gate = asyncio.Event()

    class GatedSource:
        async def fetch(self, symbol):
            await gate.wait()
            return Success(make_quote(symbol, price=200.0))

        async def close(self):
            pass

    svc = await build_services(settings, client=GatedSource())
    try:
        await svc.store.add_rule("AAPL", AlertKind.PRICE_ABOVE, 150.0)
        first = asyncio.create_task(svc.run_cycle())
        second = asyncio.create_task(svc.run_cycle())
        await asyncio.sleep(0.05)
        gate.set()
        events = await first + await second

        assert [e.symbol for e in events] == ["AAPL"]
        assert len(svc.feed.recent()) == 1
        assert (await svc.store.load()).alert_rules["AAPL"][0].triggered
    finally:
        await svc.close()


async def test_reset_rearms_for_next_cycle(services):
    await services.store.add_rule("AAPL", AlertKind.PRICE_ABOVE, 50.0)
    assert len(await services.run_cycle()) == 1
    assert await services.reset_alerts() == 1
    assert len(await services.run_cycle()) == 1
