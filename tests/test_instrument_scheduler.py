from unittest.mock import AsyncMock, Mock

import pytest

from kline_agent.config import ConfigurationError
from kline_agent.controllers.instrument_scheduler import InstrumentScheduler

from conftest import build_config

HOUR_MS = 3_600_000


class FakeClock:
    """Clock that advances only when the scheduler sleeps."""

    def __init__(self, now_ms: int):
        self.now_ms = now_ms
        self.sleeps = []

    def __call__(self) -> int:
        return self.now_ms

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now_ms += int(round(seconds * 1000))


class FlakyProcessor:
    def __init__(self, fail_on=()):
        self.fail_on = set(fail_on)
        self.calls = 0

    async def process_cycle(self, inst_id):
        self.calls += 1
        if self.calls in self.fail_on:
            raise RuntimeError(f"cycle {self.calls} exploded")


@pytest.mark.asyncio
async def test_cycles_align_to_candle_close() -> None:
    clock = FakeClock(10 * HOUR_MS + 15 * 60_000)
    processor = FlakyProcessor()
    scheduler = InstrumentScheduler("BTC-USDT-SWAP", build_config(), processor, clock=clock, sleep=clock.sleep)

    await scheduler.run(max_cycles=3)

    assert clock.sleeps == [2700.0, 3600.0, 3600.0]
    assert processor.calls == 3
    assert scheduler.cycles_completed == 3
    assert scheduler.next_run_ms == 13 * HOUR_MS


@pytest.mark.asyncio
async def test_failed_cycle_does_not_stop_loop() -> None:
    clock = FakeClock(0)
    processor = FlakyProcessor(fail_on={1})
    scheduler = InstrumentScheduler("BTC-USDT-SWAP", build_config(), processor, clock=clock, sleep=clock.sleep)

    await scheduler.run(max_cycles=2)

    assert processor.calls == 2
    assert scheduler.cycles_failed == 1
    assert scheduler.cycles_completed == 1
    assert scheduler.last_error is None


@pytest.mark.asyncio
async def test_bad_timeframe_stops_scheduler() -> None:
    clock = FakeClock(0)
    processor = FlakyProcessor()
    scheduler = InstrumentScheduler(
        "BTC-USDT-SWAP", build_config(trade_interval="1X"), processor, clock=clock, sleep=clock.sleep
    )

    with pytest.raises(ConfigurationError):
        await scheduler.run(max_cycles=1)
    assert processor.calls == 0


@pytest.mark.asyncio
async def test_account_setup_failure_is_tolerated() -> None:
    clock = FakeClock(0)
    adapter = Mock()
    adapter.init_account_settings = AsyncMock(side_effect=RuntimeError("set leverage failed"))
    processor = FlakyProcessor()
    scheduler = InstrumentScheduler(
        "BTC-USDT-SWAP", build_config(leverage=5), processor, adapter, clock=clock, sleep=clock.sleep
    )

    await scheduler.run(max_cycles=1)

    adapter.init_account_settings.assert_awaited_once_with("BTC-USDT-SWAP", 5)
    assert processor.calls == 1
