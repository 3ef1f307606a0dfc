from unittest.mock import AsyncMock, Mock

import pytest

from kline_agent.data_fetchers.market_data_fetcher import MarketDataFetcher, normalize_candles
from kline_agent.errors import CandleDataError
from kline_agent.models import Instrument

from conftest import build_config


def _row(ts: int, close: float, confirm: str = "1"):
    return [str(ts), str(close), str(close + 1), str(close - 1), str(close), "10", "0", "0", confirm]


def test_normalize_drops_forming_bar_and_reverses() -> None:
    rows = [_row(400, 4.0, "0"), _row(300, 3.0), _row(200, 2.0), _row(100, 1.0)]
    candles = normalize_candles(rows)
    assert [c.ts for c in candles] == [100, 200, 300]
    assert [c.close for c in candles] == [1.0, 2.0, 3.0]
    assert all(c.confirmed for c in candles)


def test_normalize_drops_leading_row_even_if_confirmed() -> None:
    rows = [_row(300, 3.0), _row(200, 2.0)]
    assert [c.ts for c in normalize_candles(rows)] == [200]


def test_normalize_drops_other_unconfirmed_rows() -> None:
    rows = [_row(300, 3.0, "0"), _row(200, 2.0, "0"), _row(100, 1.0)]
    assert [c.ts for c in normalize_candles(rows)] == [100]


def test_normalize_empty() -> None:
    assert normalize_candles([]) == []


@pytest.mark.asyncio
async def test_fetch_candles_requests_one_extra_and_trims() -> None:
    adapter = Mock()
    adapter.get_candles = AsyncMock(return_value=[_row(500 - i * 100, float(5 - i)) for i in range(5)])
    fetcher = MarketDataFetcher(adapter, build_config())

    series = await fetcher.fetch_candles("BTC-USDT-SWAP", "1H", 3)

    adapter.get_candles.assert_awaited_once_with("BTC-USDT-SWAP", "1H", 4)
    assert series.timeframe == "1H"
    assert [c.ts for c in series.candles] == [200, 300, 400]


@pytest.mark.asyncio
async def test_fetch_candles_raises_when_nothing_closed() -> None:
    adapter = Mock()
    adapter.get_candles = AsyncMock(return_value=[_row(100, 1.0, "0")])
    with pytest.raises(CandleDataError):
        await MarketDataFetcher(adapter, build_config()).fetch_candles("BTC-USDT-SWAP", "1H", 3)


@pytest.mark.asyncio
async def test_fetch_instrument_matches_inst_id() -> None:
    btc = Instrument.from_okx({"instId": "BTC-USDT-SWAP", "ctVal": "0.01", "ctType": "linear", "state": "live"})
    adapter = Mock()
    adapter.get_instruments = AsyncMock(return_value=[btc])
    fetcher = MarketDataFetcher(adapter, build_config())

    assert await fetcher.fetch_instrument("BTC-USDT-SWAP") is btc
    assert await fetcher.fetch_instrument("ETH-USDT-SWAP") is None
    adapter.get_instruments.assert_awaited_with("SWAP", inst_id="ETH-USDT-SWAP")
