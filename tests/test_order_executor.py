from unittest.mock import AsyncMock, Mock

import pytest

from kline_agent.errors import ExchangeError
from kline_agent.executors.order_executor import OrderExecutor, format_px
from kline_agent.models import Position

from conftest import build_config

INST = "BTC-USDT-SWAP"


def _adapter(stops=None, positions=None):
    adapter = Mock()
    adapter.place_order = AsyncMock(return_value=[{"ordId": "o-1", "sCode": "0"}])
    adapter.close_position = AsyncMock(return_value=[{"instId": INST}])
    adapter.amend_algo_order = AsyncMock(return_value=[{"algoId": "a-1", "sCode": "0"}])
    adapter.place_algo_order = AsyncMock(return_value=[{"algoId": "a-new", "sCode": "0"}])
    stops = stops or {}
    adapter.get_pending_algo_orders = AsyncMock(side_effect=lambda inst_id, ord_type: stops.get(ord_type, []))
    adapter.get_positions = AsyncMock(return_value=positions or [])
    return adapter


def _position(quantity: float) -> Position:
    return Position(inst_id=INST, quantity=quantity, entry_price=100.0, mark_price=100.0, unrealized_pnl=0.0, leverage=3)


def test_format_px() -> None:
    assert format_px(4000.0) == "4000"
    assert format_px(0.1 + 0.2) == "0.3"
    assert format_px(0.00001234) == "0.00001234"


@pytest.mark.asyncio
async def test_open_market_with_stop_attaches_market_trigger_stop() -> None:
    adapter = _adapter()
    order_id = await OrderExecutor(adapter, build_config()).open_market_with_stop(INST, "buy", 4000, 95.5)

    assert order_id == "o-1"
    adapter.place_order.assert_awaited_once_with({
        "instId": INST,
        "tdMode": "cross",
        "side": "buy",
        "ordType": "market",
        "sz": "4000",
        "attachAlgoOrds": [{"slTriggerPx": "95.5", "slOrdPx": "-1", "slTriggerPxType": "last"}],
    })


@pytest.mark.asyncio
async def test_order_rejection_raises() -> None:
    adapter = _adapter()
    adapter.place_order = AsyncMock(return_value=[{"ordId": "", "sCode": "51008", "sMsg": "Insufficient margin"}])
    with pytest.raises(ExchangeError, match="51008"):
        await OrderExecutor(adapter, build_config()).open_market_with_stop(INST, "sell", 10, stop_loss=105.0)


@pytest.mark.asyncio
async def test_close_all_uses_cross_margin() -> None:
    adapter = _adapter()
    await OrderExecutor(adapter, build_config()).close_all(INST)
    adapter.close_position.assert_awaited_once_with({"instId": INST, "mgnMode": "cross"})


@pytest.mark.asyncio
async def test_update_stop_loss_amends_resting_stops() -> None:
    adapter = _adapter(stops={
        "conditional": [{"algoId": "a-1", "slTriggerPx": "90"}],
        "oco": [{"algoId": "a-2", "slTriggerPx": "91"}, {"algoId": "tp-only", "slTriggerPx": ""}],
    })
    await OrderExecutor(adapter, build_config()).update_stop_loss(INST, 97)

    amended = [call.args[0]["algoId"] for call in adapter.amend_algo_order.await_args_list]
    assert amended == ["a-1", "a-2"]
    assert adapter.amend_algo_order.await_args.args[0]["newSlTriggerPx"] == "97"
    adapter.place_algo_order.assert_not_awaited()


@pytest.mark.asyncio
async def test_update_stop_loss_places_stop_when_none_rests() -> None:
    adapter = _adapter(positions=[_position(-20)])
    algo_id = await OrderExecutor(adapter, build_config()).update_stop_loss(INST, 110)

    assert algo_id == "a-new"
    params = adapter.place_algo_order.await_args.args[0]
    assert params["side"] == "buy"
    assert params["ordType"] == "conditional"
    assert params["closeFraction"] == "1"
    assert params["slTriggerPx"] == "110"


@pytest.mark.asyncio
async def test_update_stop_loss_without_position_returns_none() -> None:
    adapter = _adapter(positions=[_position(0)])
    assert await OrderExecutor(adapter, build_config()).update_stop_loss(INST, 110) is None
    adapter.place_algo_order.assert_not_awaited()
