import pytest

from kline_agent.models import Instrument, TradeAction
from kline_agent.position_calculators.order_sizer import PositionSizer


def _instrument(ct_val=0.01, min_sz=1.0, ct_type="linear") -> Instrument:
    return Instrument(
        inst_id="BTC-USDT-SWAP",
        inst_type="SWAP",
        ct_val=ct_val,
        ct_val_ccy="BTC",
        lot_sz=1.0,
        min_sz=min_sz,
        ct_type=ct_type,
        state="live",
    )


def test_long_entry_risks_configured_share_of_equity() -> None:
    result = PositionSizer(risk_pct=2).calculate(
        TradeAction.ENTRY_LONG, equity=10_000, price=100, stop_loss=95, instrument=_instrument()
    )
    assert result.ok
    assert result.risk_amount == pytest.approx(200)
    assert result.price_distance == pytest.approx(5)
    assert result.coin_quantity == pytest.approx(40)
    assert result.quantity == 4000


def test_short_entry_floors_fractional_lots() -> None:
    result = PositionSizer(risk_pct=1).calculate(
        TradeAction.ENTRY_SHORT, equity=1_000, price=100, stop_loss=103, instrument=_instrument(ct_val=0.1)
    )
    # 10 / 3 = 3.333 coins -> 33.33 lots -> 33
    assert result.quantity == 33


def test_below_minimum_size_is_skipped_not_rounded_up() -> None:
    result = PositionSizer(risk_pct=2).calculate(
        TradeAction.ENTRY_LONG, equity=10_000, price=100, stop_loss=95, instrument=_instrument(min_sz=5000)
    )
    assert not result.ok
    assert "below minimum size" in result.skip_reason


def test_zero_lots_is_skipped() -> None:
    result = PositionSizer(risk_pct=1).calculate(
        TradeAction.ENTRY_LONG, equity=10, price=100, stop_loss=50, instrument=_instrument(ct_val=1.0)
    )
    assert result.quantity is None


@pytest.mark.parametrize(
    "action, stop_loss",
    [(TradeAction.ENTRY_LONG, 105), (TradeAction.ENTRY_LONG, 100), (TradeAction.ENTRY_SHORT, 95)],
)
def test_stop_loss_on_wrong_side_is_skipped(action, stop_loss) -> None:
    result = PositionSizer(risk_pct=2).calculate(
        action, equity=10_000, price=100, stop_loss=stop_loss, instrument=_instrument()
    )
    assert result.quantity is None
    assert "stop-loss" in result.skip_reason


def test_non_positive_equity_is_skipped() -> None:
    result = PositionSizer(risk_pct=2).calculate(
        TradeAction.ENTRY_LONG, equity=0, price=100, stop_loss=95, instrument=_instrument()
    )
    assert result.quantity is None


def test_non_entry_action_is_skipped() -> None:
    result = PositionSizer(risk_pct=2).calculate(
        TradeAction.EXIT_LONG, equity=10_000, price=100, stop_loss=95, instrument=_instrument()
    )
    assert result.quantity is None


def test_inverse_contract_requires_explicit_quantity() -> None:
    sizer = PositionSizer(risk_pct=2)
    inverse = _instrument(ct_val=100, min_sz=1, ct_type="inverse")

    skipped = sizer.calculate(TradeAction.ENTRY_LONG, 10_000, 100, 95, inverse)
    assert skipped.quantity is None

    sized = sizer.calculate(TradeAction.ENTRY_LONG, 10_000, 100, 95, inverse, explicit_quantity=3)
    assert sized.quantity == 3


@pytest.mark.parametrize(
    "action, stop_loss",
    [
        (TradeAction.ENTRY_LONG, float("nan")),
        (TradeAction.ENTRY_SHORT, float("nan")),
        (TradeAction.ENTRY_LONG, -5.0),
        (TradeAction.ENTRY_LONG, 0.0),
        (TradeAction.ENTRY_SHORT, float("inf")),
    ],
)
def test_unusable_stop_loss_is_skipped(action, stop_loss) -> None:
    result = PositionSizer(risk_pct=2).calculate(
        action, equity=10_000, price=100, stop_loss=stop_loss, instrument=_instrument()
    )
    assert not result.ok
    assert "is not a positive price" in result.skip_reason


def test_nan_price_is_skipped() -> None:
    result = PositionSizer(risk_pct=2).calculate(
        TradeAction.ENTRY_LONG, equity=10_000, price=float("nan"), stop_loss=95, instrument=_instrument()
    )
    assert not result.ok
    assert "current price" in result.skip_reason
