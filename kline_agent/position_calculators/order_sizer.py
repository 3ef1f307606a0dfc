"""Risk-based position sizing in contract lots."""

import logging
import math
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional

from kline_agent.models import Instrument, TradeAction

logger = logging.getLogger(__name__)


@dataclass
class SizingResult:
    """Outcome of a sizing attempt; ``quantity`` is None when the order must be skipped."""

    quantity: Optional[float]
    risk_amount: float = 0.0
    price_distance: float = 0.0
    coin_quantity: float = 0.0
    skip_reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.quantity is not None


class PositionSizer:
    """
    Sizes entries so that hitting the stop-loss loses ``risk_pct`` of equity.

    risk_amount = equity * risk_pct / 100
    coin_quantity = risk_amount / |price - stop_loss|
    lots = floor(coin_quantity / contract_value)

    Orders below the instrument minimum are skipped rather than rounded up.
    """

    def __init__(self, risk_pct: float):
        """
        Initialize position sizer.

        Args:
            risk_pct: Percent of equity risked per trade (0 < risk_pct <= 100)
        """
        self.risk_pct = risk_pct

    def _skip(self, reason: str, **details) -> SizingResult:
        logger.warning(f"Order skipped: {reason}")
        return SizingResult(quantity=None, skip_reason=reason, **details)

    def calculate(
        self,
        action: TradeAction,
        equity: float,
        price: float,
        stop_loss: float,
        instrument: Instrument,
        explicit_quantity: Optional[float] = None,
    ) -> SizingResult:
        """
        Calculate the order size in contracts.

        Args:
            action: ENTRY_LONG or ENTRY_SHORT
            equity: Account equity in quote currency
            price: Current last price
            stop_loss: Stop-loss trigger price
            instrument: Fresh instrument metadata
            explicit_quantity: Caller-supplied contracts, used only for non-linear contracts

        Returns:
            SizingResult
        """
        if action not in (TradeAction.ENTRY_LONG, TradeAction.ENTRY_SHORT):
            return self._skip(f"{action.value} is not an entry")
        if not math.isfinite(equity) or equity <= 0:
            return self._skip(f"account equity {equity} is not positive")
        if not math.isfinite(price) or price <= 0:
            return self._skip(f"current price {price} is not positive")
        if stop_loss is None or not math.isfinite(stop_loss) or stop_loss <= 0:
            return self._skip(f"stop-loss {stop_loss} is not a positive price")
        if action == TradeAction.ENTRY_LONG and stop_loss >= price:
            return self._skip(f"long stop-loss {stop_loss} is not below current price {price}")
        if action == TradeAction.ENTRY_SHORT and stop_loss <= price:
            return self._skip(f"short stop-loss {stop_loss} is not above current price {price}")

        risk_amount = equity * self.risk_pct / 100
        price_distance = abs(price - stop_loss)
        coin_quantity = risk_amount / price_distance
        details = dict(risk_amount=risk_amount, price_distance=price_distance, coin_quantity=coin_quantity)

        if not instrument.is_linear:
            # Inverse contracts are not auto-sized
            if explicit_quantity is None or explicit_quantity <= 0:
                return self._skip(
                    f"{instrument.inst_id} is not a linear contract and no explicit quantity was given", **details
                )
            if explicit_quantity < instrument.min_sz:
                return self._skip(
                    f"explicit quantity {explicit_quantity} is below minimum size {instrument.min_sz}", **details
                )
            return SizingResult(quantity=explicit_quantity, **details)

        if instrument.ct_val <= 0:
            return self._skip(f"{instrument.inst_id} has invalid contract value {instrument.ct_val}", **details)

        try:
            lots = math.floor(Decimal(str(coin_quantity)) / Decimal(str(instrument.ct_val)))
        except (InvalidOperation, OverflowError, ValueError) as e:
            return self._skip(f"could not convert {coin_quantity} coins to lots: {e}", **details)

        if lots <= 0 or lots < instrument.min_sz:
            return self._skip(
                f"{lots} lots is below minimum size {instrument.min_sz} "
                f"(risk amount {risk_amount:.4f}, price distance {price_distance})",
                **details,
            )

        logger.info(
            f"Sized {instrument.inst_id}: risk {risk_amount:.4f} over distance {price_distance} "
            f"-> {coin_quantity:.6f} coins -> {lots} lots"
        )
        return SizingResult(quantity=float(lots), **details)
