"""OKX order payload construction for entries, exits and stop-loss updates."""

import logging
from typing import Any, Dict, List, Optional

from kline_agent.errors import ExchangeError

logger = logging.getLogger(__name__)


def format_px(value: float) -> str:
    """Render a price or size without float noise or exponent notation."""
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return f"{value:.12f}".rstrip("0").rstrip(".")


def _first_id(data: List[Dict[str, Any]], key: str, what: str) -> Optional[str]:
    """Return the id from an OKX order response, raising on a per-order rejection."""
    if not data:
        return None
    item = data[0]
    s_code = str(item.get("sCode", "0"))
    if s_code != "0":
        raise ExchangeError(f"{what} rejected: {item.get('sMsg')} (sCode: {s_code})")
    return item.get(key)


class OrderExecutor:
    """Builds and submits OKX v5 order payloads (cross margin, net position mode)."""

    def __init__(self, exchange_adapter, config):
        """
        Initialize order executor.

        Args:
            exchange_adapter: Exchange adapter for API calls
            config: Configuration object
        """
        self.exchange_adapter = exchange_adapter
        self.config = config

    async def open_market_with_stop(
        self,
        inst_id: str,
        side: str,
        size: float,
        stop_loss: float,
        take_profit: Optional[float] = None,
    ) -> Optional[str]:
        """Market order with an attached market-trigger stop-loss (and optional take-profit)."""
        logger.info(f"[{inst_id}] Market {side} {size} contracts, SL: {stop_loss}, TP: {take_profit}")
        algo_order: Dict[str, Any] = {
            'slTriggerPx': format_px(stop_loss),
            'slOrdPx': '-1',  # market execution on trigger
            'slTriggerPxType': 'last',
        }
        if take_profit is not None:
            algo_order['tpTriggerPx'] = format_px(take_profit)
            algo_order['tpOrdPx'] = '-1'
            algo_order['tpTriggerPxType'] = 'last'

        params = {
            'instId': inst_id,
            'tdMode': 'cross',
            'side': side,
            'ordType': 'market',
            'sz': format_px(size),
            'attachAlgoOrds': [algo_order],
        }
        data = await self.exchange_adapter.place_order(params)
        return _first_id(data, 'ordId', f"[{inst_id}] market {side} with stop")

    async def close_all(self, inst_id: str) -> None:
        """Market-close the whole net position for an instrument."""
        logger.info(f"[{inst_id}] Closing all positions at market")
        await self.exchange_adapter.close_position({'instId': inst_id, 'mgnMode': 'cross'})

    async def _resting_stops(self, inst_id: str) -> List[Dict[str, Any]]:
        stops: List[Dict[str, Any]] = []
        for ord_type in ("conditional", "oco"):
            orders = await self.exchange_adapter.get_pending_algo_orders(inst_id, ord_type)
            stops.extend(o for o in orders if o.get('slTriggerPx') and float(o['slTriggerPx']) > 0)
        return stops

    async def update_stop_loss(self, inst_id: str, stop_loss: float) -> Optional[str]:
        """
        Move the stop-loss for an instrument.

        Every resting stop is amended to the new trigger. When no stop rests, a
        conditional close-all stop is placed opposite the open position.

        Returns:
            Algo id of the amended or placed stop, or None when there is no position to protect
        """
        trigger = format_px(stop_loss)
        stops = await self._resting_stops(inst_id)
        if stops:
            algo_id = None
            for order in stops:
                logger.info(f"[{inst_id}] Amending stop {order.get('algoId')} from {order.get('slTriggerPx')} to {trigger}")
                data = await self.exchange_adapter.amend_algo_order({
                    'instId': inst_id,
                    'algoId': order.get('algoId'),
                    'newSlTriggerPx': trigger,
                    'newSlOrdPx': '-1',
                    'newSlTriggerPxType': 'last',
                })
                algo_id = _first_id(data, 'algoId', f"[{inst_id}] stop amendment") or order.get('algoId')
            return algo_id

        positions = await self.exchange_adapter.get_positions(self.config.product_type, inst_id)
        position = next((p for p in positions if p.quantity != 0), None)
        if position is None:
            logger.warning(f"[{inst_id}] No open position, nothing to protect with a stop-loss")
            return None

        side = 'sell' if position.quantity > 0 else 'buy'
        logger.info(f"[{inst_id}] No resting stop found, placing conditional {side} stop at {trigger}")
        data = await self.exchange_adapter.place_algo_order({
            'instId': inst_id,
            'tdMode': 'cross',
            'side': side,
            'ordType': 'conditional',
            'closeFraction': '1',
            'reduceOnly': True,
            'slTriggerPx': trigger,
            'slOrdPx': '-1',
            'slTriggerPxType': 'last',
        })
        return _first_id(data, 'algoId', f"[{inst_id}] conditional stop")
