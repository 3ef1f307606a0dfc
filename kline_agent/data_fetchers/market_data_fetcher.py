"""Market data fetching: candles, instruments and last price."""

import logging
from typing import List, Optional, Sequence

from kline_agent.errors import CandleDataError
from kline_agent.models import Candle, CandleSeries, Instrument

logger = logging.getLogger(__name__)


def _row_to_candle(row: Sequence) -> Candle:
    # OKX row: [ts, o, h, l, c, vol, volCcy, volCcyQuote, confirm]
    confirmed = str(row[8]) == "1" if len(row) > 8 else True
    return Candle(
        ts=int(row[0]),
        open=float(row[1]),
        high=float(row[2]),
        low=float(row[3]),
        close=float(row[4]),
        volume=float(row[5]),
        confirmed=confirmed,
    )


def normalize_candles(rows: Sequence[Sequence]) -> List[Candle]:
    """
    Convert newest-first exchange rows into closed, oldest-first candles.

    The leading (newest) row is the bar still forming and is always dropped,
    as is any other bar the exchange flags as unconfirmed.

    Args:
        rows: Raw candle rows, newest first

    Returns:
        Closed candles, oldest first
    """
    if not rows:
        return []
    candles = [_row_to_candle(row) for row in rows[1:]]
    closed = [c for c in candles if c.confirmed]
    if len(closed) != len(candles):
        logger.warning(f"Dropped {len(candles) - len(closed)} unconfirmed candle(s) beyond the leading bar")
    closed.reverse()
    return closed


class MarketDataFetcher:
    """The one place where exchange candle orientation is normalised."""

    def __init__(self, exchange_adapter, config):
        """
        Initialize market data fetcher.

        Args:
            exchange_adapter: Exchange adapter for API calls
            config: Configuration object
        """
        self.exchange_adapter = exchange_adapter
        self.config = config

    async def fetch_candles(self, inst_id: str, timeframe: str, count: int) -> CandleSeries:
        """
        Fetch ``count`` closed candles for one timeframe.

        One extra bar is requested to make up for the still-open leading bar.
        Callers that need chart or indicator warm-up context include it in ``count``.

        Args:
            inst_id: Instrument id (e.g. "BTC-USDT-SWAP")
            timeframe: Exchange bar label (e.g. "15m", "1H")
            count: Number of closed candles wanted

        Returns:
            CandleSeries, oldest first

        Raises:
            CandleDataError: If the exchange returned no closed candles
        """
        rows = await self.exchange_adapter.get_candles(inst_id, timeframe, count + 1)
        candles = normalize_candles(rows)
        if not candles:
            raise CandleDataError(f"[{inst_id}] No closed candles returned for {timeframe}")
        if len(candles) < count:
            logger.warning(f"[{inst_id}] Requested {count} {timeframe} candles, exchange returned {len(candles)}")
        return CandleSeries(inst_id=inst_id, timeframe=timeframe, candles=candles[-count:])

    async def fetch_instrument(self, inst_id: str) -> Optional[Instrument]:
        """Fetch fresh instrument metadata, or None if the exchange does not list it."""
        instruments = await self.exchange_adapter.get_instruments(self.config.product_type, inst_id=inst_id)
        for instrument in instruments:
            if instrument.inst_id == inst_id:
                return instrument
        logger.warning(f"[{inst_id}] Instrument not found for product type {self.config.product_type}")
        return None

    async def fetch_last_price(self, inst_id: str) -> float:
        return await self.exchange_adapter.get_last_price(inst_id)
