"""EMA and ATR calculations over closed candle series."""

import math
from typing import List, Optional, Sequence

import pandas as pd

from kline_agent.models import Candle


def _to_optional_list(series: pd.Series) -> List[Optional[float]]:
    return [None if pd.isna(value) else float(value) for value in series.tolist()]


def _seeded_smoothing(values: pd.Series, period: int, alpha: float) -> pd.Series:
    """
    Exponential smoothing seeded with the simple average of the first ``period`` values.

    Positions before ``period - 1`` stay NaN; from the seed on each value is
    ``x * alpha + prev * (1 - alpha)``.
    """
    seeded = pd.Series(math.nan, index=values.index, dtype="float64")
    seeded.iloc[period - 1] = values.iloc[:period].mean()
    seeded.iloc[period:] = values.iloc[period:]
    return seeded.ewm(alpha=alpha, adjust=False).mean()


def calculate_ema(closes: Sequence[float], period: int = 20) -> List[Optional[float]]:
    """
    Compute the exponential moving average of oldest-first closes.

    Args:
        closes: Closing prices, oldest first
        period: EMA period

    Returns:
        List aligned 1:1 with ``closes``; None where warm-up data is insufficient
    """
    if period <= 0:
        raise ValueError("EMA period must be positive")
    length = len(closes)
    if length < period:
        return [None] * length

    prices = pd.Series(list(closes), dtype="float64")
    return _to_optional_list(_seeded_smoothing(prices, period, 2.0 / (period + 1)))


def calculate_atr(candles: Sequence[Candle], period: int = 14) -> List[Optional[float]]:
    """
    Compute the average true range with Wilder smoothing.

    The first true range has no previous close, so it is ``high - low``.

    Args:
        candles: Closed candles, oldest first
        period: ATR period

    Returns:
        List aligned 1:1 with ``candles``; None where warm-up data is insufficient
    """
    if period <= 0:
        raise ValueError("ATR period must be positive")
    length = len(candles)
    if length < period:
        return [None] * length

    df = pd.DataFrame(
        [(c.high, c.low, c.close) for c in candles],
        columns=["high", "low", "close"],
        dtype="float64",
    )
    prev_close = df["close"].shift()
    high_low = df["high"] - df["low"]
    high_close = (df["high"] - prev_close).abs()
    low_close = (df["low"] - prev_close).abs()
    # max() skips the NaN produced by shift() on the first row
    true_range = pd.concat([high_low, high_close, low_close], axis=1).max(axis=1)

    return _to_optional_list(_seeded_smoothing(true_range, period, 1.0 / period))


def calculate_atr_percentage(candles: Sequence[Candle], period: int = 14) -> List[Optional[float]]:
    """ATR expressed as a percentage of each bar's close (0 when the close is 0)."""
    result: List[Optional[float]] = []
    for candle, atr in zip(candles, calculate_atr(candles, period)):
        if atr is None:
            result.append(None)
        elif candle.close == 0:
            result.append(0.0)
        else:
            result.append(atr / candle.close * 100)
    return result
