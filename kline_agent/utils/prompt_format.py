"""Compact CSV rendering of candles and indicators for LLM prompts."""

from datetime import datetime, timezone
from typing import List, Optional, Sequence

from kline_agent.models import Candle

CSV_HEADER = "T,O,H,L,C,V,E,A"


def format_number(value: float) -> str:
    """
    Format a price with at most 5 decimals, keeping tiny values readable.

    Values below 1e-4 in magnitude use 4 significant digits so they do not
    collapse to zero.
    """
    if value != 0 and abs(value) < 0.0001:
        text = f"{value:.4g}"
    else:
        text = f"{value:.5f}".rstrip("0").rstrip(".")
    if text in ("-0", ""):
        return "0"
    return text


def format_candle_time(ts_ms: int) -> str:
    return datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc).strftime("%m-%d %H:%M")


def format_candles_with_indicators(
    candles: Sequence[Candle],
    ema: Sequence[Optional[float]],
    atr_pct: Sequence[Optional[float]],
) -> str:
    """
    Render candles as ``T,O,H,L,C,V,E,A`` rows (time, OHLC, volume, EMA, ATR%).

    Args:
        candles: Closed candles, oldest first
        ema: EMA values aligned with ``candles``
        atr_pct: ATR percentage values aligned with ``candles``

    Returns:
        CSV text with a header row, or "" for an empty series
    """
    if not candles:
        return ""

    # Tolerate misaligned indicator lists by using the shortest length
    length = min(len(candles), len(ema), len(atr_pct))
    lines: List[str] = [CSV_HEADER]
    for candle, ema_value, atr_value in zip(candles[:length], ema[:length], atr_pct[:length]):
        lines.append(
            ",".join(
                [
                    format_candle_time(candle.ts),
                    format_number(candle.open),
                    format_number(candle.high),
                    format_number(candle.low),
                    format_number(candle.close),
                    str(int(round(candle.volume))),
                    format_number(ema_value) if ema_value is not None else "-",
                    format_number(atr_value) if atr_value is not None else "-",
                ]
            )
        )
    return "\n".join(lines)
