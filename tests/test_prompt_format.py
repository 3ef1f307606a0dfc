from kline_agent.models import Candle
from kline_agent.utils.prompt_format import (
    CSV_HEADER,
    format_candle_time,
    format_candles_with_indicators,
    format_number,
)


def test_format_number_strips_trailing_zeros() -> None:
    assert format_number(42000.5) == "42000.5"
    assert format_number(1.0) == "1"
    assert format_number(0.123456789) == "0.12346"
    assert format_number(0.0) == "0"


def test_format_number_keeps_tiny_values_readable() -> None:
    assert format_number(0.0000123456) == "1.235e-05"


def test_format_candle_time_is_utc() -> None:
    # 2024-01-02 03:00:00 UTC
    assert format_candle_time(1704164400000) == "01-02 03:00"


def test_format_candles_with_indicators() -> None:
    candles = [
        Candle(ts=1704164400000, open=100.0, high=101.5, low=99.0, close=100.25, volume=12.6),
        Candle(ts=1704168000000, open=100.25, high=102.0, low=100.0, close=101.0, volume=7.2),
    ]
    text = format_candles_with_indicators(candles, [None, 100.5], [None, 1.23456])

    assert text.splitlines() == [
        CSV_HEADER,
        "01-02 03:00,100,101.5,99,100.25,13,-,-",
        "01-02 04:00,100.25,102,100,101,7,100.5,1.23456",
    ]


def test_format_candles_empty_series() -> None:
    assert format_candles_with_indicators([], [], []) == ""
