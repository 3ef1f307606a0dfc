"""Timeframe label parsing and candle-close boundary arithmetic."""

from kline_agent.config import ConfigurationError

# Minutes are lowercase only ("1M" is a month on the exchange); h/d/w accept either case.
_UNIT_MS = {
    "m": 60 * 1000,
    "h": 60 * 60 * 1000,
    "H": 60 * 60 * 1000,
    "d": 24 * 60 * 60 * 1000,
    "D": 24 * 60 * 60 * 1000,
    "w": 7 * 24 * 60 * 60 * 1000,
    "W": 7 * 24 * 60 * 60 * 1000,
}


def parse_timeframe_ms(timeframe: str) -> int:
    """
    Convert a timeframe label such as "15m", "1H" or "1D" to milliseconds.

    Args:
        timeframe: ``<positive int><unit>`` label

    Returns:
        Interval length in milliseconds

    Raises:
        ConfigurationError: If the unit is unknown or the prefix is not a positive integer
    """
    if not isinstance(timeframe, str) or len(timeframe) < 2:
        raise ConfigurationError(f"Invalid timeframe: {timeframe!r}")

    amount, unit = timeframe[:-1], timeframe[-1]
    if unit not in _UNIT_MS:
        raise ConfigurationError(f"Unsupported timeframe unit in {timeframe!r}")
    if not (amount.isascii() and amount.isdigit()) or int(amount) <= 0:
        raise ConfigurationError(f"Timeframe {timeframe!r} must start with a positive integer")

    return int(amount) * _UNIT_MS[unit]


def next_boundary_ms(now_ms: int, interval_ms: int) -> int:
    """Return the first multiple of ``interval_ms`` strictly after ``now_ms``."""
    if interval_ms <= 0:
        raise ConfigurationError("Interval must be positive")
    return (now_ms // interval_ms + 1) * interval_ms
