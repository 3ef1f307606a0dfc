"""Error taxonomy shared by the agent's collaborators."""

import asyncio

import openai

from kline_agent.config import ConfigurationError


class ExchangeError(Exception):
    """Exchange rejected a request or returned an unusable payload."""


class ExchangeAuthError(ExchangeError):
    """Signature, key or passphrase problem. Never retried."""


class ExchangeTransientError(ExchangeError):
    """Network failure, timeout or rate limit. Safe to retry."""


class StructuredOutputError(ValueError):
    """LLM response could not be parsed as a JSON object."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw


class CandleDataError(RuntimeError):
    """Core candle data missing for a timeframe; the cycle cannot continue."""


class SelfCheckError(RuntimeError):
    """Pre-flight connectivity check failed; the orchestrator refuses to start."""


_TRANSIENT_TYPES = (
    ExchangeTransientError,
    openai.APIConnectionError,  # includes APITimeoutError
    openai.RateLimitError,
    openai.InternalServerError,
    asyncio.TimeoutError,
    ConnectionError,
)


def is_transient_error(exc: BaseException) -> bool:
    """
    Decide whether an error is worth retrying.

    Configuration and credential errors are permanent; network failures,
    timeouts and rate limits are transient.
    """
    if isinstance(exc, (ConfigurationError, ExchangeAuthError, openai.AuthenticationError)):
        return False
    return isinstance(exc, _TRANSIENT_TYPES)


__all__ = [
    "CandleDataError",
    "ConfigurationError",
    "ExchangeAuthError",
    "ExchangeError",
    "ExchangeTransientError",
    "SelfCheckError",
    "StructuredOutputError",
    "is_transient_error",
]
