import asyncio

import pytest

from kline_agent.errors import ExchangeAuthError, ExchangeTransientError, is_transient_error
from kline_agent.utils.retry import RetrySpec, with_retry


class Flaky:
    """Fails ``failures`` times with ``error`` before returning ``result``."""

    def __init__(self, failures: int, error: Exception, result="ok"):
        self.failures = failures
        self.error = error
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.result


@pytest.mark.asyncio
async def test_with_retry_succeeds_after_transient_failures() -> None:
    fn = Flaky(failures=2, error=ExchangeTransientError("timeout"))
    result = await with_retry(fn, RetrySpec(max_retries=3, delay=0))
    assert result == "ok"
    assert fn.calls == 3


@pytest.mark.asyncio
async def test_with_retry_reraises_last_error_after_budget() -> None:
    error = ExchangeTransientError("still down")
    fn = Flaky(failures=10, error=error)
    with pytest.raises(ExchangeTransientError) as exc_info:
        await with_retry(fn, RetrySpec(max_retries=2, delay=0, backoff=False))
    assert exc_info.value is error
    assert fn.calls == 3


@pytest.mark.asyncio
async def test_with_retry_zero_retries_attempts_once() -> None:
    fn = Flaky(failures=1, error=RuntimeError("boom"))
    with pytest.raises(RuntimeError):
        await with_retry(fn, RetrySpec(max_retries=0, delay=0))
    assert fn.calls == 1


@pytest.mark.asyncio
async def test_with_retry_does_not_retry_rejected_errors() -> None:
    fn = Flaky(failures=5, error=ExchangeAuthError("bad signature"))
    spec = RetrySpec(max_retries=3, delay=0, retry_on=is_transient_error)
    with pytest.raises(ExchangeAuthError):
        await with_retry(fn, spec)
    assert fn.calls == 1


@pytest.mark.asyncio
async def test_with_retry_propagates_cancellation() -> None:
    calls = 0

    async def cancelled():
        nonlocal calls
        calls += 1
        raise asyncio.CancelledError()

    with pytest.raises(asyncio.CancelledError):
        await with_retry(cancelled, RetrySpec(max_retries=3, delay=0))
    assert calls == 1


def test_retry_spec_helpers_return_copies() -> None:
    base = RetrySpec(max_retries=4)
    labelled = base.with_context("fetch candles")
    filtered = labelled.with_predicate(is_transient_error)
    assert base.context == "operation"
    assert labelled.context == "fetch candles"
    assert filtered.retry_on is is_transient_error
    assert filtered.max_retries == 4
