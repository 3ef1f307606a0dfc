import asyncio
import signal

import pytest

from kline_agent.services.shutdown_service import ShutdownService


@pytest.mark.asyncio
async def test_shutdown_releases_waiters() -> None:
    service = ShutdownService()
    waiter = asyncio.create_task(service.wait())
    await asyncio.sleep(0)
    assert not waiter.done()

    service.shutdown()
    await asyncio.wait_for(waiter, timeout=1)

    assert service.requested


@pytest.mark.asyncio
async def test_repeated_shutdown_is_noop() -> None:
    service = ShutdownService()
    service.shutdown()
    service.shutdown()
    assert service.requested


@pytest.mark.asyncio
async def test_signal_sets_shutdown() -> None:
    service = ShutdownService()
    service._on_signal(signal.SIGTERM)
    assert service.requested
