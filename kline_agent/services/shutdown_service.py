"""Shutdown service for graceful application termination."""

import asyncio
import logging
import signal

logger = logging.getLogger(__name__)


class ShutdownService:
    """Turns SIGINT/SIGTERM into an awaitable shutdown event."""

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def requested(self) -> bool:
        return self._event.is_set()

    def shutdown(self) -> None:
        """Request shutdown; the main coroutine then stops schedulers and closes clients."""
        if self._event.is_set():
            return
        logger.info("=" * 60)
        logger.info("SHUTDOWN SIGNAL RECEIVED")
        logger.info("=" * 60)
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def register_signal_handlers(self) -> None:
        """
        Register signal handlers for graceful shutdown.

        Handles SIGINT (Ctrl+C) and SIGTERM (kill command).
        """
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, self._on_signal, signum)
            except NotImplementedError:
                # Windows event loops: fall back to the synchronous handler
                signal.signal(signum, lambda s, _frame: loop.call_soon_threadsafe(self._on_signal, s))

        logger.info("Signal handlers registered (SIGINT, SIGTERM)")

    def _on_signal(self, signum: int) -> None:
        signal_name = "SIGINT" if signum == signal.SIGINT else "SIGTERM"
        logger.info(f"Received {signal_name}")
        self.shutdown()
