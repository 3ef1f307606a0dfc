"""Per-instrument loop that wakes on every trade-timeframe candle close."""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from kline_agent.config import ConfigurationError
from kline_agent.utils.timeframe_utils import next_boundary_ms, parse_timeframe_ms

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class InstrumentScheduler:
    """
    Aligns cycles to candle closes of the trade timeframe for one instrument.

    A failing cycle is logged and the loop carries on. Only an unparseable
    timeframe ends the scheduler, and only this one.
    """

    def __init__(
        self,
        inst_id: str,
        config,
        symbol_processor,
        exchange_adapter=None,
        clock: Optional[Callable[[], int]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        """
        Initialize instrument scheduler.

        Args:
            inst_id: Instrument id
            config: Configuration object (trade interval, leverage)
            symbol_processor: Runs one cycle
            exchange_adapter: Used for best-effort account setup before the first wait
            clock: Returns current time in Unix milliseconds
            sleep: Coroutine that sleeps for the given seconds
        """
        self.inst_id = inst_id
        self.config = config
        self.symbol_processor = symbol_processor
        self.exchange_adapter = exchange_adapter
        self._clock = clock or _now_ms
        self._sleep = sleep or asyncio.sleep

        self.cycles_completed = 0
        self.cycles_failed = 0
        self.next_run_ms: Optional[int] = None
        self.last_error: Optional[str] = None

    async def _init_account(self) -> None:
        if self.exchange_adapter is None:
            return
        try:
            await self.exchange_adapter.init_account_settings(self.inst_id, self.config.leverage)
        except Exception as e:
            logger.warning(f"[{self.inst_id}] Account setup failed, continuing with current settings: {e}")

    async def run(self, max_cycles: Optional[int] = None) -> None:
        """
        Run the aligned loop.

        Args:
            max_cycles: Stop after this many cycles (None runs until cancelled)

        Raises:
            ConfigurationError: If the trade timeframe cannot be parsed
        """
        timeframe = self.config.trade_interval
        try:
            interval_ms = parse_timeframe_ms(timeframe)
        except ConfigurationError as e:
            logger.error(f"[{self.inst_id}] Fatal scheduling error, scheduler stopped: {e}")
            raise

        logger.info(f"[{self.inst_id}] Starting strategy loop, trade timeframe: {timeframe}")
        await self._init_account()

        cycles = 0
        while max_cycles is None or cycles < max_cycles:
            now = self._clock()
            self.next_run_ms = next_boundary_ms(now, interval_ms)
            wait_ms = self.next_run_ms - now
            logger.info(f"[{self.inst_id}] Waiting for next {timeframe} candle close... {wait_ms / 1000:.1f}s")
            await self._sleep(wait_ms / 1000)

            try:
                await self.symbol_processor.process_cycle(self.inst_id)
                self.cycles_completed += 1
                self.last_error = None
                logger.info(f"[{self.inst_id}] {timeframe} cycle finished")
            except Exception as e:
                self.cycles_failed += 1
                self.last_error = str(e)
                logger.error(f"[{self.inst_id}] Cycle failed, continuing with next candle: {e}", exc_info=True)
            cycles += 1
