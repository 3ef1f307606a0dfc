"""Loop controller: owns the per-instrument schedulers and the global run state."""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from kline_agent.analysis_pipeline import AnalysisPipeline
from kline_agent.config import Config
from kline_agent.controllers.instrument_scheduler import InstrumentScheduler
from kline_agent.controllers.symbol_processor import SymbolProcessor
from kline_agent.data_fetchers.market_data_fetcher import MarketDataFetcher
from kline_agent.decision_provider import create_decision_provider
from kline_agent.errors import SelfCheckError
from kline_agent.exchange_adapters.exchange_adapter import ExchangeAdapter
from kline_agent.llm_connector import LLMConnector
from kline_agent.logger import CycleLogger
from kline_agent.renderers.chart_renderer import ChartRenderer
from kline_agent.trade_executor import TradeExecutor
from kline_agent.utils.retry import RetrySpec

logger = logging.getLogger(__name__)


class BotStatus(str, Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    STOPPED = "STOPPED"


StatusListener = Callable[[BotStatus], None]


class LoopController:
    """Orchestrates the instrument schedulers and handles start/stop."""

    def __init__(
        self,
        config: Config,
        exchange_adapter,
        llm,
        symbol_processor,
        renderer=None,
        scheduler_factory: Optional[Callable[[str], InstrumentScheduler]] = None,
    ):
        """
        Initialize loop controller.

        Args:
            config: Configuration object
            exchange_adapter: Shared exchange client
            llm: Shared LLM client
            symbol_processor: Runs one cycle for any instrument
            renderer: Shared chart renderer, closed on shutdown
            scheduler_factory: Builds the scheduler for one instrument id
        """
        self.config = config
        self.exchange_adapter = exchange_adapter
        self.llm = llm
        self.symbol_processor = symbol_processor
        self.renderer = renderer
        self._scheduler_factory = scheduler_factory or self._default_scheduler

        self._status = BotStatus.IDLE
        self._listeners: List[StatusListener] = []
        self._tasks: Dict[str, asyncio.Task] = {}
        self._schedulers: Dict[str, InstrumentScheduler] = {}
        self._start_lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: Config) -> "LoopController":
        """Build every client once and wire the components together."""
        logger.info("Initializing loop controller components...")
        fetch_retry = RetrySpec(
            max_retries=config.fetch_max_retries,
            delay=config.retry_delay_seconds,
            backoff=config.retry_backoff,
        )
        analysis_retry = RetrySpec(
            max_retries=config.analysis_max_retries,
            delay=config.retry_delay_seconds,
            backoff=config.retry_backoff,
        )
        execution_retry = RetrySpec(
            max_retries=config.execution_max_retries,
            delay=config.retry_delay_seconds,
            backoff=config.retry_backoff,
        )

        exchange_adapter = ExchangeAdapter(config)
        llm = LLMConnector(
            api_key=config.llm_api_key,
            base_url=config.llm_base_url,
            default_model=config.main_model,
            temperature=config.llm_temperature,
        )
        renderer = ChartRenderer()
        market_data_fetcher = MarketDataFetcher(exchange_adapter, config)

        symbol_processor = SymbolProcessor(
            config,
            AnalysisPipeline(config, market_data_fetcher, exchange_adapter, llm, renderer, fetch_retry),
            create_decision_provider(config, llm),
            TradeExecutor(config, exchange_adapter, market_data_fetcher, retry_spec=execution_retry),
            cycle_logger=CycleLogger(
                "logs/cycle_log.jsonl",
                secrets=[config.exchange_api_key, config.exchange_api_secret,
                         config.exchange_api_passphrase, config.llm_api_key],
            ),
            analysis_retry=analysis_retry,
        )
        logger.info("Loop controller initialized successfully")
        return cls(config, exchange_adapter, llm, symbol_processor, renderer=renderer)

    def _default_scheduler(self, inst_id: str) -> InstrumentScheduler:
        return InstrumentScheduler(inst_id, self.config, self.symbol_processor, self.exchange_adapter)

    @property
    def status(self) -> BotStatus:
        return self._status

    @property
    def running_instruments(self) -> List[str]:
        return sorted(inst_id for inst_id, task in self._tasks.items() if not task.done())

    def add_status_listener(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    def remove_status_listener(self, listener: StatusListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _set_status(self, status: BotStatus) -> None:
        self._status = status
        logger.info(f"Bot status: {status.value}")
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception as e:
                logger.warning(f"Status listener failed: {e}")

    async def self_check(self) -> None:
        """
        Test exchange and LLM connectivity.

        Raises:
            SelfCheckError: If either round-trip fails
        """
        logger.info("Testing exchange connectivity...")
        try:
            balance = await self.exchange_adapter.get_balance(self.config.quote_currency)
            logger.info(f"Exchange connectivity OK (equity {balance.total} {self.config.quote_currency})")
        except Exception as e:
            logger.error(f"Exchange connectivity FAILED: {e}")
            raise SelfCheckError(f"Exchange connectivity check failed: {e}") from e

        logger.info("Testing LLM connectivity...")
        try:
            await self.llm.chat("You are a health check.", "Reply with OK.", max_tokens=10)
            logger.info("LLM connectivity OK")
        except Exception as e:
            logger.error(f"LLM connectivity FAILED: {e}")
            raise SelfCheckError(f"LLM connectivity check failed: {e}") from e

    async def start(self) -> bool:
        """
        Run the self-check, then spawn one scheduler task per configured instrument.

        Returns:
            True if schedulers were started, False if already running or starting

        Raises:
            SelfCheckError: If the self-check fails; the state is left unchanged
        """
        if self._start_lock.locked():
            logger.warning("Start requested while another start is in progress")
            return False

        async with self._start_lock:
            if self._status == BotStatus.RUNNING:
                logger.warning("Start requested but the bot is already running")
                return False

            logger.info("=" * 60)
            logger.info(f"STARTING KLINE AGENT ({self.config.run_mode.upper()} mode)")
            logger.info("=" * 60)
            await self.self_check()

            for inst_id in self.config.symbols:
                scheduler = self._scheduler_factory(inst_id)
                task = asyncio.create_task(scheduler.run(), name=f"scheduler-{inst_id}")
                task.add_done_callback(lambda t, i=inst_id: self._on_scheduler_done(i, t))
                self._schedulers[inst_id] = scheduler
                self._tasks[inst_id] = task
                logger.info(f"[{inst_id}] Scheduler started")

            self._set_status(BotStatus.RUNNING)
            return True

    def _on_scheduler_done(self, inst_id: str, task: asyncio.Task) -> None:
        if task.cancelled():
            logger.info(f"[{inst_id}] Scheduler cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.error(f"[{inst_id}] Scheduler terminated: {error}")
        else:
            logger.info(f"[{inst_id}] Scheduler finished")

    def stop(self) -> None:
        """Cancel every scheduler task without waiting for in-flight cycles."""
        for inst_id, task in self._tasks.items():
            if not task.done():
                task.cancel()
                logger.info(f"[{inst_id}] Scheduler stopping")
        self._tasks.clear()
        self._schedulers.clear()
        self._set_status(BotStatus.STOPPED)

    def pause(self) -> None:
        """Currently the same as stop(); there is no suspend/resume."""
        logger.info("Pause requested (equivalent to stop)")
        self.stop()

    def status_snapshot(self) -> Dict[str, Any]:
        """Status payload for the control API."""
        schedulers = {}
        for inst_id, scheduler in self._schedulers.items():
            task = self._tasks.get(inst_id)
            schedulers[inst_id] = {
                "alive": task is not None and not task.done(),
                "cycles_completed": scheduler.cycles_completed,
                "cycles_failed": scheduler.cycles_failed,
                "next_run_ms": scheduler.next_run_ms,
                "last_error": scheduler.last_error,
            }
        return {
            "status": self._status.value,
            "mode": self.config.run_mode,
            "symbols": list(self.config.symbols),
            "trade_interval": self.config.trade_interval,
            "decision_topology": self.config.decision_topology,
            "schedulers": schedulers,
        }

    async def shutdown(self) -> None:
        """Stop schedulers and close the shared clients."""
        tasks = [t for t in self._tasks.values() if not t.done()]
        if self._status == BotStatus.RUNNING or tasks:
            self.stop()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        for name, client in (("renderer", self.renderer), ("LLM client", self.llm), ("exchange client", self.exchange_adapter)):
            close = getattr(client, "close", None)
            if close is None:
                continue
            try:
                await close()
            except Exception as e:
                logger.warning(f"Failed to close {name}: {e}")
        logger.info("Shutdown complete")
