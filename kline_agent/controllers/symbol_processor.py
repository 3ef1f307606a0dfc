"""One decision cycle for one instrument: analysis, decision, execution, history."""

import logging
import os
import time
from typing import Dict, Optional

from kline_agent.errors import CandleDataError, is_transient_error
from kline_agent.memory.history_store import HistoryStore
from kline_agent.models import CycleLog
from kline_agent.utils.retry import RetrySpec, with_retry

logger = logging.getLogger(__name__)


def _retry_analysis_error(exc: BaseException) -> bool:
    # Candles may simply be late right after the close
    return isinstance(exc, CandleDataError) or is_transient_error(exc)


class SymbolProcessor:
    """Runs cycles for any instrument; per-instrument state is the history file only."""

    def __init__(
        self,
        config,
        analysis_pipeline,
        decision_provider,
        trade_executor,
        cycle_logger=None,
        analysis_retry: Optional[RetrySpec] = None,
    ):
        """
        Initialize symbol processor.

        Args:
            config: Configuration object
            analysis_pipeline: AnalysisPipeline instance
            decision_provider: DecisionProvider instance
            trade_executor: TradeExecutor instance
            cycle_logger: CycleLogger for the JSONL journal (optional)
            analysis_retry: Retry budget for the analysis + decision phase
        """
        self.config = config
        self.analysis_pipeline = analysis_pipeline
        self.decision_provider = decision_provider
        self.trade_executor = trade_executor
        self.cycle_logger = cycle_logger
        self.analysis_retry = (analysis_retry or RetrySpec(max_retries=1)).with_predicate(_retry_analysis_error)
        self._history: Dict[str, HistoryStore] = {}

    def history_store(self, inst_id: str) -> HistoryStore:
        """History file for one instrument (``HISTORY_DIR/<instId>.md``)."""
        store = self._history.get(inst_id)
        if store is None:
            path = os.path.join(self.config.history_dir, f"{inst_id}.md")
            store = HistoryStore(path, self.config.history_max_lines)
            self._history[inst_id] = store
        return store

    def _read_history(self, inst_id: str) -> str:
        try:
            return self.history_store(inst_id).read()
        except OSError as e:
            logger.warning(f"[{inst_id}] Could not read decision history, continuing without it: {e}")
            return ""

    async def process_cycle(self, inst_id: str) -> CycleLog:
        """
        Run one full cycle for an instrument.

        Analysis and decision share the analysis retry budget; execution has its
        own inside the trade executor. A failed history update is logged and
        does not fail the cycle.

        Args:
            inst_id: Instrument id

        Returns:
            CycleLog describing what happened

        Raises:
            Exception: If analysis or decision failed after retries
        """
        started = time.monotonic()
        logger.info(f"[{inst_id}] Starting analysis...")
        history = self._read_history(inst_id)

        async def analyse_and_decide():
            bundle = await self.analysis_pipeline.run(inst_id)
            decision = await self.decision_provider.get_decision(bundle, history)
            return bundle, decision

        bundle, decision = await with_retry(
            analyse_and_decide, self.analysis_retry.with_context(f"{inst_id} analysis")
        )
        logger.info(f"[{inst_id}] Final decision: {decision}")

        result = await self.trade_executor.execute(inst_id, decision)

        history_line = None
        try:
            history_line = await with_retry(
                lambda: self.decision_provider.compress(bundle, decision),
                self.analysis_retry.with_context(f"{inst_id} history compression").with_predicate(is_transient_error),
            )
            self.history_store(inst_id).append(history_line)
        except Exception as e:
            logger.warning(f"[{inst_id}] Failed to update decision history: {e}")

        cycle_log = CycleLog(
            timestamp=decision.timestamp,
            symbol=inst_id,
            timeframe=self.config.trade_interval,
            action=decision.action.value,
            reason=decision.reason,
            stop_loss=decision.stop_loss,
            quantity=result.quantity if result.quantity is not None else decision.quantity,
            executed=result.executed,
            order_id=result.order_id,
            error=result.error,
            history_line=history_line,
            duration_seconds=round(time.monotonic() - started, 3),
            mode=self.config.run_mode,
        )
        if self.cycle_logger is not None:
            try:
                self.cycle_logger.log_cycle(cycle_log)
            except OSError as e:
                logger.warning(f"[{inst_id}] Failed to write cycle journal: {e}")
        return cycle_log
