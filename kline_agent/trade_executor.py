"""Trade execution layer: maps canonical decisions onto exchange calls."""

import asyncio
import logging
from typing import Optional

from kline_agent.errors import is_transient_error
from kline_agent.executors.order_executor import OrderExecutor
from kline_agent.models import Decision, ExecutionResult, TradeAction
from kline_agent.position_calculators.order_sizer import PositionSizer
from kline_agent.utils.retry import RetrySpec, with_retry

logger = logging.getLogger(__name__)


class TradeExecutor:
    """Handles trade execution on the exchange."""

    def __init__(
        self,
        config,
        exchange_adapter,
        market_data_fetcher,
        order_executor: Optional[OrderExecutor] = None,
        position_sizer: Optional[PositionSizer] = None,
        retry_spec: Optional[RetrySpec] = None,
    ):
        """
        Initialize the trade executor.

        Args:
            config: Configuration object (risk percent, quote currency)
            exchange_adapter: Exchange adapter for balance queries
            market_data_fetcher: Source of instrument metadata and last price
            order_executor: Payload builder (defaults to OrderExecutor)
            position_sizer: Sizer (defaults to PositionSizer(config.risk_pct))
            retry_spec: Retry parameters applied to each exchange call
        """
        self.config = config
        self.exchange_adapter = exchange_adapter
        self.market_data_fetcher = market_data_fetcher
        self.order_executor = order_executor or OrderExecutor(exchange_adapter, config)
        self.position_sizer = position_sizer or PositionSizer(config.risk_pct)
        self.retry_spec = (retry_spec or RetrySpec()).with_predicate(is_transient_error)

    async def _call(self, context: str, fn):
        return await with_retry(fn, self.retry_spec.with_context(context))

    async def execute(self, inst_id: str, decision: Decision) -> ExecutionResult:
        """
        Execute a trading decision on the exchange.

        Never raises: failures are logged and reported in the result.

        Args:
            inst_id: Instrument id
            decision: Validated decision

        Returns:
            ExecutionResult with execution details or error
        """
        action = decision.action
        try:
            if action == TradeAction.NO_OP:
                logger.info(f"[{inst_id}] NO_OP, standing aside")
                return ExecutionResult(executed=False, action=action)

            if action in (TradeAction.EXIT_LONG, TradeAction.EXIT_SHORT):
                await self._call(f"{inst_id} close position", lambda: self.order_executor.close_all(inst_id))
                return ExecutionResult(executed=True, action=action)

            if action == TradeAction.UPDATE_STOP_LOSS:
                if decision.stop_loss is None:
                    logger.warning(f"[{inst_id}] UPDATE_STOP_LOSS without a stop-loss price, skipping")
                    return ExecutionResult(executed=False, action=action, error="missing stop-loss price")
                algo_id = await self._call(
                    f"{inst_id} update stop-loss",
                    lambda: self.order_executor.update_stop_loss(inst_id, decision.stop_loss),
                )
                return ExecutionResult(
                    executed=algo_id is not None,
                    action=action,
                    order_id=algo_id,
                    error=None if algo_id is not None else "no position to protect",
                )

            return await self._execute_entry(inst_id, decision)
        except Exception as e:
            logger.error(f"[{inst_id}] Trade execution failed for {action.value}: {e}", exc_info=True)
            return ExecutionResult(executed=False, action=action, error=str(e))

    async def _execute_entry(self, inst_id: str, decision: Decision) -> ExecutionResult:
        action = decision.action
        if decision.stop_loss is None:
            logger.warning(f"[{inst_id}] {action.value} without a stop-loss, skipping")
            return ExecutionResult(executed=False, action=action, error="missing stop-loss price")

        # Instrument metadata is refreshed before every sizing
        instrument = await self._call(
            f"{inst_id} instrument", lambda: self.market_data_fetcher.fetch_instrument(inst_id)
        )
        if instrument is None:
            return ExecutionResult(executed=False, action=action, error="instrument not found")
        if not instrument.is_live:
            logger.warning(f"[{inst_id}] Instrument state is {instrument.state!r}, skipping entry")
            return ExecutionResult(executed=False, action=action, error=f"instrument state {instrument.state}")

        currency = self.config.quote_currency
        price, balance = await asyncio.gather(
            self._call(f"{inst_id} last price", lambda: self.market_data_fetcher.fetch_last_price(inst_id)),
            self._call(f"{inst_id} balance", lambda: self.exchange_adapter.get_balance(currency)),
        )

        sizing = self.position_sizer.calculate(
            action=action,
            equity=balance.total,
            price=price,
            stop_loss=decision.stop_loss,
            instrument=instrument,
            explicit_quantity=decision.quantity,
        )
        if not sizing.ok:
            logger.warning(f"[{inst_id}] Entry skipped: {sizing.skip_reason}")
            return ExecutionResult(executed=False, action=action, error=sizing.skip_reason)

        side = "buy" if action == TradeAction.ENTRY_LONG else "sell"
        order_id = await self._call(
            f"{inst_id} {side} order",
            lambda: self.order_executor.open_market_with_stop(inst_id, side, sizing.quantity, decision.stop_loss),
        )
        logger.info(f"[{inst_id}] {action.value} placed: {sizing.quantity} contracts, order {order_id}")
        return ExecutionResult(executed=True, action=action, order_id=order_id, quantity=sizing.quantity)
