"""Multi-timeframe analysis: candles, indicators, chart and narratives per timeframe plus a risk report."""

import asyncio
import logging
from typing import List, Optional, Tuple

from kline_agent import prompts
from kline_agent.errors import CandleDataError, ExchangeAuthError, is_transient_error
from kline_agent.indicator_calculators.technical_indicator_calculator import (
    calculate_atr_percentage,
    calculate_ema,
)
from kline_agent.models import AnalysisBundle, AnalysisReport, CandleSeries, RiskSnapshot
from kline_agent.utils.prompt_format import format_candles_with_indicators
from kline_agent.utils.retry import RetrySpec, with_retry

logger = logging.getLogger(__name__)

RISK_FALLBACK_TEXT = "risk data unavailable, use standard risk management"


class AnalysisPipeline:
    """
    Fans out one cycle's analysis work and gathers it into an AnalysisBundle.

    Candle fetches for all timeframes and the risk report start together.
    Missing candles for any timeframe abort the cycle; every other failure
    (chart, narrative, account data) degrades to a fallback string.
    """

    def __init__(self, config, market_data_fetcher, exchange_adapter, llm, renderer, retry_spec: Optional[RetrySpec] = None):
        """
        Initialize analysis pipeline.

        Args:
            config: Configuration object
            market_data_fetcher: Candle source (orientation already normalised)
            exchange_adapter: Exchange adapter for account data
            llm: LLMConnector
            renderer: ChartRenderer shared by every instrument
            retry_spec: Retry parameters for each external call
        """
        self.config = config
        self.market_data_fetcher = market_data_fetcher
        self.exchange_adapter = exchange_adapter
        self.llm = llm
        self.renderer = renderer
        self.retry_spec = (retry_spec or RetrySpec()).with_predicate(is_transient_error)

    async def _call(self, context: str, fn):
        return await with_retry(fn, self.retry_spec.with_context(context))

    async def run(self, inst_id: str) -> AnalysisBundle:
        """
        Produce the analysis bundle for one instrument.

        Raises:
            CandleDataError: If candles for any timeframe could not be fetched
            ExchangeAuthError: If the exchange rejected the credentials
        """
        risk_task = asyncio.create_task(self._analyze_risk(inst_id), name=f"{inst_id}-risk")
        try:
            series_list = await self._fetch_all_series(inst_id)
            reports = await asyncio.gather(*[
                self._analyze_timeframe(inst_id, series, count)
                for series, (_, _, count) in zip(series_list, self.config.timeframes())
            ])
        except BaseException:
            risk_task.cancel()
            await asyncio.gather(risk_task, return_exceptions=True)
            raise

        risk_analysis, risk_snapshot = await risk_task

        return AnalysisBundle(
            inst_id=inst_id,
            reports=list(reports),
            risk_analysis=risk_analysis,
            risk_snapshot=risk_snapshot,
        )

    async def _fetch_all_series(self, inst_id: str) -> List[CandleSeries]:
        lookahead = self.config.image_candle_count
        results = await asyncio.gather(
            *[
                self._call(
                    f"{inst_id} {timeframe} candles",
                    lambda tf=timeframe, n=count: self.market_data_fetcher.fetch_candles(inst_id, tf, n + lookahead),
                )
                for _, timeframe, count in self.config.timeframes()
            ],
            return_exceptions=True,
        )

        series_list: List[CandleSeries] = []
        for (_, timeframe, _), result in zip(self.config.timeframes(), results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                logger.error(f"[{inst_id}] Failed to fetch {timeframe} candles: {result}")
                if isinstance(result, (CandleDataError, ExchangeAuthError)):
                    raise result
                raise CandleDataError(f"[{inst_id}] Failed to fetch {timeframe} candles: {result}") from result
            series_list.append(result)
        return series_list

    async def _analyze_timeframe(self, inst_id: str, series: CandleSeries, count: int) -> AnalysisReport:
        """Indicators, chart and both narratives for one timeframe. Never raises."""
        timeframe = series.timeframe
        # Indicators use the full series so the lookahead bars serve as warm-up
        ema = calculate_ema(series.closes, self.config.ema_period)
        atr_pct = calculate_atr_percentage(series.candles, self.config.atr_period)

        image_analysis, data_analysis = await asyncio.gather(
            self._image_analysis(inst_id, series, ema),
            self._data_analysis(inst_id, series, ema, atr_pct, count),
        )
        return AnalysisReport(timeframe=timeframe, image_analysis=image_analysis, data_analysis=data_analysis)

    async def _image_analysis(self, inst_id: str, series: CandleSeries, ema) -> str:
        timeframe = series.timeframe
        try:
            image = await self.renderer.render_chart(series.candles, ema, timeframe)
        except Exception as e:
            logger.warning(f"[{inst_id}] Chart render failed for {timeframe}: {e}")
            return f"chart unavailable for {timeframe}, rely on data analysis"

        try:
            return await self._call(
                f"{inst_id} {timeframe} image analysis",
                lambda: self.llm.analyze_image(
                    prompts.VISUAL,
                    f"This is the {timeframe} candlestick chart of {inst_id}.",
                    image,
                    self.config.visual_model,
                ),
            )
        except Exception as e:
            logger.warning(f"[{inst_id}] Image analysis failed for {timeframe}: {e}")
            return f"image analysis unavailable for {timeframe}"

    async def _data_analysis(self, inst_id: str, series: CandleSeries, ema, atr_pct, count: int) -> str:
        timeframe = series.timeframe
        candles = series.candles[-count:]
        table = format_candles_with_indicators(candles, ema[-count:], atr_pct[-count:])
        user_prompt = f"OHLCV + EMA + ATR% data of {inst_id} on the {timeframe} timeframe:\n{table}"
        try:
            return await self._call(
                f"{inst_id} {timeframe} data analysis",
                lambda: self.llm.chat(prompts.SIMPLE_ANALYSIS, user_prompt, self.config.simple_analysis_model),
            )
        except Exception as e:
            logger.warning(f"[{inst_id}] Data analysis failed for {timeframe}: {e}")
            return f"data analysis unavailable for {timeframe}"

    async def fetch_risk_snapshot(self, inst_id: str) -> RiskSnapshot:
        """
        Collect balance, position, resting stop-loss prices and last price.

        Balance and positions are required; stop orders and price are optional.
        """
        currency = self.config.quote_currency
        balance, positions = await asyncio.gather(
            self._call(f"{inst_id} balance", lambda: self.exchange_adapter.get_balance(currency)),
            self._call(
                f"{inst_id} positions",
                lambda: self.exchange_adapter.get_positions(self.config.product_type, inst_id),
            ),
        )
        open_positions = [p for p in positions if p.quantity != 0]
        position_summary = "\n".join(str(p) for p in open_positions)

        stop_loss_prices: List[float] = []
        stop_orders_available = True
        try:
            for ord_type in ("oco", "conditional"):
                orders = await self._call(
                    f"{inst_id} {ord_type} orders",
                    lambda t=ord_type: self.exchange_adapter.get_pending_algo_orders(inst_id, t),
                )
                for order in orders:
                    trigger = order.get("slTriggerPx")
                    if trigger and float(trigger) > 0:
                        stop_loss_prices.append(float(trigger))
        except Exception as e:
            logger.warning(f"[{inst_id}] Failed to fetch stop-loss orders: {e}")
            stop_orders_available = False

        last_price: Optional[float] = None
        try:
            last_price = await self._call(
                f"{inst_id} last price", lambda: self.market_data_fetcher.fetch_last_price(inst_id)
            )
        except Exception as e:
            logger.warning(f"[{inst_id}] Failed to fetch last price: {e}")

        return RiskSnapshot(
            equity=balance.total,
            free_balance=balance.free,
            position_summary=position_summary,
            stop_loss_prices=stop_loss_prices,
            last_price=last_price,
            stop_orders_available=stop_orders_available,
        )

    async def _analyze_risk(self, inst_id: str) -> Tuple[str, Optional[RiskSnapshot]]:
        """Risk narrative for the decision stages. Never raises (except on cancellation)."""
        try:
            snapshot = await self.fetch_risk_snapshot(inst_id)
        except Exception as e:
            logger.warning(f"[{inst_id}] Risk snapshot unavailable: {e}")
            return RISK_FALLBACK_TEXT, None

        snapshot_text = snapshot.to_prompt_text(inst_id)
        try:
            analysis = await self._call(
                f"{inst_id} risk analysis",
                lambda: self.llm.chat(prompts.RISK_ANALYSIS, snapshot_text, self.config.risk_analysis_model),
            )
        except Exception as e:
            logger.warning(f"[{inst_id}] Risk analysis failed, passing raw account data: {e}")
            return snapshot_text.strip(), snapshot
        return analysis, snapshot
