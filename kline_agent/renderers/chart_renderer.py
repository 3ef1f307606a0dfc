"""Candlestick chart rendering on a single shared matplotlib surface.

matplotlib figures are not safe to draw from several callers at once, so the
renderer is an actor: callers enqueue requests, one worker drains the queue and
draws on a dedicated single-thread executor. At most one render is in flight.
"""

import asyncio
import base64
import io
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402

from kline_agent.models import Candle  # noqa: E402

logger = logging.getLogger(__name__)

DrawFn = Callable[[Sequence[Candle], Sequence[Optional[float]], str], str]


def _date_range_text(candles: Sequence[Candle], timeframe: str) -> str:
    if not candles:
        return ""
    intraday = timeframe.endswith(("m", "h", "H"))
    fmt = "%Y-%m-%d %H:%M" if intraday else "%Y-%m-%d"
    start = datetime.fromtimestamp(candles[0].ts / 1000, tz=timezone.utc).strftime(fmt)
    end = datetime.fromtimestamp(candles[-1].ts / 1000, tz=timezone.utc).strftime(fmt)
    return f"{start} ~ {end}"


class _Surface:
    """The one figure every render draws on. Only touched from the render thread."""

    def __init__(self, width: float = 12, height: float = 8, dpi: int = 100):
        self.size = (width, height)
        self.dpi = dpi
        self._fig = None

    def draw(self, candles: Sequence[Candle], ema: Sequence[Optional[float]], timeframe: str) -> str:
        if self._fig is None:
            self._fig = plt.figure(figsize=self.size, dpi=self.dpi)
        fig = self._fig
        fig.clf()
        price_ax, volume_ax = fig.subplots(
            2, 1, sharex=True, gridspec_kw={"height_ratios": [4, 1]}
        )

        xs = list(range(len(candles)))
        for x, c in zip(xs, candles):
            color = "#26a69a" if c.close >= c.open else "#ef5350"
            price_ax.vlines(x, c.low, c.high, color=color, linewidth=1)
            body_low = min(c.open, c.close)
            body_height = max(abs(c.close - c.open), 1e-12)
            price_ax.bar(x, body_height, bottom=body_low, width=0.6, color=color)
            volume_ax.bar(x, c.volume, width=0.6, color=color)

        ema_points = [(x, v) for x, v in zip(xs, ema) if v is not None]
        if ema_points:
            price_ax.plot([p[0] for p in ema_points], [p[1] for p in ema_points],
                          color="#2962ff", linewidth=1.5, label="EMA")
            price_ax.legend(loc="upper left")

        price_ax.set_title(f"{timeframe}  {_date_range_text(candles, timeframe)}")
        price_ax.grid(alpha=0.2)
        volume_ax.grid(alpha=0.2)
        if not candles:
            price_ax.text(0.5, 0.5, "No data", ha="center", va="center", transform=price_ax.transAxes)
        fig.tight_layout()

        buffer = io.BytesIO()
        fig.savefig(buffer, format="png")
        return base64.b64encode(buffer.getvalue()).decode("ascii")

    def close(self) -> None:
        if self._fig is not None:
            plt.close(self._fig)
            self._fig = None


@dataclass
class _RenderRequest:
    candles: List[Candle]
    ema: List[Optional[float]]
    timeframe: str
    future: asyncio.Future = field(repr=False)


class ChartRenderer:
    """Serialises chart renders through a request queue and a single worker."""

    def __init__(self, draw_fn: Optional[DrawFn] = None):
        """
        Initialize chart renderer.

        Args:
            draw_fn: Synchronous draw function returning base64 PNG; defaults to
                drawing on the shared matplotlib surface
        """
        self._surface = _Surface()
        self._draw_fn: DrawFn = draw_fn or self._surface.draw
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="chart-render")
        self._current: Optional[_RenderRequest] = None
        self.rendered_count = 0
        self.failed_count = 0
        self._closed = False

    @property
    def queue_depth(self) -> int:
        """Requests waiting plus the one being drawn."""
        waiting = self._queue.qsize() if self._queue is not None else 0
        return waiting + (1 if self._current is not None else 0)

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            if self._queue is None:
                self._queue = asyncio.Queue()
            self._worker = asyncio.create_task(self._run(), name="chart-renderer")

    async def render_chart(
        self,
        candles: Sequence[Candle],
        ema: Sequence[Optional[float]],
        timeframe: str,
    ) -> str:
        """
        Render candles plus EMA overlay.

        Args:
            candles: Closed candles, oldest first
            ema: EMA values aligned with ``candles``
            timeframe: Label shown in the chart title

        Returns:
            Base64-encoded PNG
        """
        if self._closed:
            raise RuntimeError("ChartRenderer is closed")
        self._ensure_worker()
        future = asyncio.get_running_loop().create_future()
        await self._queue.put(_RenderRequest(list(candles), list(ema), timeframe, future))
        return await future

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            request = await self._queue.get()
            try:
                if request.future.cancelled():
                    continue
                self._current = request
                try:
                    image = await loop.run_in_executor(
                        self._executor, self._draw_fn, request.candles, request.ema, request.timeframe
                    )
                except Exception as e:
                    self.failed_count += 1
                    logger.error(f"Chart render failed for {request.timeframe}: {e}")
                    if not request.future.done():
                        request.future.set_exception(e)
                else:
                    self.rendered_count += 1
                    if not request.future.done():
                        request.future.set_result(image)
            finally:
                self._current = None
                self._queue.task_done()

    async def close(self) -> None:
        """Stop the worker, fail queued requests and release the surface."""
        self._closed = True
        current = self._current
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        if current is not None and not current.future.done():
            current.future.set_exception(RuntimeError("ChartRenderer closed"))
        if self._queue is not None:
            while not self._queue.empty():
                request = self._queue.get_nowait()
                if not request.future.done():
                    request.future.set_exception(RuntimeError("ChartRenderer closed"))
        self._executor.submit(self._surface.close)
        self._executor.shutdown(wait=True)
