"""Data models for the candle-close trading agent."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


def _to_float(value: Any, default: float = 0.0) -> float:
    try:
        if value is None or value == "":
            return default
        return float(value)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class Candle:
    """One OHLCV bar."""

    ts: int  # Unix milliseconds, bar open time
    open: float
    high: float
    low: float
    close: float
    volume: float
    confirmed: bool = True  # False while the bar is still open


@dataclass
class CandleSeries:
    """Closed bars for one (instrument, timeframe) pair, always oldest-first."""

    inst_id: str
    timeframe: str
    candles: List[Candle] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.candles)

    @property
    def closes(self) -> List[float]:
        return [c.close for c in self.candles]


@dataclass(frozen=True)
class Instrument:
    """Exchange instrument metadata (OKX public/instruments)."""

    inst_id: str
    inst_type: str
    ct_val: float
    ct_val_ccy: str
    lot_sz: float
    min_sz: float
    ct_type: str  # "linear" | "inverse" | "" for spot
    state: str
    list_time: Optional[int] = None
    exp_time: Optional[int] = None
    ct_mult: float = 1.0
    tick_sz: float = 0.0
    lever: float = 1.0
    uly: str = ""
    settle_ccy: str = ""

    @classmethod
    def from_okx(cls, data: Dict[str, Any]) -> "Instrument":
        exp_time = data.get("expTime")
        list_time = data.get("listTime")
        return cls(
            inst_id=data.get("instId", ""),
            inst_type=data.get("instType", ""),
            ct_val=_to_float(data.get("ctVal")),
            ct_val_ccy=data.get("ctValCcy", ""),
            lot_sz=_to_float(data.get("lotSz")),
            min_sz=_to_float(data.get("minSz")),
            ct_type=data.get("ctType", ""),
            state=data.get("state", ""),
            list_time=int(list_time) if list_time else None,
            exp_time=int(exp_time) if exp_time else None,
            ct_mult=_to_float(data.get("ctMult"), 1.0),
            tick_sz=_to_float(data.get("tickSz")),
            lever=_to_float(data.get("lever"), 1.0),
            uly=data.get("uly", ""),
            settle_ccy=data.get("settleCcy", ""),
        )

    @property
    def is_live(self) -> bool:
        return self.state == "live"

    @property
    def is_linear(self) -> bool:
        return self.ct_type == "linear"

    def __str__(self) -> str:
        return f"Instrument: [ID: {self.inst_id}, Type: {self.inst_type}, State: {self.state}]"


@dataclass
class Balance:
    """Balance of one currency in the trading account."""

    free: float
    used: float
    total: float


@dataclass
class Position:
    """Open position in net position mode (quantity is signed, in contracts)."""

    inst_id: str
    quantity: float
    entry_price: float
    mark_price: float
    unrealized_pnl: float
    leverage: float
    liquidation_price: Optional[float] = None
    margin_mode: str = "cross"

    @classmethod
    def from_okx(cls, data: Dict[str, Any]) -> "Position":
        liq_px = data.get("liqPx")
        return cls(
            inst_id=data.get("instId", ""),
            quantity=_to_float(data.get("pos")),
            entry_price=_to_float(data.get("avgPx")),
            mark_price=_to_float(data.get("markPx")),
            unrealized_pnl=_to_float(data.get("upl")),
            leverage=_to_float(data.get("lever"), 1.0),
            liquidation_price=_to_float(liq_px) if liq_px else None,
            margin_mode=data.get("mgnMode", "cross"),
        )

    @property
    def side(self) -> str:
        if self.quantity > 0:
            return "long"
        if self.quantity < 0:
            return "short"
        return "flat"

    def __str__(self) -> str:
        liq = f"{self.liquidation_price}" if self.liquidation_price is not None else "n/a"
        return (
            f"Position {self.inst_id}: {self.side} {abs(self.quantity)} contracts, "
            f"entry {self.entry_price}, mark {self.mark_price}, "
            f"unrealized PnL {self.unrealized_pnl}, leverage {self.leverage}x, liquidation {liq}"
        )


@dataclass
class AnalysisReport:
    """Narratives produced for one timeframe."""

    timeframe: str
    image_analysis: str
    data_analysis: str

    def to_prompt_block(self) -> str:
        return (
            f"```yaml\n{self.timeframe} interval:\n"
            f"  imageAnalysis: {self.image_analysis}\n"
            f"  dataAnalysis: {self.data_analysis}\n```"
        )


@dataclass
class RiskSnapshot:
    """Account state relevant to risk for one instrument."""

    equity: float
    free_balance: float
    position_summary: str
    stop_loss_prices: List[float]
    last_price: Optional[float]
    stop_orders_available: bool = True

    def to_prompt_text(self, inst_id: str) -> str:
        lines = [f"Total account equity is {self.equity}, free balance is {self.free_balance}."]
        lines.append(self.position_summary or f"No open position for {inst_id}.")
        if not self.stop_orders_available:
            lines.append("Failed to fetch stop-loss order information.")
        elif self.stop_loss_prices:
            prices = ", ".join(str(p) for p in self.stop_loss_prices)
            lines.append(f"Active stop-loss trigger prices: {prices}.")
        else:
            lines.append("No stop-loss order is currently set.")
        if self.last_price is not None:
            lines.append(f"Last traded price of {inst_id} is {self.last_price}.")
        return "\n".join(lines) + "\n"


@dataclass
class AnalysisBundle:
    """Everything the analysis phase produced for one cycle."""

    inst_id: str
    reports: List[AnalysisReport]
    risk_analysis: str
    risk_snapshot: Optional[RiskSnapshot] = None

    def to_prompt_text(self) -> str:
        blocks = [report.to_prompt_block() for report in self.reports]
        blocks.append(f"```yaml\nriskAnalysis:\n  {self.risk_analysis}\n```")
        return "\n".join(blocks)


@dataclass
class AgentResult:
    """Output of one opinion stage (bullish or bearish case)."""

    stage: str
    confidence: float
    reason: str
    stop_loss: Optional[float]
    scenario_prediction: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage,
            "confidence": self.confidence,
            "reason": self.reason,
            "stop_loss": self.stop_loss,
            "scenario_prediction": self.scenario_prediction,
        }


class TradeAction(str, Enum):
    ENTRY_LONG = "ENTRY_LONG"
    ENTRY_SHORT = "ENTRY_SHORT"
    EXIT_LONG = "EXIT_LONG"
    EXIT_SHORT = "EXIT_SHORT"
    UPDATE_STOP_LOSS = "UPDATE_STOP_LOSS"
    NO_OP = "NO_OP"


@dataclass
class Decision:
    """Canonical trading decision produced by the decision pipeline."""

    action: TradeAction
    reason: str
    stop_loss: Optional[float] = None
    quantity: Optional[float] = None
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))

    @property
    def is_entry(self) -> bool:
        return self.action in (TradeAction.ENTRY_LONG, TradeAction.ENTRY_SHORT)

    def __str__(self) -> str:
        details = ""
        if self.is_entry:
            details = f", quantity: {self.quantity}, stop loss: {self.stop_loss}"
        elif self.action == TradeAction.UPDATE_STOP_LOSS:
            details = f", stop loss: {self.stop_loss}"
        return f"[{self.action.value}] {self.reason}{details}"


@dataclass
class ExecutionResult:
    """Result of trade execution."""

    executed: bool
    action: TradeAction
    order_id: Optional[str] = None
    quantity: Optional[float] = None
    error: Optional[str] = None


@dataclass
class CycleLog:
    """Complete log record for one scheduler cycle."""

    timestamp: int
    symbol: str
    timeframe: str
    action: str
    reason: str
    stop_loss: Optional[float]
    quantity: Optional[float]
    executed: bool
    order_id: Optional[str]
    error: Optional[str]
    history_line: Optional[str]
    duration_seconds: float
    mode: str  # "paper" | "live"
