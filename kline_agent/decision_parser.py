"""Decision parsing and validation layer."""

import logging
import math
from typing import Any, Dict, Optional

from kline_agent.models import AgentResult, Decision, TradeAction

logger = logging.getLogger(__name__)


def _optional_float(value: Any, field_name: str, stage: str, positive: bool = False) -> Optional[float]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        logger.warning(f"[{stage}] Invalid {field_name} type bool, ignoring")
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        logger.warning(f"[{stage}] Invalid {field_name} value {value!r}, ignoring")
        return None
    if not math.isfinite(number) or (positive and number <= 0):
        logger.warning(f"[{stage}] Invalid {field_name} value {value!r}, ignoring")
        return None
    return number


class DecisionParser:
    """Validates structured stage output against the closed action and field set."""

    ALLOWED_ACTIONS = {action.value for action in TradeAction}

    def parse_decision(self, data: Dict[str, Any], stage: str = "decision") -> Decision:
        """
        Convert a structured LLM payload into a Decision.

        Unknown actions and entries without a stop-loss are coerced to NO_OP,
        always with a logged reason.

        Args:
            data: Parsed JSON object from the model
            stage: Stage name used in log lines

        Returns:
            Validated Decision
        """
        reason = data.get("reason") or "no reason given"
        if not isinstance(reason, str):
            logger.warning(f"[{stage}] Reason field is not a string, converting")
            reason = str(reason)

        raw_action = data.get("action")
        action_key = raw_action.strip().upper() if isinstance(raw_action, str) else None
        if action_key not in self.ALLOWED_ACTIONS:
            logger.warning(
                f"[{stage}] Invalid action {raw_action!r}. Must be one of {sorted(self.ALLOWED_ACTIONS)}; coercing to NO_OP"
            )
            return Decision(action=TradeAction.NO_OP, reason=f"invalid action {raw_action!r}: {reason}")
        action = TradeAction(action_key)

        stop_loss = _optional_float(data.get("stop_loss"), "stop_loss", stage, positive=True)
        quantity = _optional_float(data.get("quantity"), "quantity", stage, positive=True)

        if action in (TradeAction.ENTRY_LONG, TradeAction.ENTRY_SHORT) and stop_loss is None:
            logger.warning(f"[{stage}] {action.value} proposed without a stop-loss; coercing to NO_OP")
            return Decision(action=TradeAction.NO_OP, reason=f"{action.value} rejected, no stop-loss: {reason}")

        return Decision(action=action, reason=reason, stop_loss=stop_loss, quantity=quantity)

    def parse_agent_result(self, data: Dict[str, Any], stage: str) -> AgentResult:
        """
        Convert an opinion-stage payload into an AgentResult.

        Accepts ``confidence`` or a stage-prefixed key such as ``bull_confidence``.
        Percent values are rescaled; the result is clamped to [0, 1].
        """
        raw_confidence = data.get("confidence", data.get(f"{stage}_confidence"))
        confidence = _optional_float(raw_confidence, "confidence", stage)
        if confidence is None:
            logger.warning(f"[{stage}] Missing confidence, assuming 0")
            confidence = 0.0
        if 1.0 < confidence <= 100.0:
            # Percent scale
            confidence /= 100.0
        confidence = min(max(confidence, 0.0), 1.0)

        return AgentResult(
            stage=stage,
            confidence=confidence,
            reason=str(data.get("reason") or ""),
            stop_loss=_optional_float(data.get("stop_loss"), "stop_loss", stage, positive=True),
            scenario_prediction=str(data.get("scenario_prediction") or ""),
        )
