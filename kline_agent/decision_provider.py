"""Decision provider interface and the staged multi-agent implementations."""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from kline_agent import prompts
from kline_agent.config import ConfigurationError
from kline_agent.decision_parser import DecisionParser
from kline_agent.errors import StructuredOutputError
from kline_agent.models import AnalysisBundle, Decision

logger = logging.getLogger(__name__)


def _as_json(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False)


class DecisionProvider(ABC):
    """Abstract base class for staged LLM decision pipelines."""

    def __init__(self, llm, config, parser: Optional[DecisionParser] = None):
        """
        Initialize decision provider.

        Args:
            llm: LLMConnector
            config: Configuration object (risk percent, model names)
            parser: Stage output validator
        """
        self.llm = llm
        self.config = config
        self.parser = parser or DecisionParser()

    def build_base_context(self, bundle: AnalysisBundle, history: str) -> str:
        """Market context shared by every stage: risk setting, history, analysis."""
        history_text = ""
        if history:
            history_text = f"\n\n### Decision history (for reference, oldest to newest):\n{history}\n"
        return (
            f"Decide based on the analysis below. The configured risk per trade is "
            f"{self.config.risk_pct}% of account equity.\n"
            f"{history_text}"
            f"\n### Current analysis report for {bundle.inst_id}:\n"
            f"{bundle.to_prompt_text()}"
        )

    async def _structured_stage(self, stage: str, system_prompt: str, context: str, model: str) -> Dict[str, Any]:
        """
        Run one structured-output stage.

        Unparseable output degrades to a NO_OP payload so later stages still see
        what happened; transport errors propagate to the caller's retry policy.
        """
        try:
            return await self.llm.chat_structured(system_prompt, context, model)
        except StructuredOutputError as e:
            logger.error(f"[{stage}] Unparseable stage output, treating as NO_OP: {e}")
            return {"action": "NO_OP", "reason": f"{stage} output could not be parsed"}

    async def _decision_stage(self, stage: str, system_prompt: str, context: str, model: str) -> Tuple[Dict[str, Any], Decision]:
        payload = await self._structured_stage(stage, system_prompt, context, model)
        decision = self.parser.parse_decision(payload, stage=stage)
        logger.info(f"{stage.capitalize()} suggests: {decision}")
        return payload, decision

    @abstractmethod
    async def get_decision(self, bundle: AnalysisBundle, history: str = "") -> Decision:
        """
        Run every stage and return the arbiter's canonical decision.

        Args:
            bundle: All analysis reports and the risk narrative for this cycle
            history: Retained history text, oldest first

        Returns:
            Decision: Validated final decision
        """

    async def compress(self, bundle: AnalysisBundle, decision: Decision, now: Optional[datetime] = None) -> str:
        """
        Condense the cycle into one history line prefixed with "YYYY-MM-DD HH:MM".

        Args:
            bundle: The cycle's analysis
            decision: The executed decision
            now: Timestamp for the prefix (defaults to current UTC time)
        """
        user_prompt = (
            "Produce one compressed record from the detailed analysis and final decision below.\n\n"
            f"Analysis:\n{bundle.to_prompt_text()}\n\nFinal decision:\n{decision}"
        )
        compressed = await self.llm.chat(prompts.COMPRESS, user_prompt, self.config.compress_model)
        compressed = " ".join(compressed.split()) or str(decision)
        stamp = (now or datetime.now(timezone.utc)).strftime("%Y-%m-%d %H:%M")
        return f"{stamp} {compressed}"


class ProposerReviewerArbiterProvider(DecisionProvider):
    """Sequential refinement: each stage sees every previous stage's full output."""

    async def get_decision(self, bundle: AnalysisBundle, history: str = "") -> Decision:
        base_context = self.build_base_context(bundle, history)

        logger.info(f"[{bundle.inst_id}] Requesting proposal...")
        proposal, _ = await self._decision_stage("proposer", prompts.PROPOSER, base_context, self.config.main_model)

        review_context = f"{base_context}\n\n### Proposer suggestion:\n{_as_json(proposal)}"
        logger.info(f"[{bundle.inst_id}] Requesting review...")
        review, _ = await self._decision_stage("reviewer", prompts.REVIEWER, review_context, self.config.main_model)

        arbiter_context = f"{review_context}\n\n### Reviewer opinion:\n{_as_json(review)}"
        logger.info(f"[{bundle.inst_id}] Requesting final ruling...")
        _, decision = await self._decision_stage("arbiter", prompts.ARBITER, arbiter_context, self.config.arbiter_model)
        return decision


class BullBearArbiterProvider(DecisionProvider):
    """Opposing bull and bear cases built concurrently, reconciled by an arbiter."""

    async def get_decision(self, bundle: AnalysisBundle, history: str = "") -> Decision:
        base_context = self.build_base_context(bundle, history)

        logger.info(f"[{bundle.inst_id}] Requesting bull and bear cases...")
        bull_payload, bear_payload = await asyncio.gather(
            self._structured_stage("bull", prompts.BULL, base_context, self.config.main_model),
            self._structured_stage("bear", prompts.BEAR, base_context, self.config.main_model),
        )
        bull = self.parser.parse_agent_result(bull_payload, stage="bull")
        bear = self.parser.parse_agent_result(bear_payload, stage="bear")
        logger.info(
            f"[{bundle.inst_id}] Bull confidence {bull.confidence:.2f}, bear confidence {bear.confidence:.2f}"
        )

        arbiter_context = (
            f"{base_context}\n\n### Bullish analyst:\n{_as_json(bull.to_dict())}"
            f"\n\n### Bearish analyst:\n{_as_json(bear.to_dict())}"
        )
        _, decision = await self._decision_stage("arbiter", prompts.ARBITER, arbiter_context, self.config.arbiter_model)
        return decision


def create_decision_provider(config, llm) -> DecisionProvider:
    """Build the provider for ``config.decision_topology``."""
    if config.decision_topology == "proposer_reviewer":
        return ProposerReviewerArbiterProvider(llm, config)
    if config.decision_topology == "bull_bear":
        return BullBearArbiterProvider(llm, config)
    raise ConfigurationError(f"Unknown decision topology: {config.decision_topology}")
