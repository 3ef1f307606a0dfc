"""Shared fixtures for the agent test suite."""

from typing import List

import pytest

from kline_agent.config import Config
from kline_agent.models import Candle


def build_config(**overrides) -> Config:
    values = dict(
        symbols=["BTC-USDT-SWAP"],
        product_type="SWAP",
        quote_currency="USDT",
        paper_trade=True,
        exchange_api_key="key-123",
        exchange_api_secret="secret-456",
        exchange_api_passphrase="pass-789",
        llm_api_key="sk-llm",
        llm_base_url=None,
        risk_pct=2.0,
        leverage=3,
        micro_interval="15m",
        trade_interval="1H",
        macro_interval="4H",
        micro_interval_count=5,
        trade_interval_count=5,
        macro_interval_count=5,
        image_candle_count=3,
        ema_period=3,
        atr_period=3,
        visual_model="visual-model",
        simple_analysis_model="simple-model",
        risk_analysis_model="risk-model",
        main_model="main-model",
        arbiter_model="arbiter-model",
        compress_model="compress-model",
        llm_temperature=0.2,
        decision_topology="proposer_reviewer",
        history_dir="history",
        history_max_lines=20,
        fetch_max_retries=2,
        analysis_max_retries=1,
        execution_max_retries=2,
        retry_delay_seconds=0.0,
        retry_backoff=False,
        api_host="127.0.0.1",
        api_port=8000,
        log_buffer_size=100,
    )
    values.update(overrides)
    return Config(**values)


def make_candles(closes: List[float], start_ts: int = 1_700_000_000_000, step_ms: int = 3_600_000) -> List[Candle]:
    return [
        Candle(ts=start_ts + i * step_ms, open=c, high=c + 1, low=c - 1, close=c, volume=100 + i)
        for i, c in enumerate(closes)
    ]


@pytest.fixture
def config(tmp_path) -> Config:
    return build_config(history_dir=str(tmp_path / "history"))
