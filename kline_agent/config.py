"""Configuration module for the candle-close trading agent."""

import os
from dataclasses import dataclass
from typing import List, Optional
from dotenv import load_dotenv


class ConfigurationError(ValueError):
    """Raised for invalid or missing configuration. Never retried."""


DECISION_TOPOLOGIES = ("proposer_reviewer", "bull_bear")


def _get_int(name: str, default: str) -> int:
    try:
        return int(os.getenv(name, default))
    except ValueError:
        raise ConfigurationError(f"{name} must be a valid integer")


def _get_float(name: str, default: str) -> float:
    try:
        return float(os.getenv(name, default))
    except ValueError:
        raise ConfigurationError(f"{name} must be a valid float")


def _get_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "y")


@dataclass
class Config:
    """Configuration for the trading agent loaded from environment variables."""

    # Exchange
    symbols: List[str]
    product_type: str
    quote_currency: str
    paper_trade: bool

    # Credentials
    exchange_api_key: str
    exchange_api_secret: str
    exchange_api_passphrase: str
    llm_api_key: str
    llm_base_url: Optional[str]

    # Risk
    risk_pct: float
    leverage: int

    # Candles
    micro_interval: str
    trade_interval: str
    macro_interval: str
    micro_interval_count: int
    trade_interval_count: int
    macro_interval_count: int
    image_candle_count: int

    # Indicators
    ema_period: int
    atr_period: int

    # LLM
    visual_model: str
    simple_analysis_model: str
    risk_analysis_model: str
    main_model: str
    arbiter_model: str
    compress_model: str
    llm_temperature: float
    decision_topology: str

    # History
    history_dir: str
    history_max_lines: int

    # Retry budgets
    fetch_max_retries: int
    analysis_max_retries: int
    execution_max_retries: int
    retry_delay_seconds: float
    retry_backoff: bool

    # Control API / log streaming
    api_host: str
    api_port: int
    log_buffer_size: int

    @property
    def run_mode(self) -> str:
        return "paper" if self.paper_trade else "live"

    def timeframes(self) -> List[tuple]:
        """Return (name, timeframe label, bar count) for each analysed timeframe."""
        return [
            ("micro", self.micro_interval, self.micro_interval_count),
            ("trade", self.trade_interval, self.trade_interval_count),
            ("macro", self.macro_interval, self.macro_interval_count),
        ]

    @classmethod
    def from_env(cls) -> "Config":
        """
        Load configuration from environment variables with validation.

        Returns:
            Config: Validated configuration object

        Raises:
            ConfigurationError: If required fields are missing or invalid
        """
        # Load .env file if it exists
        load_dotenv()

        paper_trade = _get_bool("PAPER_TRADE", "true")
        prefix = "PAPER" if paper_trade else "OKX"

        symbols_str = os.getenv("SYMBOLS", "")
        exchange_api_key = os.getenv(f"{prefix}_API_KEY")
        exchange_api_secret = os.getenv(f"{prefix}_API_SECRET")
        exchange_api_passphrase = os.getenv(f"{prefix}_API_PASSPHRASE")
        llm_api_key = os.getenv("LLM_API_KEY")

        required_fields = {
            f"{prefix}_API_KEY": exchange_api_key,
            f"{prefix}_API_SECRET": exchange_api_secret,
            f"{prefix}_API_PASSPHRASE": exchange_api_passphrase,
            "LLM_API_KEY": llm_api_key,
        }
        missing_fields = [name for name, value in required_fields.items() if not value]
        if missing_fields:
            raise ConfigurationError(f"Missing required environment variables: {', '.join(missing_fields)}")

        # Parse symbols (comma-separated instrument ids, e.g. BTC-USDT-SWAP)
        symbols = [s.strip() for s in symbols_str.split(",") if s.strip()]
        if not symbols:
            raise ConfigurationError("SYMBOLS must contain at least one instrument id")

        risk_pct = _get_float("RISK_PCT", "2")
        if not 0.0 < risk_pct <= 100.0:
            raise ConfigurationError("RISK_PCT must be greater than 0 and at most 100")

        leverage = _get_int("LEVERAGE", "3")
        if leverage <= 0:
            raise ConfigurationError("LEVERAGE must be greater than 0")

        micro_interval_count = _get_int("MICRO_INTERVAL_COUNT", "48")
        trade_interval_count = _get_int("TRADE_INTERVAL_COUNT", "48")
        macro_interval_count = _get_int("MACRO_INTERVAL_COUNT", "48")
        image_candle_count = _get_int("IMAGE_CANDLE_COUNT", "60")
        for name, value in (
            ("MICRO_INTERVAL_COUNT", micro_interval_count),
            ("TRADE_INTERVAL_COUNT", trade_interval_count),
            ("MACRO_INTERVAL_COUNT", macro_interval_count),
        ):
            if value <= 0:
                raise ConfigurationError(f"{name} must be greater than 0")
        if image_candle_count < 0:
            raise ConfigurationError("IMAGE_CANDLE_COUNT must be non-negative")

        ema_period = _get_int("EMA_PERIOD", "20")
        atr_period = _get_int("ATR_PERIOD", "14")
        if ema_period <= 0 or atr_period <= 0:
            raise ConfigurationError("EMA_PERIOD and ATR_PERIOD must be greater than 0")

        llm_temperature = _get_float("LLM_TEMPERATURE", "0.2")

        decision_topology = os.getenv("DECISION_TOPOLOGY", "proposer_reviewer").strip().lower()
        if decision_topology not in DECISION_TOPOLOGIES:
            raise ConfigurationError(
                f"DECISION_TOPOLOGY must be one of {', '.join(DECISION_TOPOLOGIES)}"
            )

        history_max_lines = _get_int("HISTORY_MAX_LINES", "20")
        if history_max_lines <= 0:
            raise ConfigurationError("HISTORY_MAX_LINES must be greater than 0")

        fetch_max_retries = _get_int("FETCH_MAX_RETRIES", "3")
        analysis_max_retries = _get_int("ANALYSIS_MAX_RETRIES", "1")
        execution_max_retries = _get_int("EXECUTION_MAX_RETRIES", "3")
        for name, value in (
            ("FETCH_MAX_RETRIES", fetch_max_retries),
            ("ANALYSIS_MAX_RETRIES", analysis_max_retries),
            ("EXECUTION_MAX_RETRIES", execution_max_retries),
        ):
            if value < 0:
                raise ConfigurationError(f"{name} must be non-negative")

        retry_delay_seconds = _get_float("RETRY_DELAY_SECONDS", "2.0")
        if retry_delay_seconds < 0:
            raise ConfigurationError("RETRY_DELAY_SECONDS must be non-negative")

        api_port = _get_int("API_PORT", "8000")
        log_buffer_size = _get_int("LOG_BUFFER_SIZE", "500")
        if log_buffer_size <= 0:
            raise ConfigurationError("LOG_BUFFER_SIZE must be greater than 0")

        main_model = os.getenv("MAIN_MODEL", "gpt-4o-mini")

        return cls(
            symbols=symbols,
            product_type=os.getenv("PRODUCT_TYPE", "SWAP"),
            quote_currency=os.getenv("QUOTE_CURRENCY", "USDT"),
            paper_trade=paper_trade,
            exchange_api_key=exchange_api_key,
            exchange_api_secret=exchange_api_secret,
            exchange_api_passphrase=exchange_api_passphrase,
            llm_api_key=llm_api_key,
            llm_base_url=os.getenv("LLM_BASE_URL") or None,
            risk_pct=risk_pct,
            leverage=leverage,
            micro_interval=os.getenv("MICRO_INTERVAL", "15m"),
            trade_interval=os.getenv("TRADE_INTERVAL", "1H"),
            macro_interval=os.getenv("MACRO_INTERVAL", "4H"),
            micro_interval_count=micro_interval_count,
            trade_interval_count=trade_interval_count,
            macro_interval_count=macro_interval_count,
            image_candle_count=image_candle_count,
            ema_period=ema_period,
            atr_period=atr_period,
            visual_model=os.getenv("VISUAL_MODEL", "gpt-4o-mini"),
            simple_analysis_model=os.getenv("SIMPLE_ANALYSIS_MODEL", "gpt-4o-mini"),
            risk_analysis_model=os.getenv("RISK_ANALYSIS_MODEL", "gpt-4o-mini"),
            main_model=main_model,
            arbiter_model=os.getenv("ARBITER_MODEL", main_model),
            compress_model=os.getenv("COMPRESS_MODEL", "gpt-4o-mini"),
            llm_temperature=llm_temperature,
            decision_topology=decision_topology,
            history_dir=os.getenv("HISTORY_DIR", "history"),
            history_max_lines=history_max_lines,
            fetch_max_retries=fetch_max_retries,
            analysis_max_retries=analysis_max_retries,
            execution_max_retries=execution_max_retries,
            retry_delay_seconds=retry_delay_seconds,
            retry_backoff=_get_bool("RETRY_BACKOFF", "true"),
            api_host=os.getenv("API_HOST", "127.0.0.1"),
            api_port=api_port,
            log_buffer_size=log_buffer_size,
        )
