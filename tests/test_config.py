import pytest

from kline_agent.config import Config, ConfigurationError

REQUIRED = {
    "SYMBOLS": "BTC-USDT-SWAP, ETH-USDT-SWAP",
    "PAPER_TRADE": "true",
    "PAPER_API_KEY": "pk",
    "PAPER_API_SECRET": "ps",
    "PAPER_API_PASSPHRASE": "pp",
    "LLM_API_KEY": "sk-test",
}


@pytest.fixture
def env(monkeypatch, tmp_path):
    # Keep a developer's .env out of the test
    monkeypatch.chdir(tmp_path)
    for name, value in REQUIRED.items():
        monkeypatch.setenv(name, value)
    return monkeypatch


def test_from_env_defaults(env) -> None:
    config = Config.from_env()

    assert config.symbols == ["BTC-USDT-SWAP", "ETH-USDT-SWAP"]
    assert config.run_mode == "paper"
    assert config.exchange_api_key == "pk"
    assert config.trade_interval == "1H"
    assert config.decision_topology == "proposer_reviewer"
    assert config.arbiter_model == config.main_model
    assert [tf for _, tf, _ in config.timeframes()] == ["15m", "1H", "4H"]


def test_live_mode_reads_live_credentials(env) -> None:
    env.setenv("PAPER_TRADE", "false")
    env.setenv("OKX_API_KEY", "lk")
    env.setenv("OKX_API_SECRET", "ls")
    env.setenv("OKX_API_PASSPHRASE", "lp")

    config = Config.from_env()

    assert config.run_mode == "live"
    assert config.exchange_api_key == "lk"


def test_missing_credentials_are_reported(env) -> None:
    env.delenv("LLM_API_KEY")
    with pytest.raises(ConfigurationError, match="LLM_API_KEY"):
        Config.from_env()


@pytest.mark.parametrize(
    "name, value",
    [
        ("SYMBOLS", " , "),
        ("RISK_PCT", "0"),
        ("RISK_PCT", "abc"),
        ("LEVERAGE", "-1"),
        ("DECISION_TOPOLOGY", "committee"),
        ("HISTORY_MAX_LINES", "0"),
        ("FETCH_MAX_RETRIES", "-1"),
    ],
)
def test_invalid_values_are_rejected(env, name, value) -> None:
    env.setenv(name, value)
    with pytest.raises(ConfigurationError):
        Config.from_env()


def test_configuration_error_is_value_error() -> None:
    assert issubclass(ConfigurationError, ValueError)
