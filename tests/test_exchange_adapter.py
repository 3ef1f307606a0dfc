import ccxt.async_support as ccxt
import pytest

from kline_agent.errors import ExchangeAuthError, ExchangeError, ExchangeTransientError
from kline_agent.exchange_adapters.exchange_adapter import ExchangeAdapter

from conftest import build_config


class FakeOkx:
    """Stands in for ccxt's okx client; implicit methods answer from ``responses``."""

    def __init__(self, responses=None):
        self.responses = responses or {}
        self.calls = []
        self.closed = False

    def __getattr__(self, name):
        if name.startswith(("public_", "private_")):
            async def endpoint(params):
                self.calls.append((name, params))
                response = self.responses.get(name, {"code": "0", "data": []})
                if isinstance(response, Exception):
                    raise response
                return response
            return endpoint
        raise AttributeError(name)

    async def close(self):
        self.closed = True


def _adapter(responses=None):
    exchange = FakeOkx(responses)
    return ExchangeAdapter(build_config(), exchange=exchange), exchange


@pytest.mark.asyncio
async def test_get_balance_reads_currency_details() -> None:
    adapter, exchange = _adapter({
        "private_get_account_balance": {
            "code": "0",
            "data": [{"details": [
                {"ccy": "BTC", "availBal": "1", "frozenBal": "0", "eq": "1"},
                {"ccy": "USDT", "availBal": "900.5", "frozenBal": "99.5", "eq": "1000"},
            ]}],
        }
    })
    balance = await adapter.get_balance("USDT")
    assert (balance.free, balance.used, balance.total) == (900.5, 99.5, 1000.0)
    assert exchange.calls == [("private_get_account_balance", {"ccy": "USDT"})]


@pytest.mark.asyncio
async def test_get_candles_sends_okx_parameters() -> None:
    rows = [["2", "1", "1", "1", "1", "1", "1", "1", "0"]]
    adapter, exchange = _adapter({"public_get_market_candles": {"code": "0", "data": rows}})

    assert await adapter.get_candles("BTC-USDT-SWAP", "1H", 49, after=1000) == rows
    assert exchange.calls[0][1] == {"instId": "BTC-USDT-SWAP", "bar": "1H", "limit": "49", "after": "1000"}


@pytest.mark.asyncio
async def test_get_positions_and_instruments_are_typed() -> None:
    adapter, _ = _adapter({
        "private_get_account_positions": {"code": "0", "data": [{"instId": "BTC-USDT-SWAP", "pos": "-3", "avgPx": "100"}]},
        "public_get_public_instruments": {"code": "0", "data": [
            {"instId": "BTC-USDT-SWAP", "ctVal": "0.01", "minSz": "1", "ctType": "linear", "state": "live"}
        ]},
    })
    positions = await adapter.get_positions("SWAP", "BTC-USDT-SWAP")
    instruments = await adapter.get_instruments("SWAP", inst_id="BTC-USDT-SWAP")

    assert positions[0].side == "short"
    assert instruments[0].ct_val == 0.01
    assert instruments[0].is_live and instruments[0].is_linear


@pytest.mark.asyncio
async def test_non_zero_code_raises_exchange_error() -> None:
    adapter, _ = _adapter({"public_get_market_ticker": {"code": "51001", "msg": "Instrument ID does not exist"}})
    with pytest.raises(ExchangeError, match="51001"):
        await adapter.get_last_price("NOPE-USDT-SWAP")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error, expected",
    [
        (ccxt.AuthenticationError("invalid sign"), ExchangeAuthError),
        (ccxt.RequestTimeout("timed out"), ExchangeTransientError),
        (ccxt.DDoSProtection("rate limited"), ExchangeTransientError),
        (ccxt.InsufficientFunds("not enough margin"), ExchangeError),
    ],
)
async def test_ccxt_errors_are_translated(error, expected) -> None:
    adapter, _ = _adapter({"private_get_account_balance": error})
    with pytest.raises(expected):
        await adapter.get_balance("USDT")


@pytest.mark.asyncio
async def test_init_account_settings_tolerates_already_set_mode() -> None:
    adapter, exchange = _adapter({
        "private_post_account_set_position_mode": {"code": "59000", "msg": "Setting failed"},
    })
    await adapter.init_account_settings("BTC-USDT-SWAP", 5)

    assert exchange.calls[-1] == (
        "private_post_account_set_leverage",
        {"instId": "BTC-USDT-SWAP", "lever": "5", "mgnMode": "cross"},
    )


@pytest.mark.asyncio
async def test_init_account_settings_swallows_leverage_failure() -> None:
    adapter, _ = _adapter({
        "private_post_account_set_leverage": ccxt.ExchangeError("leverage too high"),
    })
    await adapter.init_account_settings("BTC-USDT-SWAP", 200)


@pytest.mark.asyncio
async def test_close_closes_ccxt_client() -> None:
    adapter, exchange = _adapter()
    await adapter.close()
    assert exchange.closed
