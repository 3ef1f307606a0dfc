"""Exchange adapter for the OKX v5 REST API (ccxt async, raw endpoints)."""

import logging
from typing import Any, Dict, List, Optional

import ccxt.async_support as ccxt

from kline_agent.config import Config
from kline_agent.errors import ExchangeAuthError, ExchangeError, ExchangeTransientError
from kline_agent.models import Balance, Instrument, Position

logger = logging.getLogger(__name__)

# OKX answers these when the requested account setting is already in place
_ALREADY_SET_MARKERS = ("80012", "59000", "not need to be changed")


class ExchangeAdapter:
    """
    Thin async wrapper over OKX v5 endpoints.

    Responses keep the OKX wire format (``instId``, ``sz``, ``slTriggerPx``),
    so order payloads built by the executor pass through unchanged. ccxt errors
    are translated so callers can tell credential problems from transient
    network trouble.
    """

    def __init__(self, config: Config, exchange: Optional[Any] = None):
        """
        Initialize exchange adapter.

        Args:
            config: Configuration object with exchange settings
            exchange: Pre-built ccxt exchange (tests inject fakes here)
        """
        self.config = config
        self.exchange = exchange if exchange is not None else self._init_exchange(config)

    def _init_exchange(self, config: Config):
        """
        Initialize ccxt OKX client.

        Args:
            config: Configuration object

        Returns:
            Configured ccxt async exchange instance
        """
        exchange = ccxt.okx({
            'apiKey': config.exchange_api_key,
            'secret': config.exchange_api_secret,
            'password': config.exchange_api_passphrase,
            'enableRateLimit': True,
        })
        if config.paper_trade:
            # Adds the x-simulated-trading header to every request
            exchange.set_sandbox_mode(True)
            logger.info("OKX simulated trading (paper) mode enabled")
        else:
            logger.info("OKX live trading mode enabled")
        return exchange

    async def _request(self, method: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Call one raw OKX endpoint and return its ``data`` array.

        Args:
            method: ccxt implicit method name, e.g. "private_get_account_balance"
            params: Request parameters in OKX format

        Raises:
            ExchangeAuthError: Credential or signature problem
            ExchangeTransientError: Network error, timeout or rate limit
            ExchangeError: Any other rejection
        """
        try:
            response = await getattr(self.exchange, method)(params)
        except ccxt.AuthenticationError as e:
            raise ExchangeAuthError(f"OKX authentication failed [{method}]: {e}") from e
        except ccxt.NetworkError as e:
            raise ExchangeTransientError(f"OKX request failed [{method}]: {e}") from e
        except ccxt.BaseError as e:
            raise ExchangeError(f"OKX request rejected [{method}]: {e}") from e

        if not isinstance(response, dict):
            raise ExchangeError(f"OKX returned unexpected payload [{method}]: {response!r}")
        if str(response.get('code', '0')) != '0':
            raise ExchangeError(
                f"OKX API error [{method}]: {response.get('msg')} (code: {response.get('code')})"
            )
        data = response.get('data') or []
        return data if isinstance(data, list) else [data]

    async def get_balance(self, currency: str = "USDT") -> Balance:
        """
        Fetch balance of one currency.

        Args:
            currency: Currency code (default "USDT")

        Returns:
            Balance with free (availBal), used (frozenBal) and total (eq)
        """
        data = await self._request('private_get_account_balance', {'ccy': currency})
        if not data:
            logger.warning(f"No balance information returned for {currency}")
            return Balance(free=0.0, used=0.0, total=0.0)

        details = data[0].get('details') or []
        asset = next((d for d in details if d.get('ccy') == currency), None)
        if asset is None:
            logger.warning(f"No balance details found for {currency}")
            return Balance(free=0.0, used=0.0, total=0.0)

        return Balance(
            free=float(asset.get('availBal') or 0),
            used=float(asset.get('frozenBal') or 0),
            total=float(asset.get('eq') or 0),
        )

    async def get_positions(self, product_type: str = "SWAP", inst_id: Optional[str] = None) -> List[Position]:
        """Fetch open positions, optionally for one instrument."""
        params = {'instType': product_type}
        if inst_id:
            params['instId'] = inst_id
        data = await self._request('private_get_account_positions', params)
        return [Position.from_okx(item) for item in data]

    async def get_candles(
        self,
        inst_id: str,
        bar: str,
        limit: int,
        after: Optional[int] = None,
        before: Optional[int] = None,
    ) -> List[List[str]]:
        """
        Fetch raw candle rows.

        Rows are NEWEST-FIRST ``[ts, o, h, l, c, vol, volCcy, volCcyQuote, confirm]``
        with string fields; ``confirm`` is "0" for a bar that is still open.
        """
        params: Dict[str, Any] = {'instId': inst_id, 'bar': bar, 'limit': str(limit)}
        if after is not None:
            params['after'] = str(after)
        if before is not None:
            params['before'] = str(before)
        return await self._request('public_get_market_candles', params)

    async def get_ticker(self, inst_id: str) -> Dict[str, Any]:
        data = await self._request('public_get_market_ticker', {'instId': inst_id})
        if not data:
            raise ExchangeError(f"No ticker returned for {inst_id}")
        return data[0]

    async def get_last_price(self, inst_id: str) -> float:
        ticker = await self.get_ticker(inst_id)
        return float(ticker.get('last') or 0)

    async def place_order(self, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        logger.info(f"Placing order: {params}")
        return await self._request('private_post_trade_order', params)

    async def close_position(self, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        logger.info(f"Closing position: {params}")
        return await self._request('private_post_trade_close_position', params)

    async def get_pending_algo_orders(self, inst_id: str, ord_type: str) -> List[Dict[str, Any]]:
        """
        Fetch resting algo orders of one type ("conditional", "oco", ...).

        Args:
            inst_id: Instrument id
            ord_type: OKX algo order type
        """
        return await self._request(
            'private_get_trade_orders_algo_pending', {'instId': inst_id, 'ordType': ord_type}
        )

    async def amend_algo_order(self, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        logger.info(f"Amending algo order: {params}")
        return await self._request('private_post_trade_amend_algos', params)

    async def place_algo_order(self, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        logger.info(f"Placing algo order: {params}")
        return await self._request('private_post_trade_order_algo', params)

    async def get_instruments(
        self,
        product_type: str,
        uly: Optional[str] = None,
        inst_id: Optional[str] = None,
    ) -> List[Instrument]:
        """Fetch instrument metadata (contract value, lot size, minimum size)."""
        params = {'instType': product_type}
        if uly:
            params['uly'] = uly
        if inst_id:
            params['instId'] = inst_id
        data = await self._request('public_get_public_instruments', params)
        return [Instrument.from_okx(item) for item in data]

    async def init_account_settings(self, inst_id: str, leverage: int) -> None:
        """
        Put the account in net position mode and set cross leverage for an instrument.

        "Already set" responses are treated as success; other failures are logged
        and swallowed so that trading can continue with the current settings.
        """
        try:
            await self._request('private_post_account_set_position_mode', {'posMode': 'net_mode'})
            logger.info("OKX position mode set to net mode")
        except ExchangeError as e:
            if any(marker in str(e) for marker in _ALREADY_SET_MARKERS):
                logger.info("OKX position mode is already net mode")
            else:
                logger.warning(f"Failed to set net position mode: {e}")

        try:
            await self._request(
                'private_post_account_set_leverage',
                {'instId': inst_id, 'lever': str(leverage), 'mgnMode': 'cross'},
            )
            logger.info(f"[{inst_id}] Leverage set to {leverage}x")
        except ExchangeError as e:
            logger.warning(f"[{inst_id}] Failed to set leverage: {e}")

    async def close(self) -> None:
        await self.exchange.close()
