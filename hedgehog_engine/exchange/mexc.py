"""
Async MEXC spot REST client.

Handles request signing, rate limiting, retries and payload mapping to the
engine's domain models. Contains no trading logic.
"""

import asyncio
import hashlib
import hmac
import time
from typing import Any
from urllib.parse import urlencode

import httpx

from hedgehog_engine.config import Settings
from hedgehog_engine.domain import (
    AccountInfo,
    Balance,
    BookTicker,
    Fill,
    Instrument,
    Order,
    OrderSide,
    OrderStatus,
    OrderType,
)
from hedgehog_engine.exchange.interface import (
    ExchangeClient,
    ExchangeError,
    ExchangeNetworkError,
    ExchangeRateLimitError,
)
from hedgehog_engine.exchange.rate_limit import RequestWeightLimiter, endpoint_weight
from hedgehog_engine.exchange.redaction import redact_headers, safe_log_request
from hedgehog_engine.logging import get_logger
from hedgehog_engine.runtime.clock import Clock, get_system_clock

logger = get_logger(__name__)

API_PREFIX = "/api/v3"
API_KEY_HEADER = "X-MEXC-APIKEY"

# Filter fallbacks when the exchange omits them
DEFAULT_TICK_SIZE = 0.01
DEFAULT_STEP_SIZE = 0.000001
DEFAULT_MIN_NOTIONAL = 1.0


def _to_float(value: Any, default: float = 0.0) -> float:
    if value is None or value == "":
        return default
    return float(value)


def _precision_to_increment(precision: Any) -> float | None:
    if precision is None or precision == "":
        return None
    return 10.0 ** (-int(precision))


def parse_instrument(data: dict[str, Any]) -> Instrument:
    """
    Map an exchangeInfo symbol entry to an Instrument.

    Binance-style filters win when present; otherwise MEXC's precision
    fields are used, then conservative defaults.
    """
    filters = {f.get("filterType"): f for f in data.get("filters") or []}
    price_filter = filters.get("PRICE_FILTER", {})
    lot_filter = filters.get("LOT_SIZE", {})
    notional_filter = filters.get("MIN_NOTIONAL", {})

    tick_size = _to_float(price_filter.get("tickSize")) or _precision_to_increment(
        data.get("quotePrecision")
    )
    step_size = _to_float(lot_filter.get("stepSize")) or _to_float(data.get("baseSizePrecision"))
    min_notional = _to_float(notional_filter.get("minNotional")) or _to_float(
        data.get("quoteAmountPrecision")
    )
    max_notional = _to_float(notional_filter.get("maxNotional")) or _to_float(
        data.get("maxQuoteAmount")
    )
    max_qty = _to_float(lot_filter.get("maxQty"))

    return Instrument(
        symbol=data["symbol"],
        base_asset=data.get("baseAsset", ""),
        quote_asset=data.get("quoteAsset", ""),
        tick_size=tick_size or DEFAULT_TICK_SIZE,
        step_size=step_size or DEFAULT_STEP_SIZE,
        min_notional=min_notional or DEFAULT_MIN_NOTIONAL,
        min_qty=_to_float(lot_filter.get("minQty")),
        max_qty=max_qty or None,
        max_notional=max_notional or None,
    )


def parse_order(data: dict[str, Any], now_ms: int) -> Order:
    """Map an order payload (new/cancel/open orders) to an Order."""
    status = data.get("status") or OrderStatus.NEW.value
    order_type = data.get("type") or OrderType.LIMIT.value
    created = data.get("time") or data.get("transactTime") or now_ms
    return Order(
        id=str(data["orderId"]),
        client_order_id=data.get("clientOrderId") or None,
        symbol=data["symbol"],
        side=OrderSide(str(data["side"]).upper()),
        order_type=OrderType(order_type),
        price=_to_float(data.get("price")),
        quantity=_to_float(data.get("origQty")),
        filled_quantity=_to_float(data.get("executedQty")),
        status=OrderStatus(status),
        timestamp=int(created),
        update_time=int(data.get("updateTime") or created),
    )


def parse_fill(data: dict[str, Any]) -> Fill:
    """Map a myTrades entry to a Fill."""
    return Fill(
        id=str(data["id"]),
        order_id=str(data["orderId"]),
        client_order_id=data.get("clientOrderId") or None,
        symbol=data["symbol"],
        side=OrderSide.BUY if data.get("isBuyer") else OrderSide.SELL,
        price=_to_float(data["price"]),
        quantity=_to_float(data["qty"]),
        fee=_to_float(data.get("commission")),
        fee_asset=data.get("commissionAsset"),
        timestamp=int(data["time"]),
    )


class MexcRestClient(ExchangeClient):
    """
    Async client for the MEXC spot REST API.

    Handles:
    - HMAC-SHA256 request signing with X-MEXC-APIKEY
    - Request weight budgeting per endpoint
    - Retry/backoff for 429, 5xx and transport errors
    """

    def __init__(self, settings: Settings, clock: Clock | None = None) -> None:
        self._settings = settings
        self._clock = clock or get_system_clock()
        self._base_url = settings.base_url.rstrip("/")
        self._timeout = settings.request_timeout
        self._max_retries = settings.max_retries
        self._recv_window = settings.recv_window_ms

        self._rate_limiter = RequestWeightLimiter(
            weight_per_second=settings.rate_limit_rps,
            burst=settings.rate_limit_burst,
            clock=self._clock,
        )
        self._client: httpx.AsyncClient | None = None

        # Latency tracking
        self._last_latency_ms = 0
        self._latency_history: list[int] = []
        self._max_history = 100

    @property
    def metrics(self) -> dict[str, Any]:
        """Get connection metrics."""
        avg_latency = (
            sum(self._latency_history) / len(self._latency_history)
            if self._latency_history
            else 0
        )
        return {
            "last_request_latency_ms": self._last_latency_ms,
            "average_latency_ms": round(avg_latency, 1),
            "rate_limiter": self._rate_limiter.stats,
        }

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    # =========================================================================
    # Transport
    # =========================================================================

    def _sign(self, params: dict[str, Any]) -> dict[str, Any]:
        if self._settings.api_key is None or self._settings.api_secret is None:
            raise ExchangeError("MEXC API credentials not configured")

        signed = {k: v for k, v in params.items() if v is not None}
        signed["recvWindow"] = self._recv_window
        signed["timestamp"] = self._clock.now_ms()
        query = urlencode(signed)
        signed["signature"] = hmac.new(
            self._settings.api_secret.get_secret_value().encode("utf-8"),
            query.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        return signed

    def _headers(self, signed: bool) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if signed and self._settings.api_key is not None:
            headers[API_KEY_HEADER] = self._settings.api_key.get_secret_value()
        return headers

    @staticmethod
    def _error_from_response(response: httpx.Response) -> ExchangeError:
        code: str | None = None
        message = response.text
        try:
            body = response.json()
            code = str(body.get("code")) if body.get("code") is not None else None
            message = body.get("msg", message)
        except ValueError:
            pass
        return ExchangeError(
            f"MEXC error {response.status_code}: {message}",
            status_code=response.status_code,
            error_code=code,
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        signed: bool = False,
    ) -> Any:
        """
        Make a request with rate limiting and retries.

        Signed requests are re-signed on every attempt so the timestamp stays
        inside the receive window.

        Returns:
            Decoded JSON body

        Raises:
            ExchangeRateLimitError: 429 after all retries
            ExchangeNetworkError: Timeouts or transport errors after all retries
            ExchangeError: Any other non-success response
        """
        url = f"{self._base_url}{API_PREFIX}{path}"
        weight = endpoint_weight(method, path)
        base_params = {k: v for k, v in (params or {}).items() if v is not None}

        last_error: Exception | None = None
        rate_limited = False
        for attempt in range(self._max_retries + 1):
            request_params = self._sign(base_params) if signed else base_params
            headers = self._headers(signed)
            logger.debug("MEXC request: %s", safe_log_request(method, url, headers, request_params))

            try:
                wait_time = await self._rate_limiter.acquire(weight)
                if wait_time > 0:
                    logger.debug("Waited %.2fs for %d request weight on %s", wait_time, weight, path)

                client = await self._get_client()
                start_time = time.perf_counter()
                response = await client.request(
                    method,
                    url,
                    headers=headers,
                    params=request_params,
                )
                latency_ms = int((time.perf_counter() - start_time) * 1000)
                self._last_latency_ms = latency_ms
                self._latency_history.append(latency_ms)
                if len(self._latency_history) > self._max_history:
                    self._latency_history.pop(0)

                logger.debug(
                    "MEXC response: status=%d headers=%s",
                    response.status_code,
                    redact_headers(dict(response.headers)),
                )

                if response.status_code == 429:
                    rate_limited = True
                    backoff = 2**attempt
                    logger.warning(
                        "Rate limited (429), backing off %ds (attempt %d/%d)",
                        backoff,
                        attempt + 1,
                        self._max_retries + 1,
                    )
                    await asyncio.sleep(backoff)
                    continue

                if response.status_code >= 500:
                    last_error = self._error_from_response(response)
                    backoff = 2**attempt
                    logger.warning(
                        "Server error %d, backing off %ds (attempt %d/%d)",
                        response.status_code,
                        backoff,
                        attempt + 1,
                        self._max_retries + 1,
                    )
                    await asyncio.sleep(backoff)
                    continue

                if response.status_code >= 400:
                    raise self._error_from_response(response)

                return response.json()

            except httpx.TimeoutException as e:
                last_error = e
                backoff = 2**attempt
                logger.warning(
                    "Request timeout, backing off %ds (attempt %d/%d)",
                    backoff,
                    attempt + 1,
                    self._max_retries + 1,
                )
                await asyncio.sleep(backoff)
                continue

            except httpx.RequestError as e:
                last_error = e
                backoff = 2**attempt
                logger.warning(
                    "Request error: %s, backing off %ds (attempt %d/%d)",
                    str(e),
                    backoff,
                    attempt + 1,
                    self._max_retries + 1,
                )
                await asyncio.sleep(backoff)
                continue

        attempts = self._max_retries + 1
        if isinstance(last_error, httpx.RequestError):
            raise ExchangeNetworkError(f"Request failed after {attempts} attempts: {last_error}")
        if rate_limited and last_error is None:
            raise ExchangeRateLimitError(
                f"Rate limit exceeded after {attempts} attempts", status_code=429
            )
        if isinstance(last_error, ExchangeError):
            raise last_error
        raise ExchangeError(f"Request failed after {attempts} attempts")

    # =========================================================================
    # Market Data
    # =========================================================================

    async def get_book_ticker(self, symbol: str) -> BookTicker:
        data = await self._request("GET", "/ticker/bookTicker", params={"symbol": symbol})
        return BookTicker(
            symbol=data.get("symbol", symbol),
            bid_price=_to_float(data["bidPrice"]),
            bid_qty=_to_float(data.get("bidQty")),
            ask_price=_to_float(data["askPrice"]),
            ask_qty=_to_float(data.get("askQty")),
            timestamp=self._clock.now_ms(),
        )

    async def get_price(self, symbol: str) -> float:
        data = await self._request("GET", "/ticker/price", params={"symbol": symbol})
        return _to_float(data["price"])

    # =========================================================================
    # Account
    # =========================================================================

    async def get_account_info(self) -> AccountInfo:
        data = await self._request("GET", "/account", signed=True)
        return AccountInfo(
            balances=[
                Balance(
                    asset=b["asset"],
                    free=_to_float(b.get("free")),
                    locked=_to_float(b.get("locked")),
                )
                for b in data.get("balances", [])
            ],
            can_trade=bool(data.get("canTrade", True)),
        )

    async def get_my_trades(
        self,
        symbol: str,
        limit: int = 100,
        from_id: str | None = None,
    ) -> list[Fill]:
        data = await self._request(
            "GET",
            "/myTrades",
            params={"symbol": symbol, "limit": limit, "fromId": from_id},
            signed=True,
        )
        return [parse_fill(item) for item in data]

    # =========================================================================
    # Instruments
    # =========================================================================

    async def get_exchange_info(self, symbol: str | None = None) -> list[Instrument]:
        data = await self._request("GET", "/exchangeInfo", params={"symbol": symbol})
        symbols = data.get("symbols", [])
        if symbol is not None:
            symbols = [s for s in symbols if s.get("symbol") == symbol]
        return [parse_instrument(s) for s in symbols]

    # =========================================================================
    # Orders
    # =========================================================================

    async def get_open_orders(self, symbol: str) -> list[Order]:
        data = await self._request("GET", "/openOrders", params={"symbol": symbol}, signed=True)
        now = self._clock.now_ms()
        return [parse_order(item, now) for item in data]

    async def place_order(
        self,
        symbol: str,
        side: OrderSide,
        order_type: OrderType,
        quantity: float,
        price: float | None = None,
        client_order_id: str | None = None,
    ) -> Order:
        params: dict[str, Any] = {
            "symbol": symbol,
            "side": side.value,
            "type": order_type.value,
            "quantity": f"{quantity:.10f}".rstrip("0").rstrip("."),
            "price": f"{price:.10f}".rstrip("0").rstrip(".") if price is not None else None,
            "newClientOrderId": client_order_id,
        }
        data = await self._request("POST", "/order", params=params, signed=True)
        now = self._clock.now_ms()

        # The new-order ack may omit the echo fields
        payload = {
            "symbol": symbol,
            "side": side.value,
            "type": order_type.value,
            "origQty": quantity,
            "price": price or 0.0,
            "clientOrderId": client_order_id,
            **{k: v for k, v in data.items() if v is not None},
        }
        logger.info(
            "Order placed: %s %s %s @ %s (client_order_id=%s)",
            symbol,
            side.value,
            quantity,
            price,
            client_order_id,
        )
        return parse_order(payload, now)

    async def cancel_order(
        self,
        symbol: str,
        order_id: str | None = None,
        client_order_id: str | None = None,
    ) -> Order | None:
        if order_id is None and client_order_id is None:
            raise ExchangeError("cancel_order requires order_id or client_order_id")

        params = {"symbol": symbol}
        if order_id is not None:
            params["orderId"] = order_id
        else:
            params["origClientOrderId"] = client_order_id

        data = await self._request("DELETE", "/order", params=params, signed=True)
        if not isinstance(data, dict) or "orderId" not in data:
            return None
        return parse_order(data, self._clock.now_ms())
