"""aiohttp implementation of the remote access gateway."""

import asyncio
import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from ..config.settings import ApiConfig
from ..errors import (
    NonceTooSmallError,
    RateLimitError,
    RemoteError,
    SymbolInvalidError,
)
from .gateway import ApiResult, FetchWindow, Gateway

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Endpoint:
    """Remote endpoint of one API method."""
    path: str
    auth: bool = False
    date_field: Optional[str] = None
    max_limit: Optional[int] = None
    symbol_param: Optional[str] = None
    # Field names by array position; None skips a position
    columns: Tuple[Optional[str], ...] = ()
    listing_key: Optional[str] = None


_ = None

ENDPOINTS: Dict[str, Endpoint] = {
    "getLedgers": Endpoint(
        "v2/auth/r/ledgers/hist", auth=True, date_field="mts", max_limit=500,
        columns=("id", "currency", "wallet", "mts", _, "amount", "balance", _, "description")
    ),
    "getTrades": Endpoint(
        "v2/auth/r/trades/hist", auth=True, date_field="mtsCreate", max_limit=2500,
        columns=(
            "id", "symbol", "mtsCreate", "orderID", "execAmount", "execPrice",
            "orderType", "orderPrice", "maker", "fee", "feeCurrency"
        )
    ),
    "getFundingTrades": Endpoint(
        "v2/auth/r/funding/trades/hist", auth=True, date_field="mtsCreate", max_limit=1000,
        columns=("id", "symbol", "mtsCreate", "offerID", "amount", "rate", "period", "maker")
    ),
    "getOrders": Endpoint(
        "v2/auth/r/orders/hist", auth=True, date_field="mtsUpdate", max_limit=2500,
        columns=(
            "id", "gid", "cid", "symbol", "mtsCreate", "mtsUpdate", "amount",
            "amountOrig", "type", "typePrev", _, _, "flags", "status", _, _,
            "price", "priceAvg", "priceTrailing", "priceAuxLimit", _, _, _,
            "notify", _, "placedId"
        )
    ),
    "getMovements": Endpoint(
        "v2/auth/r/movements/hist", auth=True, date_field="mtsUpdated", max_limit=1000,
        columns=(
            "id", "currency", "currencyName", _, _, "mtsStarted", "mtsUpdated",
            _, _, "status", _, _, "amount", "fees", _, _, "destinationAddress",
            _, _, _, "transactionId"
        )
    ),
    "getFundingOfferHistory": Endpoint(
        "v2/auth/r/funding/offers/hist", auth=True, date_field="mtsUpdate", max_limit=500,
        columns=(
            "id", "symbol", "mtsCreate", "mtsUpdate", "amount", "amountOrig",
            "type", _, _, "flags", "status", _, _, _, "rate", "period",
            "notify", "hidden", _, "renew", "rateReal"
        )
    ),
    "getFundingLoanHistory": Endpoint(
        "v2/auth/r/funding/loans/hist", auth=True, date_field="mtsUpdate", max_limit=500,
        columns=(
            "id", "symbol", "side", "mtsCreate", "mtsUpdate", "amount", "flags",
            "status", _, _, _, "rate", "period", "mtsOpening", "mtsLastPayout",
            "notify", "hidden", _, "renew", "rateReal", "noClose"
        )
    ),
    "getFundingCreditHistory": Endpoint(
        "v2/auth/r/funding/credits/hist", auth=True, date_field="mtsUpdate", max_limit=500,
        columns=(
            "id", "symbol", "side", "mtsCreate", "mtsUpdate", "amount", "flags",
            "status", _, _, _, "rate", "period", "mtsOpening", "mtsLastPayout",
            "notify", "hidden", _, "renew", "rateReal", "noClose", "positionPair"
        )
    ),
    "getPositionsHistory": Endpoint(
        "v2/auth/r/positions/hist", auth=True, date_field="mtsUpdate", max_limit=500,
        columns=(
            "symbol", "status", "amount", "basePrice", "marginFunding",
            "marginFundingType", "pl", "plPerc", "liquidationPrice", "leverage",
            _, "id", "mtsCreate", "mtsUpdate"
        )
    ),
    "getPublicTrades": Endpoint(
        "v2/trades/{symbol}/hist", date_field="mts", max_limit=5000,
        columns=("id", "mts", "amount", "price")
    ),
    "getTickersHistory": Endpoint(
        "v2/tickers/hist", date_field="mtsUpdate", max_limit=250, symbol_param="symbols",
        columns=("symbol", "bid", _, "ask", _, _, _, _, _, _, _, _, "mtsUpdate")
    ),
    "getSymbols": Endpoint("v2/conf/pub:list:pair:exchange"),
    "getFutures": Endpoint("v2/conf/pub:list:pair:futures"),
    "getCurrencies": Endpoint("v2/conf/pub:list:currency", listing_key="id"),
}


class RestGateway(Gateway):
    """Rate-limited REST gateway with signed requests for account endpoints."""

    def __init__(self, config: ApiConfig, endpoints: Optional[Dict[str, Endpoint]] = None):
        self.config = config
        self.endpoints = dict(ENDPOINTS if endpoints is None else endpoints)
        self.session: Optional[aiohttp.ClientSession] = None
        self.rate_limiter = RateLimiter(config.rate_limit_requests_per_minute)
        self._last_nonce = 0

        # Statistics
        self.stats = {
            "requests": 0,
            "errors": 0,
            "records_received": 0
        }

    async def __aenter__(self):
        """Async context manager entry."""
        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.config.request_timeout_seconds),
            headers={"User-Agent": self.config.user_agent}
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        if self.session:
            await self.session.close()
            self.session = None

    def has_method(self, method: str) -> bool:
        return method in self.endpoints

    async def request(
        self,
        method: str,
        window: FetchWindow,
        is_probe: bool = False
    ) -> ApiResult:
        """Execute one API call and return a page of records."""
        endpoint = self.endpoints[method]
        params = window.params
        limit = self._clamp_limit(endpoint, 1 if is_probe else params.limit)

        try:
            data = await self._make_request(endpoint, window, limit)
        except SymbolInvalidError:
            if params.not_throw_error:
                logger.debug(f"Symbol {params.symbol} is not supported by {method}, returning empty page")
                return ApiResult(res=[], next_page=None)
            raise

        if endpoint.date_field is None:
            return ApiResult(res=self._to_listing(data, endpoint.listing_key), next_page=None)

        rows = self._to_records(data, endpoint.columns, params.symbol)
        self.stats["records_received"] += len(rows)

        if is_probe or params.not_check_next_page:
            return ApiResult(res=rows, next_page=None)

        rows, next_page = self._split_next_page(rows, endpoint.date_field, limit)
        return ApiResult(res=rows, next_page=next_page)

    async def _make_request(self, endpoint: Endpoint, window: FetchWindow, limit: Optional[int]) -> Any:
        """Make rate-limited HTTP request."""
        if not self.session:
            raise RuntimeError("Gateway not initialized. Use async context manager.")

        params = window.params
        path = endpoint.path.format(symbol=params.symbol or "")
        url = f"{self.config.rest_base_url}/{path}"
        query = self._build_query(endpoint, window, limit)

        await self.rate_limiter.acquire()
        self.stats["requests"] += 1

        try:
            if endpoint.auth:
                body = json.dumps(query)
                headers = self._sign(path, body, window)
                headers["Content-Type"] = "application/json"
                async with self.session.post(url, data=body, headers=headers) as response:
                    return await self._read_response(response)

            async with self.session.get(url, params=query) as response:
                return await self._read_response(response)

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.stats["errors"] += 1
            logger.error(f"Request to {path} failed: {e}")
            raise RemoteError(f"ERR_REQUEST_FAILED: {e}") from e

    async def _read_response(self, response: aiohttp.ClientResponse) -> Any:
        text = await response.text()

        if response.status >= 400:
            self.stats["errors"] += 1
            raise _error_from_response(response.status, text)

        return json.loads(text) if text else []

    @staticmethod
    def _build_query(endpoint: Endpoint, window: FetchWindow, limit: Optional[int]) -> Dict[str, Any]:
        params = window.params
        query: Dict[str, Any] = {}

        if endpoint.date_field is not None:
            if params.start is not None:
                query["start"] = params.start
            if params.end is not None:
                query["end"] = params.end
            if limit is not None:
                query["limit"] = limit
            query["sort"] = -1
        if endpoint.symbol_param and params.symbol:
            query[endpoint.symbol_param] = params.symbol

        return query

    @staticmethod
    def _clamp_limit(endpoint: Endpoint, limit: Optional[int]) -> Optional[int]:
        if endpoint.max_limit is None:
            return limit
        if limit is None:
            return endpoint.max_limit

        return max(1, min(limit, endpoint.max_limit))

    def _next_nonce(self) -> str:
        nonce = max(int(time.time() * 1000000), self._last_nonce + 1)
        self._last_nonce = nonce
        return str(nonce)

    def _sign(self, path: str, body: str, window: FetchWindow) -> Dict[str, str]:
        """Build HMAC-SHA384 authentication headers."""
        auth = window.auth
        if auth is None or not auth.is_valid:
            raise RemoteError("ERR_AUTH_UNAUTHORIZED", status=401)

        nonce = self._next_nonce()
        payload = f"/api/{path}{nonce}{body}"
        signature = hmac.new(
            auth.api_secret.encode("utf-8"),
            payload.encode("utf-8"),
            hashlib.sha384
        ).hexdigest()

        return {
            "bfx-nonce": nonce,
            "bfx-apikey": auth.api_key,
            "bfx-signature": signature
        }

    @staticmethod
    def _to_records(
        rows: Any,
        columns: Tuple[Optional[str], ...],
        symbol: Optional[str]
    ) -> List[Any]:
        """Convert positional rows to dicts, stamping the requested symbol."""
        if not isinstance(rows, list):
            return []

        records = []
        for row in rows:
            if isinstance(row, list) and columns:
                row = {
                    name: row[index]
                    for index, name in enumerate(columns)
                    if name and index < len(row)
                }
            if symbol and isinstance(row, dict) and row.get("symbol") is None:
                row = {**row, "symbol": symbol}
            records.append(row)

        return records

    @staticmethod
    def _to_listing(data: Any, listing_key: Optional[str]) -> List[Any]:
        if not isinstance(data, list):
            return []

        # Configuration listings are wrapped in a single outer list
        if len(data) == 1 and isinstance(data[0], list):
            data = data[0]
        if not listing_key:
            return data

        return [
            item if isinstance(item, dict) else {listing_key: item}
            for item in data
        ]

    @staticmethod
    def _split_next_page(
        rows: List[Any],
        date_field: str,
        limit: Optional[int]
    ) -> Tuple[List[Any], Optional[int]]:
        """Compute the next-page cursor of a full page.

        Records sharing the oldest date are dropped from the page and the
        cursor is set to that date, so the next page starts with all of them.
        """
        if not rows or limit is None or len(rows) < limit:
            return rows, None

        oldest = rows[-1].get(date_field) if isinstance(rows[-1], dict) else None
        if not isinstance(oldest, int):
            return rows, None

        trimmed = list(rows)
        while trimmed and isinstance(trimmed[-1], dict) and trimmed[-1].get(date_field) == oldest:
            trimmed.pop()

        if not trimmed:
            return rows, oldest - 1

        return trimmed, oldest


def _error_from_response(status: int, text: str) -> RemoteError:
    """Map an error response onto the remote error types."""
    lowered = text.lower()

    if status == 429 or "err_rate_limit" in lowered or "ratelimit" in lowered:
        return RateLimitError(status=status, body=text)
    if "nonce: small" in lowered:
        return NonceTooSmallError(status=status, body=text)
    if "symbol: invalid" in lowered:
        return SymbolInvalidError(status=status, body=text)

    return RemoteError(f"ERR_REMOTE_API: {status} {text[:200]}", status=status, body=text)


class RateLimiter:
    """Token bucket rate limiter for API requests."""

    def __init__(self, requests_per_minute: int):
        self.requests_per_minute = requests_per_minute
        self.tokens = requests_per_minute
        self.last_update = time.time()
        self.lock = asyncio.Lock()

    async def acquire(self):
        """Acquire a token for making a request."""
        async with self.lock:
            now = time.time()
            elapsed = now - self.last_update

            # Add tokens based on elapsed time
            self.tokens = min(
                self.requests_per_minute,
                self.tokens + elapsed * (self.requests_per_minute / 60.0)
            )
            self.last_update = now

            if self.tokens >= 1:
                self.tokens -= 1
            else:
                # Wait until we have a token
                wait_time = (1 - self.tokens) / (self.requests_per_minute / 60.0)
                await asyncio.sleep(wait_time)
                self.tokens = 0
