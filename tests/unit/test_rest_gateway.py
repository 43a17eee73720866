"""Tests for the REST gateway."""

import hashlib
import hmac
from unittest.mock import AsyncMock, patch

import pytest

from report_sync.clients.gateway import AccountCredential, FetchWindow
from report_sync.clients.rest_gateway import ENDPOINTS, Endpoint, RestGateway, _error_from_response
from report_sync.config.settings import ApiConfig
from report_sync.errors import (
    NonceTooSmallError,
    RateLimitError,
    RemoteError,
    SymbolInvalidError,
)


@pytest.fixture
def gateway():
    return RestGateway(ApiConfig())


def ledger_row(id, mts):
    return [id, "USD", "exchange", mts, None, 1.5, 10.0, None, "deposit"]


class TestConversions:
    """Test page shaping helpers."""

    def test_positional_rows_become_records(self):
        records = RestGateway._to_records(
            [ledger_row(7, 1000)],
            ENDPOINTS["getLedgers"].columns,
            None
        )

        assert records == [{
            "id": 7,
            "currency": "USD",
            "wallet": "exchange",
            "mts": 1000,
            "amount": 1.5,
            "balance": 10.0,
            "description": "deposit"
        }]

    def test_requested_symbol_is_stamped(self):
        records = RestGateway._to_records([[1, 500, 0.1, 20000.0]], ENDPOINTS["getPublicTrades"].columns, "tBTCUSD")

        assert records[0]["symbol"] == "tBTCUSD"
        assert records[0]["mts"] == 500

    def test_non_list_payload_is_empty(self):
        assert RestGateway._to_records({"error": "x"}, (), None) == []

    def test_listing_unwraps_single_outer_list(self):
        assert RestGateway._to_listing([["BTCUSD", "ETHUSD"]], None) == ["BTCUSD", "ETHUSD"]

    def test_listing_key_wraps_scalars(self):
        assert RestGateway._to_listing([["BTC", "ETH"]], "id") == [{"id": "BTC"}, {"id": "ETH"}]

    def test_clamp_limit(self):
        endpoint = Endpoint("x", max_limit=500)

        assert RestGateway._clamp_limit(endpoint, None) == 500
        assert RestGateway._clamp_limit(endpoint, 10000) == 500
        assert RestGateway._clamp_limit(endpoint, 0) == 1
        assert RestGateway._clamp_limit(Endpoint("y"), None) is None


class TestSplitNextPage:
    """Test next-page cursor computation."""

    def test_short_page_has_no_cursor(self):
        rows = [{"mts": 30}, {"mts": 20}]

        assert RestGateway._split_next_page(rows, "mts", 5) == (rows, None)

    def test_full_page_drops_records_sharing_oldest_date(self):
        rows = [{"mts": 30}, {"mts": 20}, {"mts": 10}, {"mts": 10}]

        page, next_page = RestGateway._split_next_page(rows, "mts", 4)

        assert page == [{"mts": 30}, {"mts": 20}]
        assert next_page == 10

    def test_page_with_one_date_steps_past_it(self):
        rows = [{"mts": 10}, {"mts": 10}]

        page, next_page = RestGateway._split_next_page(rows, "mts", 2)

        assert page == rows
        assert next_page == 9


class TestErrorMapping:
    """Test error response classification."""

    def test_rate_limit(self):
        assert isinstance(_error_from_response(429, ""), RateLimitError)
        assert isinstance(_error_from_response(500, '["error",11010,"ERR_RATE_LIMIT"]'), RateLimitError)

    def test_nonce(self):
        assert isinstance(_error_from_response(500, '["error",10114,"nonce: small"]'), NonceTooSmallError)

    def test_symbol(self):
        assert isinstance(_error_from_response(500, '["error",10020,"symbol: invalid"]'), SymbolInvalidError)

    def test_other(self):
        error = _error_from_response(500, "boom")

        assert type(error) is RemoteError
        assert error.status == 500


class TestSigning:
    """Test request signing."""

    def test_signature_headers(self, gateway):
        window = FetchWindow(auth=AccountCredential(api_key="key", api_secret="secret"))

        headers = gateway._sign("v2/auth/r/ledgers/hist", "{}", window)

        payload = f"/api/v2/auth/r/ledgers/hist{headers['bfx-nonce']}{{}}"
        expected = hmac.new(b"secret", payload.encode("utf-8"), hashlib.sha384).hexdigest()
        assert headers["bfx-apikey"] == "key"
        assert headers["bfx-signature"] == expected

    def test_nonce_strictly_increases(self, gateway):
        nonces = [int(gateway._next_nonce()) for _ in range(5)]

        assert nonces == sorted(set(nonces))

    def test_missing_credentials(self, gateway):
        with pytest.raises(RemoteError):
            gateway._sign("v2/auth/r/ledgers/hist", "{}", FetchWindow())


class TestRequest:
    """Test request() with the HTTP layer mocked."""

    def test_has_method(self, gateway):
        assert gateway.has_method("getLedgers")
        assert not gateway.has_method("getNothing")

    @pytest.mark.asyncio
    async def test_full_page_gets_cursor(self, gateway):
        window = FetchWindow.build(limit=3, start=0, end=5000)
        rows = [ledger_row(3, 300), ledger_row(2, 200), ledger_row(1, 100)]

        with patch.object(gateway, "_make_request", AsyncMock(return_value=rows)) as mock_request:
            result = await gateway.request("getLedgers", window)

        assert [r["id"] for r in result.res] == [3, 2]
        assert result.next_page == 100
        assert mock_request.call_args[0][2] == 3

    @pytest.mark.asyncio
    async def test_probe_has_no_cursor(self, gateway):
        window = FetchWindow.probe()

        with patch.object(gateway, "_make_request", AsyncMock(return_value=[ledger_row(1, 100)])) as mock_request:
            result = await gateway.request("getLedgers", window, is_probe=True)

        assert result.res[0]["mts"] == 100
        assert result.next_page is None
        assert mock_request.call_args[0][2] == 1

    @pytest.mark.asyncio
    async def test_listing(self, gateway):
        with patch.object(gateway, "_make_request", AsyncMock(return_value=[["BTC", "ETH"]])):
            result = await gateway.request("getCurrencies", FetchWindow())

        assert result.res == [{"id": "BTC"}, {"id": "ETH"}]

    @pytest.mark.asyncio
    async def test_invalid_symbol_is_empty_when_not_throwing(self, gateway):
        window = FetchWindow.probe(symbol="tNOPE")

        with patch.object(gateway, "_make_request", AsyncMock(side_effect=SymbolInvalidError())):
            result = await gateway.request("getPublicTrades", window, is_probe=True)

        assert result.is_empty

    @pytest.mark.asyncio
    async def test_invalid_symbol_raises_otherwise(self, gateway):
        window = FetchWindow.build(symbol="tNOPE")

        with patch.object(gateway, "_make_request", AsyncMock(side_effect=SymbolInvalidError())):
            with pytest.raises(SymbolInvalidError):
                await gateway.request("getPublicTrades", window)

    @pytest.mark.asyncio
    async def test_request_without_session(self, gateway):
        with pytest.raises(RuntimeError):
            await gateway.request("getSymbols", FetchWindow())

    def test_query_for_dated_endpoint(self):
        window = FetchWindow.build(start=10, end=20, symbol="tBTCUSD")

        query = RestGateway._build_query(ENDPOINTS["getTickersHistory"], window, 250)

        assert query == {"start": 10, "end": 20, "limit": 250, "sort": -1, "symbols": "tBTCUSD"}
