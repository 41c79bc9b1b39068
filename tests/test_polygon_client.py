"""
Unit tests for the Polygon REST client, with requests.get patched out.
"""

from datetime import date, datetime, timezone

import pytest
import requests

from core import polygon_client
from core.polygon_client import PolygonClient, PolygonError, to_sip_nanos


class FakeResponse:
    def __init__(self, payload=None, status_code=200):
        self._payload = payload if payload is not None else {}
        self.status_code = status_code
        self.text = str(self._payload)

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload

    def raise_for_status(self):
        if 400 <= self.status_code < 500:
            raise requests.HTTPError(f"{self.status_code} Client Error")


@pytest.fixture
def http(monkeypatch):
    """Queue of responses served by requests.get; requested URLs are recorded."""

    class Http:
        def __init__(self):
            self.responses = []
            self.requests = []

        def get(self, url, params=None, timeout=None):
            self.requests.append((url, dict(params or {})))
            response = self.responses.pop(0) if self.responses else FakeResponse()
            if isinstance(response, Exception):
                raise response
            return response

    fake = Http()
    monkeypatch.setattr(polygon_client.requests, "get", fake.get)
    return fake


@pytest.fixture
def client():
    return PolygonClient(api_key="test-key", max_retries=3, backoff_seconds=0)


class TestGet:
    def test_adds_api_key(self, http, client):
        http.responses.append(FakeResponse({"ok": True}))

        assert client.get("/v1/ping") == {"ok": True}
        url, params = http.requests[0]
        assert url == "https://api.polygon.io/v1/ping"
        assert params["apiKey"] == "test-key"

    def test_retries_server_errors(self, http, client):
        http.responses.extend([FakeResponse(status_code=502), FakeResponse({"ok": True})])

        assert client.get("/v1/ping") == {"ok": True}
        assert len(http.requests) == 2

    def test_retries_connection_errors(self, http, client):
        http.responses.extend([requests.ConnectionError("reset"), FakeResponse({"ok": 1})])
        assert client.get("/v1/ping") == {"ok": 1}

    def test_gives_up_after_max_retries(self, http, client):
        http.responses.extend([FakeResponse(status_code=500)] * 3)

        with pytest.raises(PolygonError):
            client.get("/v1/ping")
        assert len(http.requests) == 3

    def test_retries_timeouts(self, http, client):
        http.responses.extend([requests.Timeout("slow"), FakeResponse({"ok": 1})])
        assert client.get("/v1/ping") == {"ok": 1}
        assert len(http.requests) == 2

    @pytest.mark.parametrize("status", [400, 401, 403, 404])
    def test_client_error_is_not_retried(self, http, client, status):
        http.responses.extend([FakeResponse(status_code=status), FakeResponse({"ok": True})])

        with pytest.raises(PolygonError, match=str(status)):
            client.get("/v1/ping")
        assert len(http.requests) == 1

    def test_rate_limit_is_retried(self, http, client):
        http.responses.extend([FakeResponse(status_code=429), FakeResponse({"ok": True})])

        assert client.get("/v1/ping") == {"ok": True}
        assert len(http.requests) == 2

    def test_bad_json(self, http, client):
        http.responses.extend([FakeResponse(ValueError("not json"))] * 3)
        with pytest.raises(PolygonError, match="invalid JSON"):
            client.get("/v1/ping")
        assert len(http.requests) == 1

    def test_invalid_request_is_not_retried(self, http, client):
        http.responses.extend([requests.exceptions.InvalidURL("bad url"), FakeResponse({"ok": 1})])
        with pytest.raises(PolygonError):
            client.get("/v1/ping")
        assert len(http.requests) == 1


class TestHelpers:
    def test_option_snapshot_path(self, http, client):
        http.responses.append(FakeResponse({"results": {"open_interest": 10}}))

        result = client.get_option_snapshot("amd", "O:AMD260227C00205000")

        assert result == {"open_interest": 10}
        assert http.requests[0][0].endswith("/v3/snapshot/options/AMD/O:AMD260227C00205000")

    def test_index_snapshot_uses_index_prefix(self, http, client):
        client.get_option_snapshot("SPX", "O:SPX260320C05000000")
        assert "/v3/snapshot/options/I:SPX/" in http.requests[0][0]

    def test_snapshot_list_picks_matching_contract(self, http, client):
        http.responses.append(
            FakeResponse(
                {
                    "results": [
                        {"details": {"ticker": "O:AMD260227P00200000"}, "open_interest": 1},
                        {"details": {"ticker": "O:AMD260227C00205000"}, "open_interest": 2},
                    ]
                }
            )
        )
        result = client.get_option_snapshot("AMD", "O:AMD260227C00205000")
        assert result["open_interest"] == 2

    @pytest.mark.parametrize(
        "ticker_data,expected",
        [
            ({"lastTrade": {"p": 201.5}, "day": {"c": 200.0}}, 201.5),
            ({"day": {"c": 200.0}, "prevDay": {"c": 198.0}}, 200.0),
            ({"prevDay": {"c": 198.0}}, 198.0),
            ({}, 0.0),
        ],
    )
    def test_stock_price_fallbacks(self, http, client, ticker_data, expected):
        http.responses.append(FakeResponse({"ticker": ticker_data}))
        assert client.get_stock_price("amd") == expected
        assert http.requests[0][0].endswith("/tickers/AMD")

    def test_quote_at(self, http, client):
        http.responses.append(FakeResponse({"results": [{"bid_price": 1.0, "ask_price": 1.2}]}))

        quote = client.get_quote_at("O:AMD260227C00205000", 123)

        assert quote == {"bid_price": 1.0, "ask_price": 1.2}
        assert http.requests[0][1]["timestamp.lte"] == 123

    def test_quote_at_empty(self, http, client):
        assert client.get_quote_at("O:AMD260227C00205000", 123) is None

    def test_daily_closes(self, http, client):
        http.responses.append(FakeResponse({"results": [{"c": 100.0}, {"c": 101.5}, {"o": 1}]}))

        closes = client.get_daily_closes("spy", date(2026, 1, 20), date(2026, 2, 20))

        assert closes == [100.0, 101.5]
        assert http.requests[0][0].endswith("/v2/aggs/ticker/SPY/range/1/day/2026-01-20/2026-02-20")

    def test_list_option_trades_since(self, http, client):
        client.list_option_trades("O:AMD260227C00205000", since_ns=42)
        assert http.requests[0][1]["timestamp.gte"] == 42

    def test_list_option_contracts(self, http, client):
        http.responses.append(FakeResponse({"results": [{"ticker": "O:AMD260227C00205000"}]}))

        contracts = client.list_option_contracts("amd")

        assert contracts == [{"ticker": "O:AMD260227C00205000"}]
        assert http.requests[0][1]["underlying_ticker"] == "AMD"


def test_to_sip_nanos():
    ts = datetime(2026, 2, 20, 15, 30, 15, tzinfo=timezone.utc)
    assert to_sip_nanos(ts) == 1_771_601_415_000_000_000
