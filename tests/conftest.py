"""Shared pytest fixtures for options flow tests."""

import threading
import time
from collections import Counter
from datetime import date, datetime, timezone

import pytest

from core.models import FillStyle, Trade
from core.options_utils import build_option_ticker
from core.polygon_client import PolygonError

# Friday 2026-02-20 10:30:15 ET
TRADE_TS = datetime(2026, 2, 20, 15, 30, 15, tzinfo=timezone.utc)
EXPIRY = date(2026, 2, 27)


class FakePolygonClient:
    """
    In-memory stand-in for PolygonClient.

    Each mapping holds the payload to return per key; an Exception
    instance as the value is raised instead. Every call is counted.
    """

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self.option_snapshots = {}
        self.quotes = {}
        self.stock_prices = {}
        self.closes = {}
        self.contracts = {}
        self.trades = {}
        self.calls = Counter()
        self._lock = threading.Lock()

    def _hit(self, kind, key, store, default):
        with self._lock:
            self.calls[kind] += 1
            self.calls[(kind, key)] += 1
        if self.latency:
            time.sleep(self.latency)
        value = store.get(key, default)
        if isinstance(value, Exception):
            raise value
        return value

    def get_option_snapshot(self, underlying, option_ticker):
        return self._hit("snapshot", option_ticker, self.option_snapshots, {})

    def get_quote_at(self, option_ticker, timestamp_ns):
        return self._hit("quote", option_ticker, self.quotes, None)

    def get_stock_price(self, ticker):
        return self._hit("stock", ticker, self.stock_prices, 0.0)

    def get_daily_closes(self, ticker, start, end):
        return self._hit("closes", ticker, self.closes, [])

    def list_option_contracts(self, underlying, *, limit=250):
        return self._hit("contracts", underlying, self.contracts, [])

    def list_option_trades(self, option_ticker, *, since_ns=None, limit=1000):
        return self._hit("trades", option_ticker, self.trades, [])


@pytest.fixture
def fake_client():
    return FakePolygonClient()


@pytest.fixture
def slow_client():
    return FakePolygonClient(latency=0.05)


@pytest.fixture
def polygon_error():
    return PolygonError("boom")


@pytest.fixture
def make_trade():
    """Factory for Trade objects with AMD 205C defaults."""

    def _make(
        *,
        underlying="AMD",
        strike=205.0,
        expiry=EXPIRY,
        option_type="call",
        size=100,
        premium=4.75,
        total_premium=None,
        timestamp=TRADE_TS,
        exchange=1,
        fill_style=FillStyle.AA,
        spot_price=200.0,
        days_to_expiry=6,
        bid=None,
        ask=None,
        trade_type=None,
    ):
        return Trade(
            ticker=build_option_ticker(underlying, expiry, option_type, strike),
            underlying_ticker=underlying,
            strike=strike,
            expiry=expiry,
            type=option_type,
            trade_size=size,
            premium_per_contract=premium,
            total_premium=total_premium if total_premium is not None else size * premium * 100,
            trade_timestamp=timestamp,
            exchange=exchange,
            fill_style=fill_style,
            spot_price=spot_price,
            days_to_expiry=days_to_expiry,
            bid=bid,
            ask=ask,
            trade_type=trade_type,
        )

    return _make
