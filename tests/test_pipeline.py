"""
End-to-end tests for classify -> enrich -> grade -> aggregate.
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from core.enrichment import EnrichmentCache
from core.models import FillStyle, TradeType
from core.pipeline import run_pipeline, to_payload

TRADE_TS = datetime(2026, 2, 20, 15, 30, 15, tzinfo=timezone.utc)
NOW = TRADE_TS + timedelta(hours=14)


@pytest.fixture
def cache(fake_client):
    return EnrichmentCache(fake_client, today=date(2026, 2, 21))


@pytest.fixture
def market(fake_client, make_trade):
    call = make_trade()
    fake_client.option_snapshots[call.ticker] = {
        "last_quote": {"bid": 2.70, "ask": 2.90},
        "day": {"volume": 5000},
        "open_interest": 1200,
    }
    fake_client.stock_prices["AMD"] = 201.0
    fake_client.closes["AMD"] = [100.0, 102.0, 100.0, 104.0]
    fake_client.closes["SPY"] = [100.0, 100.5, 101.0, 101.0]
    return fake_client


class TestRunPipeline:
    def test_scores_and_sorts(self, market, cache, make_trade):
        trades = [
            make_trade(size=10),
            make_trade(),
            make_trade(underlying="NVDA", strike=180.0, days_to_expiry=60),
        ]

        report = run_pipeline(trades, cache, now=NOW)

        assert len(report.trades) == 3
        scores = [(s.positioning.score, s.trade.total_premium) for s in report.trades]
        assert scores == sorted(scores, reverse=True)
        assert report.trades[-1].trade.underlying_ticker == "NVDA"
        assert all(s.trade.trade_type is not None for s in report.trades)
        assert report.summary.total_trades == 3
        assert report.generated_at == NOW

    def test_one_snapshot_per_contract(self, market, cache, make_trade):
        trades = [make_trade(size=s) for s in range(10, 24)]

        report = run_pipeline(trades, cache, now=NOW)

        assert len(report.trades) == 14
        assert market.calls["snapshot"] == 1
        first = report.trades[0]
        assert first.enrichment.option_price == pytest.approx(2.80)
        assert first.positioning.scores.contract_price == 15

    def test_fill_style_resolved_before_classification(self, market, cache, make_trade):
        trade = make_trade(fill_style=FillStyle.UNKNOWN, premium=4.78)
        market.quotes[trade.ticker] = {"bid_price": 4.50, "ask_price": 4.80}

        report = run_pipeline([trade], cache, now=NOW)

        result = report.trades[0].trade
        assert result.fill_style is FillStyle.A
        assert result.ask == 4.80
        assert result.trade_type is TradeType.SWEEP

    def test_vendor_outage_still_grades(self, fake_client, cache, make_trade, polygon_error):
        trade = make_trade()
        fake_client.option_snapshots[trade.ticker] = polygon_error
        fake_client.stock_prices["AMD"] = polygon_error

        report = run_pipeline([trade], cache, now=NOW)

        assert len(report.trades) == 1
        assert report.trades[0].enrichment is None
        assert report.trades[0].positioning.scores.expiration == 25

    def test_empty_batch(self, cache):
        report = run_pipeline([], cache, now=NOW)
        assert report.trades == []
        assert report.summary.total_trades == 0

    def test_efi_only(self, market, cache, make_trade):
        efi = make_trade(size=1000, premium=2.00)
        small = make_trade()

        report = run_pipeline([efi, small], cache, now=NOW, efi_only=True)

        assert [s.trade.trade_size for s in report.trades] == [1000]
        assert report.summary.total_trades == 1

    def test_efi_only_with_no_matches(self, market, cache, make_trade):
        report = run_pipeline([make_trade()], cache, now=NOW, efi_only=True)
        assert report.trades == []
        assert market.calls["snapshot"] == 0


class TestPayload:
    def test_shape(self, market, cache, make_trade):
        report = run_pipeline([make_trade()], cache, now=NOW)
        payload = to_payload(report)

        assert payload["success"] is True
        assert payload["count"] == 1
        assert payload["timestamp"] == NOW.isoformat()
        trade = payload["trades"][0]
        assert trade["ticker"] == "O:AMD260227C00205000"
        assert trade["fill_style"] == "AA"
        assert trade["current_option_price"] == pytest.approx(2.80)
        assert trade["current_stock_price"] == 201.0
        assert trade["volume"] == 5000
        assert set(trade["positioning"]) == {"grade", "score", "color", "breakdown", "scores"}
        assert payload["summary"]["call_put_ratio"]["calls"] == 1

    def test_unusual_volume_flag(self, market, cache, make_trade):
        report = run_pipeline([make_trade()], cache, now=NOW)

        scored = report.trades[0]
        assert scored.unusual_volume is True
        trade = to_payload(report)["trades"][0]
        assert trade["unusual_volume"] is True
        assert trade["volume_oi_ratio"] == pytest.approx(5000 / 1200)

    def test_volume_below_open_interest(self, market, cache, make_trade):
        trade = make_trade()
        market.option_snapshots[trade.ticker]["open_interest"] = 8000

        payload = to_payload(run_pipeline([trade], cache, now=NOW))

        assert payload["trades"][0]["unusual_volume"] is False
        assert payload["trades"][0]["volume_oi_ratio"] == pytest.approx(0.625)

    def test_missing_open_interest(self, fake_client, cache, make_trade):
        trade = make_trade()
        fake_client.option_snapshots[trade.ticker] = {"day": {"volume": 5000}}

        payload = to_payload(run_pipeline([trade], cache, now=NOW))

        assert payload["trades"][0]["unusual_volume"] is False
        assert payload["trades"][0]["volume_oi_ratio"] is None
