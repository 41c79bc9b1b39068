# core/enrichment.py
from __future__ import annotations

import logging
import math
import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence, TypeVar

import requests

from core.classifier import infer_fill_style
from core.models import ContractSnapshot, EnrichmentSnapshot, FillStyle, Trade
from core.options_utils import parse_polygon_option_ticker
from core.parsing import parse_contract_snapshot, parse_quote
from core.polygon_client import PolygonClient, PolygonError, to_sip_nanos

log = logging.getLogger(__name__)

T = TypeVar("T")

# Vendor failures that degrade to "absent" instead of aborting a batch
_FETCH_ERRORS = (PolygonError, requests.RequestException, KeyError, TypeError, ValueError)


def pct_return(closes: Sequence[float]) -> Optional[float]:
    if len(closes) < 2 or not closes[0]:
        return None
    return (closes[-1] - closes[0]) / closes[0] * 100


def daily_return_std_dev(closes: Sequence[float]) -> Optional[float]:
    """Population std-dev of close-to-close % returns."""
    returns = [
        (curr - prev) / prev * 100
        for prev, curr in zip(closes, closes[1:])
        if prev
    ]
    if not returns:
        return None
    mean = sum(returns) / len(returns)
    variance = sum((r - mean) ** 2 for r in returns) / len(returns)
    return math.sqrt(variance)


class EnrichmentCache:
    """
    Per-batch memo of vendor lookups used to grade trades.

    Snapshots are keyed by contract ticker, underlying-level figures
    (stock price, std-dev, relative strength) by underlying ticker.
    Concurrent callers asking for the same key wait on the one in-flight
    fetch. Quotes at trade time are per-trade and are never cached.

    Create one per scoring pass and drop it afterwards.
    """

    def __init__(
        self,
        client: PolygonClient,
        *,
        benchmark: str = "SPY",
        std_dev_lookback_days: int = 30,
        relative_strength_lookback_days: int = 21,
        max_workers: int = 8,
        today: Optional[date] = None,
    ):
        self.client = client
        self.benchmark = benchmark.upper()
        self.std_dev_lookback_days = std_dev_lookback_days
        self.relative_strength_lookback_days = relative_strength_lookback_days
        self.max_workers = max(1, max_workers)
        self.today = today or datetime.now(timezone.utc).date()

        self._lock = threading.Lock()
        self._snapshots: Dict[str, Future] = {}
        self._contracts: Dict[str, Future] = {}
        self._stock_prices: Dict[str, Future] = {}
        self._closes: Dict[str, Future] = {}

    # ---------- memo plumbing ----------

    def _memoized(self, store: Dict[str, Future], key: str, fetch: Callable[[], T]) -> T:
        with self._lock:
            future = store.get(key)
            owner = future is None
            if owner:
                future = Future()
                store[key] = future

        if owner:
            try:
                future.set_result(fetch())
            except BaseException as exc:  # noqa: BLE001
                future.set_exception(exc)
        return future.result()

    def _safe(self, what: str, key: str, fetch: Callable[[], T]) -> Optional[T]:
        try:
            return fetch()
        except _FETCH_ERRORS as exc:
            log.warning("enrichment: %s fetch failed for %s: %s", what, key, exc)
            return None

    # ---------- vendor lookups ----------

    def _contract_snapshot(self, contract_ticker: str) -> Optional[ContractSnapshot]:
        def fetch() -> Optional[ContractSnapshot]:
            underlying = parse_polygon_option_ticker(contract_ticker).underlying
            if not underlying:
                log.warning("enrichment: cannot derive underlying from %s", contract_ticker)
                return None
            payload = self._safe(
                "snapshot",
                contract_ticker,
                lambda: self.client.get_option_snapshot(underlying, contract_ticker),
            )
            return parse_contract_snapshot(payload) if payload else None

        return self._memoized(self._contracts, contract_ticker, fetch)

    def stock_price(self, ticker: str) -> Optional[float]:
        def fetch() -> Optional[float]:
            price = self._safe("stock price", ticker, lambda: self.client.get_stock_price(ticker))
            return price if price and price > 0 else None

        return self._memoized(self._stock_prices, ticker.upper(), fetch)

    def _daily_closes(self, ticker: str) -> List[float]:
        lookback = max(self.std_dev_lookback_days, self.relative_strength_lookback_days)

        def fetch() -> List[float]:
            start = self.today - timedelta(days=lookback)
            closes = self._safe(
                "daily closes",
                ticker,
                lambda: self.client.get_daily_closes(ticker, start, self.today),
            )
            return closes or []

        return self._memoized(self._closes, ticker.upper(), fetch)

    def _closes_since(self, ticker: str, days: int) -> List[float]:
        closes = self._daily_closes(ticker)
        # ~5 trading days per 7 calendar days
        bars = max(2, int(days * 5 / 7) + 1)
        return closes[-bars:]

    def historical_std_dev(self, ticker: str) -> Optional[float]:
        return daily_return_std_dev(self._closes_since(ticker, self.std_dev_lookback_days))

    def relative_strength(self, ticker: str) -> Optional[float]:
        days = self.relative_strength_lookback_days
        stock_return = pct_return(self._closes_since(ticker, days))
        benchmark_return = pct_return(self._closes_since(self.benchmark, days))
        if stock_return is None or benchmark_return is None:
            return None
        return stock_return - benchmark_return

    # ---------- public API ----------

    def get_snapshot(self, contract_ticker: str) -> Optional[EnrichmentSnapshot]:
        """
        One EnrichmentSnapshot per contract ticker for the life of this cache.
        Returns None only when neither contract nor underlying data could be found.
        """

        def build() -> Optional[EnrichmentSnapshot]:
            contract = self._contract_snapshot(contract_ticker)
            underlying = parse_polygon_option_ticker(contract_ticker).underlying
            if not underlying:
                return None

            underlying_price = self.stock_price(underlying)
            if underlying_price is None and contract is not None:
                underlying_price = contract.underlying_price

            option_price = None
            if contract is not None:
                option_price = contract.mid_price or contract.last_price

            snapshot = EnrichmentSnapshot(
                option_price=option_price,
                underlying_price=underlying_price,
                historical_std_dev=self.historical_std_dev(underlying),
                relative_strength=self.relative_strength(underlying),
                volume=contract.volume if contract else None,
                open_interest=contract.open_interest if contract else None,
                implied_volatility=contract.implied_volatility if contract else None,
            )
            if snapshot == EnrichmentSnapshot():
                return None
            return snapshot

        return self._memoized(self._snapshots, contract_ticker, build)

    def get_quote_at_timestamp(
        self,
        contract_ticker: str,
        timestamp: datetime,
        fill_price: float,
    ) -> tuple[FillStyle, Optional[float], Optional[float]]:
        """(fill style, bid, ask) at trade time; a fresh vendor call every time."""
        quote = self._safe(
            "quote",
            contract_ticker,
            lambda: self.client.get_quote_at(contract_ticker, to_sip_nanos(timestamp)),
        )
        bid, ask = parse_quote(quote)
        return infer_fill_style(fill_price, bid, ask), bid, ask

    def prefetch(self, trades: Iterable[Trade]) -> Dict[str, Optional[EnrichmentSnapshot]]:
        """Fetch snapshots for every unique contract in parallel."""
        tickers = sorted({t.ticker for t in trades})
        if not tickers:
            return {}

        results: Dict[str, Optional[EnrichmentSnapshot]] = {}
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(tickers))) as executor:
            futures = {executor.submit(self.get_snapshot, t): t for t in tickers}
            for future in as_completed(futures):
                results[futures[future]] = future.result()

        log.info(
            "enrichment: %d unique contracts, %d with data",
            len(tickers),
            sum(1 for v in results.values() if v is not None),
        )
        return results

    def apply_fill_styles(self, trades: Sequence[Trade]) -> List[Trade]:
        """Fill in fill_style/bid/ask for trades that arrived without one."""

        def enrich(trade: Trade) -> Trade:
            if trade.fill_style is not FillStyle.UNKNOWN:
                return trade
            style, bid, ask = self.get_quote_at_timestamp(
                trade.ticker, trade.trade_timestamp, trade.premium_per_contract
            )
            return replace(trade, fill_style=style, bid=bid, ask=ask)

        if not trades:
            return []
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(trades))) as executor:
            return list(executor.map(enrich, trades))
