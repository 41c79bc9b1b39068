# core/polygon_client.py
from __future__ import annotations

import logging
import time
from datetime import date, datetime
from typing import Any, Dict, List, Optional

import requests


log = logging.getLogger(__name__)

# Index underlyings whose option snapshots live under the "I:" namespace
INDEX_UNDERLYINGS = frozenset({"SPX", "VIX", "NDX", "RUT", "XSP"})


# Rate limiting; every 5xx is retried as well
RETRYABLE_STATUS = frozenset({429})


class PolygonError(RuntimeError):
    """Vendor request failed: rejected, unreadable, or still failing after all retries."""


class _TransientError(PolygonError):
    pass


class PolygonClient:
    BASE_URL = "https://api.polygon.io"

    def __init__(
        self,
        api_key: str,
        timeout: float = 5.0,
        max_retries: int = 3,
        backoff_seconds: float = 0.5,
    ):
        self.api_key = api_key
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        params = dict(params or {})
        params.setdefault("apiKey", self.api_key)

        url = f"{self.BASE_URL}{path}"
        last_exc: Optional[Exception] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                resp = requests.get(url, params=params, timeout=self.timeout)
                if resp.status_code >= 500 or resp.status_code in RETRYABLE_STATUS:
                    raise _TransientError(f"HTTP {resp.status_code}: {resp.text}")
            except (requests.ConnectionError, requests.Timeout, _TransientError) as exc:
                last_exc = exc
                log.warning("Polygon GET failed (%s) attempt %s: %s", path, attempt, exc)
                if attempt < self.max_retries and self.backoff_seconds > 0:
                    time.sleep(self.backoff_seconds * 2 ** (attempt - 1))
                continue
            except requests.RequestException as exc:
                raise PolygonError(f"Polygon GET {path} failed: {exc}") from exc

            # 4xx (bad key, unknown ticker, plan limits) will not change on retry
            if resp.status_code >= 400:
                raise PolygonError(f"Polygon GET {path} rejected: HTTP {resp.status_code}: {resp.text}")
            try:
                return resp.json()
            except ValueError as exc:
                raise PolygonError(f"Polygon GET {path} returned invalid JSON: {exc}") from exc

        raise PolygonError(f"Polygon GET failed after {self.max_retries} tries: {last_exc}")

    # ---------- convenience helpers ----------

    def list_option_contracts(self, underlying: str, *, limit: int = 250) -> List[Dict[str, Any]]:
        """
        Active (unexpired) contracts for an underlying, nearest expiry first.

        Docs: /v3/reference/options/contracts
        """
        params = {
            "underlying_ticker": underlying.upper(),
            "expired": "false",
            "order": "asc",
            "sort": "expiration_date",
            "limit": limit,
        }
        data = self.get("/v3/reference/options/contracts", params)
        return data.get("results") or []

    def list_option_trades(
        self,
        option_ticker: str,
        *,
        since_ns: Optional[int] = None,
        limit: int = 1000,
    ) -> List[Dict[str, Any]]:
        """Raw prints for one contract. Docs: /v3/trades/{ticker}"""
        params: Dict[str, Any] = {"limit": limit, "order": "asc"}
        if since_ns is not None:
            params["timestamp.gte"] = since_ns
        data = self.get(f"/v3/trades/{option_ticker}", params)
        return data.get("results") or []

    def get_option_snapshot(self, underlying: str, option_ticker: str) -> Dict[str, Any]:
        """
        Snapshot (quote, greeks, volume, OI) for one contract.

        Docs: /v3/snapshot/options/{underlying}/{option_ticker}
        """
        under = underlying.upper()
        if under in INDEX_UNDERLYINGS:
            under = f"I:{under}"
        data = self.get(f"/v3/snapshot/options/{under}/{option_ticker}", {})
        results = data.get("results") or {}
        if isinstance(results, list):
            results = next(
                (r for r in results if (r.get("details") or {}).get("ticker") == option_ticker),
                {},
            )
        return results

    def get_quote_at(self, option_ticker: str, timestamp_ns: int) -> Optional[Dict[str, Any]]:
        """Last NBBO quote at or before the given SIP timestamp. Docs: /v3/quotes/{ticker}"""
        params = {
            "timestamp.lte": timestamp_ns,
            "order": "desc",
            "sort": "timestamp",
            "limit": 1,
        }
        data = self.get(f"/v3/quotes/{option_ticker}", params)
        results = data.get("results") or []
        if not results:
            return None
        return results[0]

    def get_stock_price(self, ticker: str) -> float:
        """
        Current-ish stock price via snapshot (last trade, falling back to day close).

        Docs: /v2/snapshot/locale/us/markets/stocks/tickers/{ticker}
        """
        path = f"/v2/snapshot/locale/us/markets/stocks/tickers/{ticker.upper()}"
        data = self.get(path, {})
        ticker_data = data.get("ticker") or {}

        last_trade = ticker_data.get("lastTrade") or {}
        day = ticker_data.get("day") or {}
        prev_day = ticker_data.get("prevDay") or {}

        return float(last_trade.get("p") or day.get("c") or prev_day.get("c") or 0.0)

    def get_daily_closes(self, ticker: str, start: date, end: date) -> List[float]:
        """Daily closes oldest -> newest. Docs: /v2/aggs/ticker/{ticker}/range/1/day/{from}/{to}"""
        path = f"/v2/aggs/ticker/{ticker.upper()}/range/1/day/{start.isoformat()}/{end.isoformat()}"
        params = {"adjusted": "true", "sort": "asc", "limit": 5000}
        data = self.get(path, params)
        return [float(bar["c"]) for bar in data.get("results") or [] if bar.get("c")]


def to_sip_nanos(ts: datetime) -> int:
    return int(ts.timestamp() * 1_000_000) * 1000
