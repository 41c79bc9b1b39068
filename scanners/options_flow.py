# scanners/options_flow.py

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from core.classifier import consolidate_sweeps
from core.filters import (
    is_within_market_hours,
    is_within_tradeable_range,
    market_open_for,
    passes_institutional_tiers,
)
from core.models import Trade
from core.options_utils import days_to_expiry, parse_polygon_option_ticker
from core.parsing import parse_timestamp, parse_trades
from core.polygon_client import PolygonClient, PolygonError, to_sip_nanos

log = logging.getLogger(__name__)

_MAX_CONTRACTS_PER_UNDERLYING = 50
_MAX_ITM_PCT = 0.05


def _contract_in_range(contract: Dict[str, Any], spot: float) -> bool:
    """Only scan OTM strikes plus up to 5% ITM."""
    strike = float(contract.get("strike_price") or 0.0)
    ctype = (contract.get("contract_type") or "").lower()
    if strike <= 0 or ctype not in ("call", "put"):
        return False
    pct_from_spot = (strike - spot) / spot
    if ctype == "call":
        return pct_from_spot >= -_MAX_ITM_PCT
    return pct_from_spot <= _MAX_ITM_PCT


def to_trade_record(
    contract: Dict[str, Any],
    raw: Dict[str, Any],
    *,
    underlying: str,
    spot: float,
) -> Dict[str, Any]:
    """
    Shape one /v3/trades print into the vendor trade record that
    core.parsing understands.
    """
    ticker = contract.get("ticker") or ""
    parsed = parse_polygon_option_ticker(ticker)
    price = float(raw.get("price") or 0.0)
    size = int(raw.get("size") or 0)
    ts = parse_timestamp(raw.get("sip_timestamp") or raw.get("participant_timestamp"))
    expiry = contract.get("expiration_date") or (parsed.expiry.isoformat() if parsed.expiry else None)

    return {
        "ticker": ticker,
        "underlying_ticker": underlying.upper(),
        "strike": contract.get("strike_price") or parsed.strike,
        "expiry": expiry,
        "type": (contract.get("contract_type") or parsed.option_type or "").lower(),
        "trade_size": size,
        "premium_per_contract": price,
        "total_premium": price * size * 100,
        "trade_timestamp": ts.isoformat(),
        "exchange": raw.get("exchange") or 0,
        "conditions": raw.get("conditions") or [],
        "spot_price": spot,
        "days_to_expiry": days_to_expiry(parsed.expiry, as_of=ts.date()) if parsed.expiry else None,
    }


def scan_underlying(
    client: PolygonClient,
    underlying: str,
    *,
    max_contracts: int = _MAX_CONTRACTS_PER_UNDERLYING,
    since: Optional[datetime] = None,
    apply_filters: bool = True,
) -> List[Trade]:
    """
    Collect today's option prints for one underlying.

    Steps:
      - spot price from the stock snapshot
      - active contracts, OTM + up to 5% ITM, nearest expiry first
      - prints per contract since `since` (default: today's 09:30 ET open)
      - multi-exchange fills of one contract merged into sweep trades
      - institutional-tier and market-hours filters

    A failing contract is logged and skipped; a missing spot price or
    contract list yields no trades.
    """
    spot = client.get_stock_price(underlying)
    if spot <= 0:
        log.info("FLOW: no spot price for %s, skipping", underlying)
        return []

    contracts = client.list_option_contracts(underlying)
    if not contracts:
        log.info("FLOW: no contracts returned for %s", underlying)
        return []

    candidates = [c for c in contracts if c.get("ticker") and _contract_in_range(c, spot)]
    candidates = candidates[:max_contracts]

    since = since or market_open_for(datetime.now(timezone.utc))
    since_ns = to_sip_nanos(since)

    records: List[Dict[str, Any]] = []
    for contract in candidates:
        ticker = contract["ticker"]
        try:
            prints = client.list_option_trades(ticker, since_ns=since_ns)
        except PolygonError as exc:
            log.debug("FLOW: trades error for %s: %s", ticker, exc)
            continue

        for raw in prints:
            try:
                records.append(to_trade_record(contract, raw, underlying=underlying, spot=spot))
            except ValueError as exc:
                log.debug("FLOW: bad print for %s: %s", ticker, exc)

    # fills of a sweep are merged before the size filters see them
    trades = consolidate_sweeps(parse_trades(records))

    if apply_filters:
        trades = [
            t
            for t in trades
            if passes_institutional_tiers(t)
            and is_within_market_hours(t.trade_timestamp)
            and is_within_tradeable_range(t)
        ]

    log.info(
        "FLOW: %s spot=%.2f contracts=%d prints=%d kept=%d",
        underlying,
        spot,
        len(candidates),
        len(records),
        len(trades),
    )
    return trades
