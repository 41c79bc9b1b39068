# core/parsing.py
"""
Trust boundary between vendor JSON and the typed models.

Everything downstream of this module works on Trade / ContractSnapshot
instances and never touches raw dicts. Missing numeric fields default to 0
(or None where "absent" matters to scoring); only an unparseable contract
symbol is an error, and that only drops the one record.
"""
from __future__ import annotations

import logging
import math
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from core.models import ContractSnapshot, FillStyle, Trade, TradeType
from core.options_utils import UnparseableTickerError, days_to_expiry, parse_option_ticker

log = logging.getLogger(__name__)


def _opt_float(value: Any) -> Optional[float]:
    # NaN / inf count as missing so int() of the result cannot overflow
    if value is None:
        return None
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


def _float(value: Any, default: float = 0.0) -> float:
    f = _opt_float(value)
    return default if f is None else f


def _opt_int(value: Any) -> Optional[int]:
    f = _opt_float(value)
    return int(f) if f is not None else None


def _int_tuple(values: Any) -> Tuple[int, ...]:
    """Integer codes from a list; non-numeric entries are dropped."""
    if not isinstance(values, (list, tuple)):
        return ()
    codes = (_opt_int(v) for v in values)
    return tuple(c for c in codes if c is not None)


def parse_timestamp(value: Any) -> datetime:
    """
    Accepts an aware/naive datetime, an ISO-8601 string, epoch milliseconds,
    or SIP nanoseconds. Naive values are taken as UTC.
    """
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, (int, float)):
        # SIP timestamps are nanoseconds, JS-style ones are milliseconds
        seconds = value / 1e9 if value > 1e14 else value / 1e3
        try:
            ts = datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError) as exc:
            raise ValueError(f"Timestamp out of range: {value!r}") from exc
    elif isinstance(value, str) and value:
        ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        raise ValueError(f"Unsupported timestamp: {value!r}")

    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _parse_expiry(value: Any) -> Optional[date]:
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value:
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
    return None


def parse_fill_style(value: Any) -> FillStyle:
    try:
        return FillStyle(value)
    except ValueError:
        return FillStyle.UNKNOWN


def parse_trade_record(record: Dict[str, Any]) -> Trade:
    """
    Build a Trade from a vendor trade record:

      { ticker, underlying_ticker, strike, expiry, type, trade_size,
        premium_per_contract, total_premium, trade_timestamp, exchange,
        fill_style, spot_price }

    Contract fields absent from the record are recovered from the ticker.
    Raises UnparseableTickerError if the ticker itself is malformed.
    """
    ticker = str(record.get("ticker") or "")
    parsed = parse_option_ticker(ticker)
    if not ticker.startswith("O:"):
        ticker = f"O:{ticker}"

    expiry = _parse_expiry(record.get("expiry")) or parsed.expiry
    strike = _float(record.get("strike"), parsed.strike or 0.0)
    option_type = str(record.get("type") or parsed.option_type or "").lower()
    if option_type not in ("call", "put"):
        option_type = parsed.option_type or "call"

    size = int(_float(record.get("trade_size")))
    premium = _float(record.get("premium_per_contract"))
    total_premium = _float(record.get("total_premium"), size * premium * 100)
    if not total_premium:
        total_premium = size * premium * 100

    try:
        timestamp = parse_timestamp(record.get("trade_timestamp") or record.get("sip_timestamp"))
    except ValueError:
        log.debug("parse_trade_record: no usable timestamp for %s, using now", ticker)
        timestamp = datetime.now(timezone.utc)

    dte = _opt_int(record.get("days_to_expiry"))
    if dte is None:
        dte = days_to_expiry(expiry, as_of=timestamp.date())

    raw_type = record.get("trade_type")
    try:
        trade_type = TradeType(raw_type) if raw_type else None
    except ValueError:
        trade_type = None

    return Trade(
        ticker=ticker,
        underlying_ticker=str(record.get("underlying_ticker") or parsed.underlying).upper(),
        strike=strike,
        expiry=expiry,
        type=option_type,
        trade_size=size,
        premium_per_contract=premium,
        total_premium=total_premium,
        trade_timestamp=timestamp,
        exchange=int(_float(record.get("exchange"))),
        fill_style=parse_fill_style(record.get("fill_style")),
        spot_price=_float(record.get("spot_price")),
        days_to_expiry=int(dte or 0),
        bid=_opt_float(record.get("bid")),
        ask=_opt_float(record.get("ask")),
        conditions=_int_tuple(record.get("conditions")),
        trade_type=trade_type,
    )


def parse_trades(records: Iterable[Dict[str, Any]]) -> List[Trade]:
    """Parse a batch; a record that cannot be parsed is skipped, never fatal to the rest."""
    trades: List[Trade] = []
    skipped = 0
    for record in records:
        try:
            trades.append(parse_trade_record(record))
        except UnparseableTickerError as exc:
            skipped += 1
            log.warning("Skipping trade record: %s", exc)
        except (ValueError, TypeError, OverflowError, AttributeError) as exc:
            skipped += 1
            log.warning("Skipping malformed trade record %r: %s", record, exc)
    if skipped:
        log.info("parse_trades: parsed=%d skipped=%d", len(trades), skipped)
    return trades


def parse_contract_snapshot(payload: Optional[Dict[str, Any]]) -> ContractSnapshot:
    """Normalise a /v3/snapshot/options result; missing blocks give None fields."""
    payload = payload or {}
    quote = payload.get("last_quote") or {}
    trade = payload.get("last_trade") or {}
    day = payload.get("day") or {}
    greeks = payload.get("greeks") or {}
    underlying = payload.get("underlying_asset") or {}

    return ContractSnapshot(
        bid=_opt_float(quote.get("bid")),
        ask=_opt_float(quote.get("ask")),
        last_price=_opt_float(trade.get("price") or day.get("close")),
        volume=_opt_int(day.get("volume")),
        open_interest=_opt_int(payload.get("open_interest")),
        implied_volatility=_opt_float(payload.get("implied_volatility")),
        delta=_opt_float(greeks.get("delta")),
        gamma=_opt_float(greeks.get("gamma")),
        theta=_opt_float(greeks.get("theta")),
        vega=_opt_float(greeks.get("vega")),
        underlying_price=_opt_float(underlying.get("price")),
    )


def parse_quote(payload: Optional[Dict[str, Any]]) -> tuple[Optional[float], Optional[float]]:
    """(bid, ask) from a /v3/quotes result; zero prices count as missing."""
    payload = payload or {}
    bid = _opt_float(payload.get("bid_price"))
    ask = _opt_float(payload.get("ask_price"))
    return (bid if bid and bid > 0 else None, ask if ask and ask > 0 else None)
