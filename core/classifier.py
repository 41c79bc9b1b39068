# core/classifier.py
from __future__ import annotations

import logging
import math
from bisect import bisect_left, bisect_right
from collections import defaultdict
from dataclasses import replace
from datetime import date
from typing import Callable, Dict, Hashable, Iterable, Iterator, List, Optional, Sequence, Tuple

from core.models import ContractSnapshot, Direction, EnrichmentSnapshot, FillStyle, Trade, TradeType

log = logging.getLogger(__name__)

BLOCK_MIN_PREMIUM = 100_000.0
SWEEP_WINDOW_SECONDS = 60.0
SWEEP_MIN_EXCHANGES = 2
SWEEP_ASK_RATIO = 0.95
SWEEP_BID_RATIO = 1.05
MULTI_LEG_STRIKE_TOLERANCE = 0.05
MULTI_LEG_WINDOW_SECONDS = 1.0


def infer_fill_style(
    fill_price: Optional[float],
    bid: Optional[float],
    ask: Optional[float],
) -> FillStyle:
    if not fill_price or not bid or not ask or fill_price <= 0 or bid <= 0 or ask <= 0:
        return FillStyle.UNKNOWN

    midpoint = (bid + ask) / 2
    if fill_price > ask:
        return FillStyle.AA
    if fill_price < bid:
        return FillStyle.BB
    if fill_price >= midpoint:
        return FillStyle.A
    return FillStyle.B


def trade_direction(trade: Trade) -> Direction:
    """
    Calls lifted at the ask / puts hit at the bid read as bullish,
    the mirror image as bearish. Unknown fills are neutral.
    """
    fill = trade.fill_style
    if trade.is_call:
        if fill.is_ask_side:
            return Direction.BULL
        if fill.is_bid_side:
            return Direction.BEAR
    else:
        if fill.is_bid_side:
            return Direction.BULL
        if fill.is_ask_side:
            return Direction.BEAR
    return Direction.NEUTRAL


def is_complementary_leg(
    trade: Trade,
    other: Trade,
    *,
    strike_tolerance: float = MULTI_LEG_STRIKE_TOLERANCE,
) -> bool:
    """
    `other` is the opposite-type leg of a same-direction combo on `trade`:
    same underlying and expiry, strike within tolerance, and fill styles that
    point the same way (e.g. call bought at ask + put sold at bid).
    """
    if other is trade:
        return False
    if other.underlying_ticker != trade.underlying_ticker:
        return False
    if other.expiry != trade.expiry:
        return False
    if other.type == trade.type:
        return False
    if abs(other.strike - trade.strike) > trade.strike * strike_tolerance:
        return False

    if trade.fill_style.is_ask_side:
        return other.fill_style.is_bid_side
    if trade.fill_style.is_bid_side:
        return other.fill_style.is_ask_side
    return False


def _seconds_apart(a: Trade, b: Trade) -> float:
    return abs((a.trade_timestamp - b.trade_timestamp).total_seconds())


class _TimeBucket:
    """Trades sharing a key, sorted by time so window lookups can bisect."""

    def __init__(self, trades: Iterable[Trade]):
        self.trades = sorted(trades, key=lambda t: t.trade_timestamp)
        self._times = [t.trade_timestamp.timestamp() for t in self.trades]

    def near(self, trade: Trade, window_seconds: float) -> List[Trade]:
        # callers re-check the exact window, so the bounds only need to be wide enough
        ts = trade.trade_timestamp.timestamp()
        window_seconds += 1e-3
        lo = bisect_left(self._times, ts - window_seconds)
        hi = bisect_right(self._times, ts + window_seconds)
        return self.trades[lo:hi]


def _sweep_key(trade: Trade) -> str:
    return trade.ticker


def _leg_key(trade: Trade) -> Tuple[str, date]:
    return (trade.underlying_ticker, trade.expiry)


def _index(trades: Iterable[Trade], key: Callable[[Trade], Hashable]) -> Dict[Hashable, _TimeBucket]:
    groups: Dict[Hashable, List[Trade]] = defaultdict(list)
    for t in trades:
        groups[key(t)].append(t)
    return {k: _TimeBucket(v) for k, v in groups.items()}


def is_price_sweep(trade: Trade) -> bool:
    """Print at/through the opposing side. Missing quote means not a sweep."""
    if trade.is_call:
        return bool(trade.ask) and trade.premium_per_contract >= trade.ask * SWEEP_ASK_RATIO
    return bool(trade.bid) and trade.premium_per_contract <= trade.bid * SWEEP_BID_RATIO


def is_sweep(
    trade: Trade,
    batch: Sequence[Trade] = (),
    *,
    window_seconds: float = SWEEP_WINDOW_SECONDS,
    min_exchanges: int = SWEEP_MIN_EXCHANGES,
) -> bool:
    exchanges = {trade.exchange, *trade.exchanges}
    for other in batch:
        if other is trade or other.ticker != trade.ticker:
            continue
        if _seconds_apart(trade, other) < window_seconds:
            exchanges.add(other.exchange)
            exchanges.update(other.exchanges)
    if len(exchanges) >= min_exchanges:
        return True
    return is_price_sweep(trade)


def is_multi_leg(
    trade: Trade,
    batch: Sequence[Trade] = (),
    *,
    window_seconds: float = MULTI_LEG_WINDOW_SECONDS,
    strike_tolerance: float = MULTI_LEG_STRIKE_TOLERANCE,
) -> bool:
    return any(
        _seconds_apart(trade, other) <= window_seconds
        and is_complementary_leg(trade, other, strike_tolerance=strike_tolerance)
        for other in batch
    )


def _classify(
    trade: Trade,
    sweep_peers: Sequence[Trade],
    leg_peers: Sequence[Trade],
    block_min_premium: float,
) -> TradeType:
    if is_sweep(trade, sweep_peers):
        return TradeType.SWEEP
    if is_multi_leg(trade, leg_peers):
        return TradeType.MULTI_LEG
    if trade.total_premium >= block_min_premium:
        return TradeType.BLOCK
    return TradeType.MINI


def classify(
    trade: Trade,
    batch: Sequence[Trade] = (),
    *,
    block_min_premium: float = BLOCK_MIN_PREMIUM,
) -> TradeType:
    """
    Exactly one TradeType per trade, checked in order:
    SWEEP, MULTI-LEG, BLOCK, then MINI as the fallback.
    """
    sweep_peers = [t for t in batch if _sweep_key(t) == _sweep_key(trade)]
    leg_peers = [t for t in batch if _leg_key(t) == _leg_key(trade)]
    return _classify(trade, sweep_peers, leg_peers, block_min_premium)


def classify_batch(
    trades: Iterable[Trade],
    *,
    block_min_premium: float = BLOCK_MIN_PREMIUM,
) -> List[Trade]:
    """
    Classify every trade against the rest of the batch. The batch is indexed
    once by contract (sweeps) and by underlying + expiry (legs), so each trade
    is only compared with the prints inside its own time window.
    """
    batch = list(trades)
    by_contract = _index(batch, _sweep_key)
    by_chain = _index(batch, _leg_key)

    classified = []
    for t in batch:
        sweep_peers = by_contract[_sweep_key(t)].near(t, SWEEP_WINDOW_SECONDS)
        leg_peers = by_chain[_leg_key(t)].near(t, MULTI_LEG_WINDOW_SECONDS)
        kind = _classify(t, sweep_peers, leg_peers, block_min_premium)
        classified.append(replace(t, trade_type=kind))

    if classified:
        counts = {kind.value: 0 for kind in TradeType}
        for t in classified:
            counts[t.trade_type.value] += 1
        log.debug("classify_batch: %d trades %s", len(classified), counts)
    return classified


def _time_clusters(trades: Sequence[Trade], window_seconds: float) -> Iterator[List[Trade]]:
    cluster: List[Trade] = []
    for t in trades:
        if cluster and _seconds_apart(t, cluster[0]) >= window_seconds:
            yield cluster
            cluster = []
        cluster.append(t)
    if cluster:
        yield cluster


def _merge_fills(fills: Sequence[Trade]) -> Trade:
    first = fills[0]
    size = sum(t.trade_size for t in fills)
    total = math.fsum(t.total_premium for t in fills)
    exchanges = sorted({e for t in fills for e in (t.exchange, *t.exchanges)})
    return replace(
        first,
        trade_size=size,
        total_premium=total,
        premium_per_contract=total / (size * 100) if size else first.premium_per_contract,
        exchanges=tuple(exchanges),
        conditions=tuple(sorted({c for t in fills for c in t.conditions})),
        trade_type=TradeType.SWEEP,
    )


def consolidate_sweeps(
    trades: Iterable[Trade],
    *,
    window_seconds: float = SWEEP_WINDOW_SECONDS,
    min_exchanges: int = SWEEP_MIN_EXCHANGES,
) -> List[Trade]:
    """
    Merge the fills of each sweep into one trade.

    Prints of the same contract are clustered in time, each cluster spanning
    less than `window_seconds` from its first print. A cluster that hit at
    least `min_exchanges` venues becomes a single SWEEP trade with summed size
    and premium, a size-weighted price and the first fill's timestamp.
    Every other print passes through unchanged. Output is in time order.
    """
    merged: List[Trade] = []
    sweeps = 0
    for bucket in _index(trades, _sweep_key).values():
        for cluster in _time_clusters(bucket.trades, window_seconds):
            venues = {e for t in cluster for e in (t.exchange, *t.exchanges)}
            if len(cluster) > 1 and len(venues) >= min_exchanges:
                merged.append(_merge_fills(cluster))
                sweeps += 1
            else:
                merged.extend(cluster)

    if sweeps:
        log.debug("consolidate_sweeps: %d sweeps, %d trades out", sweeps, len(merged))
    merged.sort(key=lambda t: t.trade_timestamp)
    return merged


def is_unusual_volume(snapshot: Optional[ContractSnapshot | EnrichmentSnapshot]) -> bool:
    """Volume above open interest. Missing volume/OI is simply not unusual."""
    if snapshot is None or not snapshot.volume or not snapshot.open_interest:
        return False
    return snapshot.volume > snapshot.open_interest
