# core/aggregator.py
from __future__ import annotations

import logging
import math
from collections import Counter
from typing import Iterable

from core.classifier import trade_direction
from core.models import Direction, FlowSummary, ScoredTrade, TradeType

log = logging.getLogger(__name__)

INSTITUTIONAL_MIN_PREMIUM = 50_000.0
UNUSUAL_MIN_PREMIUM = 100_000.0


def is_unusual(scored: ScoredTrade) -> bool:
    trade = scored.trade
    return trade.trade_type is TradeType.SWEEP or trade.total_premium >= UNUSUAL_MIN_PREMIUM


def aggregate(scored_trades: Iterable[ScoredTrade]) -> FlowSummary:
    """
    Reduce scored trades into summary counters.

    Only counts and fsum-ed totals, so the result does not depend on the
    order of the input.
    """
    trades = list(scored_trades)
    summary = FlowSummary()
    if not trades:
        return summary

    premiums = [s.trade.total_premium for s in trades]
    bullish = [s for s in trades if trade_direction(s.trade) is Direction.BULL]
    bearish = [s for s in trades if trade_direction(s.trade) is Direction.BEAR]

    summary.total_trades = len(trades)
    summary.total_premium = math.fsum(premiums)
    summary.average_premium = summary.total_premium / len(trades)
    summary.unique_symbols = len({s.trade.underlying_ticker for s in trades})

    for s in trades:
        kind = s.trade.trade_type or TradeType.MINI
        summary.trade_types[kind.value] += 1

    summary.calls = sum(1 for s in trades if s.trade.is_call)
    summary.puts = summary.total_trades - summary.calls
    summary.call_put_ratio = summary.calls / summary.puts if summary.puts else None

    summary.bullish_count = len(bullish)
    summary.bearish_count = len(bearish)
    summary.bullish_premium = math.fsum(s.trade.total_premium for s in bullish)
    summary.bearish_premium = math.fsum(s.trade.total_premium for s in bearish)

    summary.institutional_count = sum(1 for p in premiums if p >= INSTITUTIONAL_MIN_PREMIUM)
    summary.unusual_count = sum(1 for s in trades if is_unusual(s))

    summary.average_score = math.fsum(s.positioning.score for s in trades) / len(trades)
    summary.grade_counts = dict(sorted(Counter(s.positioning.grade for s in trades).items()))

    log.debug(
        "aggregate: trades=%d premium=%.0f calls=%d puts=%d",
        summary.total_trades,
        summary.total_premium,
        summary.calls,
        summary.puts,
    )
    return summary
