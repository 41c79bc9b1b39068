# core/pipeline.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence

from core.aggregator import aggregate
from core.classifier import BLOCK_MIN_PREMIUM, classify_batch, is_unusual_volume
from core.enrichment import EnrichmentCache
from core.filters import meets_efi_criteria
from core.models import FlowReport, ScoredTrade, Trade
from core.positioning import score

log = logging.getLogger(__name__)


def run_pipeline(
    trades: Sequence[Trade],
    cache: EnrichmentCache,
    *,
    now: Optional[datetime] = None,
    efi_only: bool = False,
    block_min_premium: float = BLOCK_MIN_PREMIUM,
) -> FlowReport:
    """
    fill styles -> classify -> enrich -> grade -> aggregate for one batch.

    Fill styles are resolved before classification because the price-based
    sweep test and multi-leg matching both need them.
    """
    now = now or datetime.now(timezone.utc)
    batch = list(trades)

    if efi_only:
        batch = [t for t in batch if meets_efi_criteria(t)]
        log.info("pipeline: %d trades meet EFI criteria", len(batch))

    if not batch:
        return FlowReport(trades=[], summary=aggregate([]), generated_at=now)

    batch = cache.apply_fill_styles(batch)
    batch = classify_batch(batch, block_min_premium=block_min_premium)
    snapshots = cache.prefetch(batch)

    scored = [
        ScoredTrade(
            trade=t,
            positioning=score(t, snapshots.get(t.ticker), batch, now=now),
            enrichment=snapshots.get(t.ticker),
            unusual_volume=is_unusual_volume(snapshots.get(t.ticker)),
        )
        for t in batch
    ]
    scored.sort(key=lambda s: (s.positioning.score, s.trade.total_premium), reverse=True)

    summary = aggregate(scored)
    log.info(
        "pipeline: scored %d trades, total premium $%s, avg score %.1f",
        summary.total_trades,
        f"{int(summary.total_premium):,}",
        summary.average_score,
    )
    return FlowReport(trades=scored, summary=summary, generated_at=now)


def to_payload(report: FlowReport) -> Dict[str, Any]:
    """JSON response shape handed back to HTTP callers."""
    return {
        "success": True,
        "timestamp": report.generated_at.isoformat(),
        "count": len(report.trades),
        "trades": [s.to_dict() for s in report.trades],
        "summary": report.summary.to_dict(),
    }
