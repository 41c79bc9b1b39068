# core/positioning.py
"""
Positioning grade for a single options trade.

Six additive sub-scores, each capped, sum to a 0-100 confidence score:

    expiration          25   shorter-dated trades score higher
    contract P&L        15   current option price vs the trade's fill
    relative strength   10   underlying RS agrees with the trade direction
    combo trade         10   complementary opposite-type leg in the batch
    price action        25   underlying held inside (or reversed beyond) 1 std-dev
    stock reaction      15   underlying move at the 1h / 3h checkpoints

A sub-score whose inputs are absent contributes 0; scoring never raises.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Sequence

from core.classifier import is_complementary_leg, trade_direction
from core.models import (
    Direction,
    EnrichmentSnapshot,
    PositioningResult,
    PositioningScores,
    Trade,
)

EXPIRATION_MAX = 25
CONTRACT_PRICE_MAX = 15
RELATIVE_STRENGTH_MAX = 10
COMBO_MAX = 10
PRICE_ACTION_MAX = 25
STOCK_REACTION_MAX = 15

# (max days to expiry, points)
EXPIRATION_TIERS = ((7, 25), (14, 20), (21, 15), (28, 10), (42, 5))

TRADING_DAY_HOURS = 6.5
REACTION_MOVE_PCT = 1.0
REACTION_CHECKPOINT_HOURS = (1.0, 3.0)
REACTION_REVERSED = 7.5
REACTION_CHOPPED = 5.0
REACTION_FOLLOWED = 2.5

# (min score, grade)
GRADE_BREAKPOINTS = (
    (85, "A+"),
    (80, "A"),
    (75, "A-"),
    (70, "B+"),
    (65, "B"),
    (60, "B-"),
    (55, "C+"),
    (50, "C"),
    (48, "C-"),
    (43, "D+"),
    (38, "D"),
    (33, "D-"),
)

# (min score, color)
COLOR_BREAKPOINTS = (
    (85, "#00ff00"),
    (70, "#84cc16"),
    (50, "#fbbf24"),
    (33, "#3b82f6"),
)
FAIL_GRADE = "F"
FAIL_COLOR = "#ff0000"


def expiration_score(days_to_expiry: int) -> float:
    for max_days, points in EXPIRATION_TIERS:
        if days_to_expiry <= max_days:
            return points
    return 0


def contract_price_score(entry_price: float, current_price: Optional[float]) -> float:
    """
    Large drawdowns on the contract score highest: size that is underwater
    and still held is read as conviction being tested, not a failed trade.
    """
    if not current_price or current_price <= 0 or entry_price <= 0:
        return 0

    pct = (current_price - entry_price) / entry_price * 100
    if pct <= -40:
        return 15
    if pct <= -20:
        return 12
    if -10 <= pct <= 10:
        return 10
    if pct >= 20:
        return 3
    return 6


def relative_strength_score(direction: Direction, relative_strength: Optional[float]) -> float:
    if relative_strength is None:
        return 0
    if direction is Direction.BULL and relative_strength > 0:
        return RELATIVE_STRENGTH_MAX
    if direction is Direction.BEAR and relative_strength < 0:
        return RELATIVE_STRENGTH_MAX
    return 0


def combo_score(trade: Trade, batch: Sequence[Trade]) -> float:
    if any(is_complementary_leg(trade, other) for other in batch):
        return COMBO_MAX
    return 0


def _stock_move_pct(entry: float, current: float) -> float:
    return (current - entry) / entry * 100


def price_action_score(
    direction: Direction,
    entry_stock_price: float,
    current_stock_price: Optional[float],
    std_dev: Optional[float],
    hours_elapsed: float,
) -> float:
    if not current_stock_price or not entry_stock_price or entry_stock_price <= 0 or not std_dev:
        return 0

    trading_days = int(max(hours_elapsed, 0) // TRADING_DAY_HOURS)
    move = _stock_move_pct(entry_stock_price, current_stock_price)

    if abs(move) <= std_dev:
        if trading_days >= 3:
            return 25
        if trading_days == 2:
            return 20
        if trading_days == 1:
            return 15
        return 10

    reversed_beyond = (direction is Direction.BULL and move < 0) or (
        direction is Direction.BEAR and move > 0
    )
    if reversed_beyond:
        if trading_days >= 3:
            return 25
        if trading_days == 2:
            return 20
        if trading_days == 1:
            return 15
        return 12
    return 10


def stock_reaction_score(
    direction: Direction,
    entry_stock_price: float,
    current_stock_price: Optional[float],
    hours_elapsed: float,
) -> float:
    if not current_stock_price or not entry_stock_price or entry_stock_price <= 0:
        return 0

    move = _stock_move_pct(entry_stock_price, current_stock_price)
    reversed_ = (direction is Direction.BULL and move <= -REACTION_MOVE_PCT) or (
        direction is Direction.BEAR and move >= REACTION_MOVE_PCT
    )
    followed = (direction is Direction.BULL and move >= REACTION_MOVE_PCT) or (
        direction is Direction.BEAR and move <= -REACTION_MOVE_PCT
    )
    chopped = abs(move) < REACTION_MOVE_PCT

    points = 0.0
    for checkpoint in REACTION_CHECKPOINT_HOURS:
        if hours_elapsed < checkpoint:
            break
        if reversed_:
            points += REACTION_REVERSED
        elif chopped:
            points += REACTION_CHOPPED
        elif followed:
            points += REACTION_FOLLOWED
    return points


def grade_for(score: float) -> str:
    for min_score, grade in GRADE_BREAKPOINTS:
        if score >= min_score:
            return grade
    return FAIL_GRADE


def color_for(score: float) -> str:
    for min_score, color in COLOR_BREAKPOINTS:
        if score >= min_score:
            return color
    return FAIL_COLOR


def _fmt(value: float) -> str:
    return f"{value:g}"


def format_breakdown(score: float, scores: PositioningScores) -> str:
    return "\n".join(
        [
            f"Score: {_fmt(score)}/100",
            f"Expiration: {_fmt(scores.expiration)}/{EXPIRATION_MAX}",
            f"Contract P&L: {_fmt(scores.contract_price)}/{CONTRACT_PRICE_MAX}",
            f"Relative Strength: {_fmt(scores.relative_strength)}/{RELATIVE_STRENGTH_MAX}",
            f"Combo Trade: {_fmt(scores.combo)}/{COMBO_MAX}",
            f"Price Action: {_fmt(scores.price_action)}/{PRICE_ACTION_MAX}",
            f"Stock Reaction: {_fmt(scores.stock_reaction)}/{STOCK_REACTION_MAX}",
        ]
    )


def score(
    trade: Trade,
    enrichment: Optional[EnrichmentSnapshot],
    batch: Sequence[Trade] = (),
    *,
    now: Optional[datetime] = None,
) -> PositioningResult:
    enrichment = enrichment or EnrichmentSnapshot()
    now = now or datetime.now(timezone.utc)
    direction = trade_direction(trade)
    hours_elapsed = (now - trade.trade_timestamp).total_seconds() / 3600

    scores = PositioningScores(
        expiration=expiration_score(trade.days_to_expiry),
        contract_price=contract_price_score(trade.premium_per_contract, enrichment.option_price),
        relative_strength=relative_strength_score(direction, enrichment.relative_strength),
        combo=combo_score(trade, batch),
        price_action=price_action_score(
            direction,
            trade.spot_price,
            enrichment.underlying_price,
            enrichment.historical_std_dev,
            hours_elapsed,
        ),
        stock_reaction=stock_reaction_score(
            direction,
            trade.spot_price,
            enrichment.underlying_price,
            hours_elapsed,
        ),
    )
    total = scores.total

    return PositioningResult(
        grade=grade_for(total),
        score=total,
        color=color_for(total),
        breakdown=format_breakdown(total, scores),
        scores=scores,
    )
