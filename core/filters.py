# core/filters.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time
from typing import Literal, Optional
from zoneinfo import ZoneInfo

from core.models import Trade

Moneyness = Literal["ATM", "ITM", "OTM"]

MARKET_TZ = ZoneInfo("America/New_York")
MARKET_OPEN = time(9, 30)
MARKET_CLOSE = time(16, 0)

ATM_BAND = 0.01
MAX_ITM_PCT = 0.05


@dataclass(frozen=True)
class PremiumTier:
    name: str
    min_price: float
    min_size: int
    min_total: Optional[float] = None

    def passes(self, trade: Trade) -> bool:
        if trade.premium_per_contract < self.min_price:
            return False
        if trade.trade_size < self.min_size:
            return False
        return self.min_total is None or trade.total_premium >= self.min_total


INSTITUTIONAL_TIERS = (
    PremiumTier("Tier 1: Premium institutional", 8.00, 80),
    PremiumTier("Tier 2: High-value large volume", 7.00, 100),
    PremiumTier("Tier 3: Mid-premium bulk", 5.00, 150),
    PremiumTier("Tier 4: Moderate premium large", 3.50, 200),
    PremiumTier("Tier 5: Lower premium large", 2.50, 200),
    PremiumTier("Tier 6: Small premium massive", 1.00, 800),
    PremiumTier("Tier 7: Penny options massive", 0.50, 2000),
    PremiumTier("Tier 8: Premium bypass", 0.01, 20, min_total=50_000),
)


def matching_tier(trade: Trade) -> Optional[PremiumTier]:
    return next((tier for tier in INSTITUTIONAL_TIERS if tier.passes(trade)), None)


def passes_institutional_tiers(trade: Trade) -> bool:
    return matching_tier(trade) is not None


def moneyness(strike: float, spot: float, option_type: str) -> Moneyness:
    """ATM within 1% of spot; unknown spot counts as OTM."""
    if spot <= 0:
        return "OTM"
    if abs(spot - strike) / spot < ATM_BAND:
        return "ATM"
    if option_type == "call":
        return "ITM" if spot > strike else "OTM"
    return "ITM" if spot < strike else "OTM"


def is_within_tradeable_range(trade: Trade, max_itm: float = MAX_ITM_PCT) -> bool:
    """All OTM strikes plus at most `max_itm` in the money."""
    if trade.spot_price <= 0:
        return False
    pct_from_spot = (trade.strike - trade.spot_price) / trade.spot_price
    if trade.is_call:
        return pct_from_spot >= -max_itm
    return pct_from_spot <= max_itm


def is_within_market_hours(ts: datetime) -> bool:
    local = ts.astimezone(MARKET_TZ)
    if local.weekday() >= 5:
        return False
    return MARKET_OPEN <= local.time() <= MARKET_CLOSE


def market_open_for(day: datetime) -> datetime:
    """Regular-session open (09:30 ET) on the calendar day of `day`."""
    local = day.astimezone(MARKET_TZ)
    return datetime.combine(local.date(), MARKET_OPEN, tzinfo=MARKET_TZ)


def meets_efi_criteria(trade: Trade) -> bool:
    """Short-dated, mid-size OTM prints: 0-35 DTE, $100k-$450k, 650-1999 contracts."""
    if trade.days_to_expiry < 0 or trade.days_to_expiry > 35:
        return False
    if trade.total_premium < 100_000 or trade.total_premium > 450_000:
        return False
    if trade.trade_size < 650 or trade.trade_size > 1999:
        return False
    return moneyness(trade.strike, trade.spot_price, trade.type) == "OTM"
