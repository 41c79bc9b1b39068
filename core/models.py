# core/models.py
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple

OptionType = Literal["call", "put"]


class TradeType(str, Enum):
    BLOCK = "BLOCK"
    SWEEP = "SWEEP"
    MULTI_LEG = "MULTI-LEG"
    MINI = "MINI"


class FillStyle(str, Enum):
    """
    Where a print executed relative to the quote at trade time.

    AA – above the ask, A – between mid and ask,
    B  – between bid and mid, BB – below the bid.
    """

    AA = "AA"
    A = "A"
    B = "B"
    BB = "BB"
    UNKNOWN = "N/A"

    @property
    def is_ask_side(self) -> bool:
        return self in (FillStyle.A, FillStyle.AA)

    @property
    def is_bid_side(self) -> bool:
        return self in (FillStyle.B, FillStyle.BB)


class Direction(str, Enum):
    BULL = "bull"
    BEAR = "bear"
    NEUTRAL = "neutral"


@dataclass(frozen=True)
class Trade:
    """
    A single option print, normalised from the vendor record.

    ticker            – contract symbol, e.g. "O:AMD260227C00205000"
    underlying_ticker – e.g. "AMD"
    total_premium     – trade_size * premium_per_contract * 100
    trade_timestamp   – aware UTC datetime
    fill_style        – inferred from the quote at trade time (N/A if unknown)
    spot_price        – underlying price when the trade printed
    days_to_expiry    – calendar days from trade date to expiry
    exchanges         – venues of the fills merged into a consolidated sweep
    trade_type        – set by core.classifier, None until classified
    """

    ticker: str
    underlying_ticker: str
    strike: float
    expiry: date
    type: OptionType
    trade_size: int
    premium_per_contract: float
    total_premium: float
    trade_timestamp: datetime
    exchange: int = 0
    fill_style: FillStyle = FillStyle.UNKNOWN
    spot_price: float = 0.0
    days_to_expiry: int = 0
    bid: Optional[float] = None
    ask: Optional[float] = None
    conditions: Tuple[int, ...] = ()
    exchanges: Tuple[int, ...] = ()
    trade_type: Optional[TradeType] = None

    @property
    def is_call(self) -> bool:
        return self.type == "call"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["expiry"] = self.expiry.isoformat()
        data["trade_timestamp"] = self.trade_timestamp.isoformat()
        data["fill_style"] = self.fill_style.value
        data["conditions"] = list(self.conditions)
        data["exchanges"] = list(self.exchanges)
        data["trade_type"] = self.trade_type.value if self.trade_type else None
        return data


@dataclass(frozen=True)
class ContractSnapshot:
    """Vendor option snapshot, every field optional."""

    bid: Optional[float] = None
    ask: Optional[float] = None
    last_price: Optional[float] = None
    volume: Optional[int] = None
    open_interest: Optional[int] = None
    implied_volatility: Optional[float] = None
    delta: Optional[float] = None
    gamma: Optional[float] = None
    theta: Optional[float] = None
    vega: Optional[float] = None
    underlying_price: Optional[float] = None

    @property
    def mid_price(self) -> Optional[float]:
        if self.bid and self.ask and self.bid > 0 and self.ask > 0:
            return (self.bid + self.ask) / 2
        return None


@dataclass(frozen=True)
class EnrichmentSnapshot:
    """
    Current market data for one contract, used to grade trades against it.

    historical_std_dev – std-dev of the underlying's daily % returns
    relative_strength  – underlying % return minus benchmark % return
    """

    option_price: Optional[float] = None
    underlying_price: Optional[float] = None
    historical_std_dev: Optional[float] = None
    relative_strength: Optional[float] = None
    volume: Optional[int] = None
    open_interest: Optional[int] = None
    implied_volatility: Optional[float] = None

    @property
    def volume_oi_ratio(self) -> Optional[float]:
        if not self.volume or not self.open_interest:
            return None
        return self.volume / self.open_interest


@dataclass(frozen=True)
class PositioningScores:
    expiration: float = 0.0
    contract_price: float = 0.0
    relative_strength: float = 0.0
    combo: float = 0.0
    price_action: float = 0.0
    stock_reaction: float = 0.0

    @property
    def total(self) -> float:
        return (
            self.expiration
            + self.contract_price
            + self.relative_strength
            + self.combo
            + self.price_action
            + self.stock_reaction
        )


@dataclass(frozen=True)
class PositioningResult:
    grade: str
    score: float
    color: str
    breakdown: str
    scores: PositioningScores

    def to_dict(self) -> Dict[str, Any]:
        return {
            "grade": self.grade,
            "score": self.score,
            "color": self.color,
            "breakdown": self.breakdown,
            "scores": asdict(self.scores),
        }


@dataclass(frozen=True)
class ScoredTrade:
    trade: Trade
    positioning: PositioningResult
    enrichment: Optional[EnrichmentSnapshot] = None
    unusual_volume: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = self.trade.to_dict()
        enrichment = self.enrichment or EnrichmentSnapshot()
        data["current_option_price"] = enrichment.option_price or self.trade.premium_per_contract
        data["current_stock_price"] = enrichment.underlying_price or self.trade.spot_price
        data["volume"] = enrichment.volume
        data["open_interest"] = enrichment.open_interest
        data["volume_oi_ratio"] = enrichment.volume_oi_ratio
        data["unusual_volume"] = self.unusual_volume
        data["positioning"] = self.positioning.to_dict()
        return data


@dataclass
class FlowSummary:
    total_trades: int = 0
    total_premium: float = 0.0
    average_premium: float = 0.0
    unique_symbols: int = 0
    trade_types: Dict[str, int] = field(
        default_factory=lambda: {t.value: 0 for t in TradeType}
    )
    calls: int = 0
    puts: int = 0
    call_put_ratio: Optional[float] = None
    bullish_count: int = 0
    bearish_count: int = 0
    bullish_premium: float = 0.0
    bearish_premium: float = 0.0
    institutional_count: int = 0
    unusual_count: int = 0
    average_score: float = 0.0
    grade_counts: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["call_put_ratio"] = {
            "calls": self.calls,
            "puts": self.puts,
            "ratio": self.call_put_ratio,
        }
        return data


@dataclass
class FlowReport:
    trades: List[ScoredTrade]
    summary: FlowSummary
    generated_at: datetime
