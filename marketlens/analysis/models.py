"""Analysis data models — typed representations for indicator and pattern outputs."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Optional


Direction = Literal["bullish", "bearish"]


@dataclass(frozen=True)
class CandleData:
    """A single OHLCV bar.  ``time`` is the bar open time in UTC."""

    time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float


# ── Indicator results ────────────────────────────────────────────────────


@dataclass(frozen=True)
class BollingerBands:
    upper: float
    middle: float
    lower: float


@dataclass(frozen=True)
class MacdResult:
    macd_line: float
    signal_line: float
    histogram: float


@dataclass(frozen=True)
class UltimateMacdResult:
    """MACD with SMA signal line plus colour and cross annotations."""

    macd: float
    signal: float
    histogram: float
    histogram_color: str  # aqua | blue | red | maroon | gray
    macd_color: str  # lime | red
    signal_color: str
    is_crossing: bool
    cross_type: Optional[str]  # "bullish" | "bearish" | None
    divergence: Optional[str] = None  # "bullish" | "bearish" | None


@dataclass(frozen=True)
class EmaSet:
    ema9: float
    ema21: float
    ema50: float


@dataclass(frozen=True)
class StochasticResult:
    k: float
    d: float


@dataclass(frozen=True)
class AdxResult:
    adx: float
    plus_di: float
    minus_di: float


@dataclass(frozen=True)
class SqueezeResult:
    is_squeeze_on: bool
    is_squeeze_off: bool
    momentum: float
    momentum_color: str  # lime | green | red | maroon
    squeeze_color: str  # blue | black | gray


@dataclass(frozen=True)
class VolumeProfile:
    volume_ratio: float
    profile: Literal["high", "medium", "low"]
    flow: Literal["accumulation", "distribution", "neutral"]


@dataclass(frozen=True)
class TechnicalSnapshot:
    """Latest-bar values of every indicator plus the base six-way vote."""

    price: float
    rsi: float
    bollinger: BollingerBands
    macd: MacdResult
    ultimate_macd: UltimateMacdResult
    ema: EmaSet
    stochastic: StochasticResult
    adx: AdxResult
    atr: float
    squeeze: SqueezeResult
    volume: VolumeProfile
    sma20: float
    momentum_pct: float
    vote: Literal["buy", "sell", "neutral"]
    vote_strength: float
    buy_votes: int = 0
    sell_votes: int = 0
    trend: Literal["up", "down", "sideways"] = "sideways"
    support_levels: list[float] = field(default_factory=list)  # descending
    resistance_levels: list[float] = field(default_factory=list)  # ascending


# ── Patterns ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TradePlan:
    """Plain-language trading plan attached to a chart pattern."""

    entry: str
    stop_loss: str
    take_profit: str


@dataclass(frozen=True)
class PatternMatch:
    name: str
    direction: Direction
    strength: float
    description: Optional[str] = None
    plan: Optional[TradePlan] = None


# ── Market structure ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class SwingPoint:
    price: float
    kind: Literal["high", "low"]
    index: int
    time: datetime


@dataclass(frozen=True)
class StructureResult:
    bullish_bos: bool = False
    bearish_bos: bool = False
    bullish_choch: bool = False
    bearish_choch: bool = False
    trend: Literal["bullish", "bearish", "neutral"] = "neutral"


@dataclass(frozen=True)
class OrderBlock:
    high: float
    low: float
    time: datetime
    type: Direction


@dataclass(frozen=True)
class FairValueGap:
    top: float
    bottom: float
    type: Direction
    time: datetime


@dataclass(frozen=True)
class ZoneBand:
    top: float
    bottom: float

    def contains(self, price: float) -> bool:
        return self.bottom <= price <= self.top


@dataclass(frozen=True)
class PriceZones:
    premium: ZoneBand
    discount: ZoneBand
    equilibrium: ZoneBand


@dataclass(frozen=True)
class SmartMoneyResult:
    swing_structure: StructureResult
    internal_structure: StructureResult
    swing_order_blocks: list[OrderBlock] = field(default_factory=list)
    internal_order_blocks: list[OrderBlock] = field(default_factory=list)
    fair_value_gaps: list[FairValueGap] = field(default_factory=list)
    zones: Optional[PriceZones] = None
