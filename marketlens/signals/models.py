"""Signal data models — the fused, explainable output of the analysis pipeline."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Optional

from marketlens.analysis.models import PatternMatch, SmartMoneyResult, TechnicalSnapshot
from marketlens.providers.models import SentimentResult


SignalDirection = Literal["buy", "sell", "neutral"]


@dataclass(frozen=True)
class TradingSignal:
    """Directional call with bounded confidence and the evidence behind it."""

    symbol: str
    direction: SignalDirection
    confidence: float  # always within [0, 1]
    price: float
    price_change_24h: float
    volume_24h: float
    quote_volume: float
    timestamp: datetime
    reasons: list[str]
    technical: TechnicalSnapshot
    candlestick_patterns: list[PatternMatch] = field(default_factory=list)
    chart_patterns: list[PatternMatch] = field(default_factory=list)
    structure: Optional[SmartMoneyResult] = None
    sentiment: Optional[SentimentResult] = None

    @property
    def rank_score(self) -> float:
        """Ordering key for batch results: confidence × volume × price."""
        return self.confidence * self.volume_24h * self.price


@dataclass(frozen=True)
class TopSignals:
    buy_signals: list[TradingSignal]
    sell_signals: list[TradingSignal]
