"""Signal fusion: merge indicator, pattern, structure and sentiment evidence.

Fusion starts from the six-way base vote and walks an ordered rule chain.
A rule either overrides the direction outright or multiplies the running
confidence when its evidence agrees with the current direction.  Every
applied rule leaves a human-readable reason.  Rule order is part of the
behaviour: later overrides win and multipliers compound in sequence.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from marketlens.analysis.models import (
    PatternMatch,
    SmartMoneyResult,
    StructureResult,
    TechnicalSnapshot,
)
from marketlens.providers.models import MarketSnapshot, SentimentResult
from marketlens.signals.models import TradingSignal


PROXIMITY_PCT = 0.01
SMA_DEVIATION_PCT = 5.0
MOMENTUM_PCT = 5.0


@dataclass(frozen=True)
class FusionInputs:
    technical: TechnicalSnapshot
    candlestick_patterns: list[PatternMatch] = field(default_factory=list)
    chart_patterns: list[PatternMatch] = field(default_factory=list)
    structure: Optional[SmartMoneyResult] = None
    sentiment: Optional[SentimentResult] = None


class _FusionState:
    """Running direction, confidence and reasons while the chain executes."""

    def __init__(self, direction: str, confidence: float) -> None:
        self.direction = direction
        self.confidence = confidence
        self.reasons: list[str] = []

    def agrees(self, bias: str | None) -> bool:
        """True when a bullish/bearish (or buy/sell) *bias* matches the direction."""
        if self.direction == "buy":
            return bias in ("bullish", "buy", "positive")
        if self.direction == "sell":
            return bias in ("bearish", "sell", "negative")
        return False

    def boost(self, factor: float, reason: str) -> None:
        self.confidence *= factor
        self.reasons.append(reason)

    def override(self, direction: str, factor: float, reason: str) -> None:
        self.direction = direction
        self.boost(factor, reason)


def _near(price: float, low: float, high: float) -> bool:
    """Price inside ``[low, high]`` or within ``PROXIMITY_PCT`` of either edge."""
    if price <= 0:
        return False
    if low <= price <= high:
        return True
    return min(abs(price - low), abs(price - high)) / price <= PROXIMITY_PCT


def _structure_bias(result: StructureResult) -> str | None:
    if result.bullish_bos or result.bullish_choch:
        return "bullish"
    if result.bearish_bos or result.bearish_choch:
        return "bearish"
    return None


# ── Rules (in evaluation order) ──────────────────────────────────────────


def _rsi_extremes(state: _FusionState, inputs: FusionInputs) -> None:
    rsi = inputs.technical.rsi
    if rsi < 30:
        state.override("buy", 1.2, f"RSI oversold ({rsi:.1f})")
    elif rsi > 70:
        state.override("sell", 1.2, f"RSI overbought ({rsi:.1f})")


def _bollinger_breakout(state: _FusionState, inputs: FusionInputs) -> None:
    t = inputs.technical
    if t.price < t.bollinger.lower:
        state.override("buy", 1.15, "Price below the lower Bollinger band")
    elif t.price > t.bollinger.upper:
        state.override("sell", 1.15, "Price above the upper Bollinger band")


def _ultimate_macd(state: _FusionState, inputs: FusionInputs) -> None:
    macd = inputs.technical.ultimate_macd
    if macd.is_crossing and macd.cross_type == "bullish":
        state.override("buy", 1.25, "Bullish MACD cross")
    elif macd.is_crossing and macd.cross_type == "bearish":
        state.override("sell", 1.25, "Bearish MACD cross")

    if (macd.histogram_color == "aqua" and state.direction == "buy") or (
        macd.histogram_color == "red" and state.direction == "sell"
    ):
        state.boost(1.1, f"MACD histogram momentum ({macd.histogram_color})")

    if macd.divergence and state.agrees(macd.divergence):
        state.boost(1.15, f"{macd.divergence.capitalize()} MACD divergence")


def _volume(state: _FusionState, inputs: FusionInputs) -> None:
    volume = inputs.technical.volume
    if volume.volume_ratio >= 2 and state.direction != "neutral":
        state.boost(1.2, f"Volume spike ({volume.volume_ratio:.1f}x average)")
    if (volume.flow == "accumulation" and state.direction == "buy") or (
        volume.flow == "distribution" and state.direction == "sell"
    ):
        state.boost(1.1, f"Volume flow shows {volume.flow}")


def _patterns(state: _FusionState, inputs: FusionInputs) -> None:
    for pattern in inputs.candlestick_patterns:
        state.reasons.append(f"Candlestick pattern: {pattern.name} ({pattern.direction})")
    aligned = [p for p in inputs.candlestick_patterns if state.agrees(p.direction)]
    if aligned:
        strongest = max(aligned, key=lambda p: p.strength)
        state.boost(1.15, f"{strongest.name} confirms the {state.direction} bias")

    for pattern in inputs.chart_patterns:
        state.reasons.append(f"Chart pattern: {pattern.name} ({pattern.direction})")
    aligned = [p for p in inputs.chart_patterns if state.agrees(p.direction)]
    if aligned:
        strongest = max(aligned, key=lambda p: p.strength)
        state.boost(1.1, f"{strongest.name} confirms the {state.direction} bias")


def _sentiment(state: _FusionState, inputs: FusionInputs) -> None:
    sentiment = inputs.sentiment
    if sentiment is None or sentiment.overall_sentiment == "neutral":
        return
    label = (
        f"News sentiment {sentiment.overall_sentiment} "
        f"({sentiment.confidence:.0%} confidence)"
    )
    if state.agrees(sentiment.overall_sentiment):
        state.boost(1.1, label)
    else:
        state.reasons.append(label)


def _sma_deviation(state: _FusionState, inputs: FusionInputs) -> None:
    t = inputs.technical
    if t.sma20 <= 0:
        return
    deviation = (t.price - t.sma20) / t.sma20 * 100.0
    if deviation < -SMA_DEVIATION_PCT and state.direction == "buy":
        state.boost(1.1, f"Price {abs(deviation):.1f}% below the 20-period SMA")
    elif deviation > SMA_DEVIATION_PCT and state.direction == "sell":
        state.boost(1.1, f"Price {deviation:.1f}% above the 20-period SMA")


def _momentum(state: _FusionState, inputs: FusionInputs) -> None:
    t = inputs.technical
    if t.volume.volume_ratio <= 1.5:
        return
    if t.momentum_pct > MOMENTUM_PCT:
        state.override("buy", 1.2, f"Strong upward momentum ({t.momentum_pct:.1f}%) on volume")
    elif t.momentum_pct < -MOMENTUM_PCT:
        state.override("sell", 1.2, f"Strong downward momentum ({t.momentum_pct:.1f}%) on volume")


def _squeeze(state: _FusionState, inputs: FusionInputs) -> None:
    squeeze = inputs.technical.squeeze
    if squeeze.is_squeeze_on:
        state.boost(0.8, "Volatility squeeze active, breakout pending")
    elif squeeze.is_squeeze_off and (
        (squeeze.momentum_color == "lime" and state.direction == "buy")
        or (squeeze.momentum_color == "red" and state.direction == "sell")
    ):
        state.boost(1.15, "Squeeze released with momentum")


def _structure_breaks(state: _FusionState, inputs: FusionInputs) -> None:
    structure = inputs.structure
    if structure is None:
        return
    swing_bias = _structure_bias(structure.swing_structure)
    if state.agrees(swing_bias):
        state.boost(1.2, f"{swing_bias.capitalize()} swing structure break")
    internal_bias = _structure_bias(structure.internal_structure)
    if state.agrees(internal_bias):
        state.boost(1.1, f"{internal_bias.capitalize()} internal structure break")


def _order_blocks(state: _FusionState, inputs: FusionInputs) -> None:
    structure = inputs.structure
    if structure is None:
        return
    price = inputs.technical.price
    blocks = structure.swing_order_blocks + structure.internal_order_blocks
    if any(state.agrees(b.type) and _near(price, b.low, b.high) for b in blocks):
        state.boost(1.1, f"Price at a {'bullish' if state.direction == 'buy' else 'bearish'} order block")


def _fair_value_gaps(state: _FusionState, inputs: FusionInputs) -> None:
    structure = inputs.structure
    if structure is None:
        return
    price = inputs.technical.price
    if any(
        state.agrees(g.type) and _near(price, g.bottom, g.top)
        for g in structure.fair_value_gaps
    ):
        state.boost(1.1, f"Price near a {'bullish' if state.direction == 'buy' else 'bearish'} fair-value gap")


def _zones(state: _FusionState, inputs: FusionInputs) -> None:
    if inputs.structure is None or inputs.structure.zones is None:
        return
    zones = inputs.structure.zones
    price = inputs.technical.price
    if zones.discount.contains(price) and state.direction == "buy":
        state.boost(1.1, "Price in the discount zone")
    elif zones.premium.contains(price) and state.direction == "sell":
        state.boost(1.1, "Price in the premium zone")
    elif zones.equilibrium.contains(price):
        state.reasons.append("Price at equilibrium")


FUSION_RULES: tuple[Callable[[_FusionState, FusionInputs], None], ...] = (
    _rsi_extremes,
    _bollinger_breakout,
    _ultimate_macd,
    _volume,
    _patterns,
    _sentiment,
    _sma_deviation,
    _momentum,
    _squeeze,
    _structure_breaks,
    _order_blocks,
    _fair_value_gaps,
    _zones,
)


# ── Public API ───────────────────────────────────────────────────────────


def fuse_signal(
    symbol: str,
    snapshot: Optional[MarketSnapshot],
    technical: TechnicalSnapshot,
    candlestick_patterns: list[PatternMatch] | None = None,
    chart_patterns: list[PatternMatch] | None = None,
    structure: Optional[SmartMoneyResult] = None,
    sentiment: Optional[SentimentResult] = None,
    timestamp: datetime | None = None,
) -> TradingSignal:
    """Run the rule chain and build a ``TradingSignal``.

    Confidence is clamped to ``[0, 1]`` after the last rule.  Missing
    inputs (no structure, no sentiment, empty pattern lists) skip their
    rules.
    """
    inputs = FusionInputs(
        technical=technical,
        candlestick_patterns=list(candlestick_patterns or []),
        chart_patterns=list(chart_patterns or []),
        structure=structure,
        sentiment=sentiment,
    )
    state = _FusionState(technical.vote, technical.vote_strength)
    if technical.vote != "neutral":
        state.reasons.append(
            f"Indicator vote {technical.vote} "
            f"({max(technical.buy_votes, technical.sell_votes)}/6)"
        )

    for rule in FUSION_RULES:
        rule(state, inputs)

    return TradingSignal(
        symbol=symbol,
        direction=state.direction,
        confidence=max(0.0, min(state.confidence, 1.0)),
        price=snapshot.price if snapshot else technical.price,
        price_change_24h=snapshot.price_change_percent_24h if snapshot else 0.0,
        volume_24h=snapshot.volume if snapshot else 0.0,
        quote_volume=snapshot.quote_volume if snapshot else 0.0,
        timestamp=timestamp or datetime.now(timezone.utc),
        reasons=state.reasons,
        technical=technical,
        candlestick_patterns=inputs.candlestick_patterns,
        chart_patterns=inputs.chart_patterns,
        structure=structure,
        sentiment=sentiment,
    )
