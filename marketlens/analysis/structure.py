"""Market structure: swing points, BOS / CHoCH, order blocks, fair-value gaps, zones.

Pure functions over a candle series.  Swing detection runs at two
granularities, ``SWING_LENGTH`` for the main structure and
``INTERNAL_LENGTH`` for the internal one.
"""

from typing import Literal, Optional

from marketlens.analysis.indicators import calculate_atr
from marketlens.analysis.models import (
    CandleData,
    FairValueGap,
    OrderBlock,
    PriceZones,
    SmartMoneyResult,
    StructureResult,
    SwingPoint,
    ZoneBand,
)


SWING_LENGTH = 5
INTERNAL_LENGTH = 3
FVG_THRESHOLD = 0.1

Trend = Literal["bullish", "bearish", "neutral"]


# ── Swings ───────────────────────────────────────────────────────────────


def find_swing_points(candles: list[CandleData], length: int) -> list[SwingPoint]:
    """Identify swing highs and lows on closes.

    Bar *i* is a swing high when its close is strictly greater than every
    close in the *length* bars on each side, and a swing low when strictly
    less.  Returned in bar order.
    """
    closes = [c.close for c in candles]
    swings: list[SwingPoint] = []
    for i in range(length, len(closes) - length):
        neighbours = closes[i - length : i] + closes[i + 1 : i + length + 1]
        price = closes[i]
        if all(price > n for n in neighbours):
            swings.append(SwingPoint(price, "high", i, candles[i].time))
        elif all(price < n for n in neighbours):
            swings.append(SwingPoint(price, "low", i, candles[i].time))
    return swings


def infer_trend(swings: list[SwingPoint]) -> Trend:
    """Higher high + higher low is bullish; lower high + lower low is bearish."""
    highs = [s.price for s in swings if s.kind == "high"]
    lows = [s.price for s in swings if s.kind == "low"]
    if len(highs) < 2 or len(lows) < 2:
        return "neutral"
    if highs[-1] > highs[-2] and lows[-1] > lows[-2]:
        return "bullish"
    if highs[-1] < highs[-2] and lows[-1] < lows[-2]:
        return "bearish"
    return "neutral"


# ── BOS / CHoCH ──────────────────────────────────────────────────────────


def detect_structure_breaks(
    swings: list[SwingPoint],
    current_price: float,
    previous_trend: Trend,
) -> StructureResult:
    """Classify breaks of structure and changes of character.

    BOS: a bearish trend broken above the latest swing high is a bullish
    BOS; a bullish trend broken below the latest swing low is a bearish BOS.

    CHoCH looks at the last four swings.  ``low, high, low, high`` with a
    higher third and fourth swing is bullish; ``high, low, high, low`` with
    a lower third and fourth is bearish.  CHoCH overrides the BOS trend.
    """
    if len(swings) < 2:
        return StructureResult(trend=previous_trend)

    last_high = next((s for s in reversed(swings) if s.kind == "high"), None)
    last_low = next((s for s in reversed(swings) if s.kind == "low"), None)

    bullish_bos = bearish_bos = False
    bullish_choch = bearish_choch = False
    trend: Trend = previous_trend

    if previous_trend == "bearish" and last_high and current_price > last_high.price:
        bullish_bos = True
        trend = "bullish"
    elif previous_trend == "bullish" and last_low and current_price < last_low.price:
        bearish_bos = True
        trend = "bearish"

    if len(swings) >= 4:
        s1, s2, s3, s4 = swings[-4:]
        kinds = (s1.kind, s2.kind, s3.kind, s4.kind)
        if (
            kinds == ("low", "high", "low", "high")
            and s3.price > s1.price
            and s4.price > s2.price
        ):
            bullish_choch = True
            trend = "bullish"
        elif (
            kinds == ("high", "low", "high", "low")
            and s3.price < s1.price
            and s4.price < s2.price
        ):
            bearish_choch = True
            trend = "bearish"

    return StructureResult(
        bullish_bos=bullish_bos,
        bearish_bos=bearish_bos,
        bullish_choch=bullish_choch,
        bearish_choch=bearish_choch,
        trend=trend,
    )


# ── Order blocks ─────────────────────────────────────────────────────────


def detect_order_blocks(
    candles: list[CandleData],
    swings: list[SwingPoint],
    atr: float,
) -> list[OrderBlock]:
    """One block per leg between opposite swings.

    Candles in ``[prev.index, cur.index)`` whose range is at most 2 × ATR
    are eligible.  A leg into a swing high yields a bearish block at the
    highest-high candle; a leg into a swing low a bullish block at the
    lowest-low candle.
    """
    blocks: list[OrderBlock] = []
    for prev, cur in zip(swings, swings[1:]):
        if prev.kind == cur.kind:
            continue
        eligible = [
            c for c in candles[prev.index : cur.index] if c.high - c.low <= 2 * atr
        ]
        if not eligible:
            continue
        if cur.kind == "high":
            c = max(eligible, key=lambda x: x.high)
            blocks.append(OrderBlock(c.high, c.low, c.time, "bearish"))
        else:
            c = min(eligible, key=lambda x: x.low)
            blocks.append(OrderBlock(c.high, c.low, c.time, "bullish"))
    return blocks


# ── Fair-value gaps ──────────────────────────────────────────────────────


def detect_fair_value_gaps(
    candles: list[CandleData],
    threshold: float = FVG_THRESHOLD,
) -> list[FairValueGap]:
    """Three-bar imbalances whose relative size reaches *threshold*."""
    gaps: list[FairValueGap] = []
    for i in range(2, len(candles)):
        cur, before = candles[i], candles[i - 2]
        if cur.low > before.high > 0:
            if (cur.low - before.high) / before.high >= threshold:
                gaps.append(FairValueGap(cur.low, before.high, "bullish", cur.time))
        if 0 < cur.high < before.low:
            if (before.low - cur.high) / before.low >= threshold:
                gaps.append(FairValueGap(before.low, cur.high, "bearish", cur.time))
    return gaps


# ── Zones ────────────────────────────────────────────────────────────────


def calculate_zones(swings: list[SwingPoint]) -> Optional[PriceZones]:
    """Premium / discount / equilibrium bands across the swing range.

    Returns ``None`` unless there is at least one swing high and one
    swing low.
    """
    highs = [s.price for s in swings if s.kind == "high"]
    lows = [s.price for s in swings if s.kind == "low"]
    if not highs or not lows:
        return None

    top = max(highs)
    bottom = min(lows)
    span = top - bottom
    return PriceZones(
        premium=ZoneBand(top=top, bottom=top - span * 0.05),
        discount=ZoneBand(top=bottom + span * 0.05, bottom=bottom),
        equilibrium=ZoneBand(top=bottom + span * 0.525, bottom=bottom + span * 0.475),
    )


# ── Combined ─────────────────────────────────────────────────────────────


def analyze_smart_money(
    candles: list[CandleData],
    swing_length: int = SWING_LENGTH,
    internal_length: int = INTERNAL_LENGTH,
    atr: float | None = None,
    fvg_threshold: float = FVG_THRESHOLD,
) -> SmartMoneyResult:
    """Run every structure detector at both granularities."""
    if atr is None:
        atr = calculate_atr(candles)
    price = candles[-1].close if candles else 0.0

    swings = find_swing_points(candles, swing_length)
    internal = find_swing_points(candles, internal_length)

    return SmartMoneyResult(
        swing_structure=detect_structure_breaks(swings, price, infer_trend(swings)),
        internal_structure=detect_structure_breaks(
            internal, price, infer_trend(internal),
        ),
        swing_order_blocks=detect_order_blocks(candles, swings, atr),
        internal_order_blocks=detect_order_blocks(candles, internal, atr),
        fair_value_gaps=detect_fair_value_gaps(candles, fvg_threshold),
        zones=calculate_zones(swings),
    )
