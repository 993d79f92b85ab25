"""Candlestick pattern recognition on the last three bars.

Each detector is a pure predicate; ``detect_candlestick_patterns`` collects
every match with its fixed strength.
"""

from marketlens.analysis.models import CandleData, PatternMatch


def _body(c: CandleData) -> float:
    return abs(c.close - c.open)


def _range(c: CandleData) -> float:
    return c.high - c.low


def _upper_shadow(c: CandleData) -> float:
    return c.high - max(c.open, c.close)


def _lower_shadow(c: CandleData) -> float:
    return min(c.open, c.close) - c.low


def _is_bullish(c: CandleData) -> bool:
    return c.close > c.open


def _is_bearish(c: CandleData) -> bool:
    return c.close < c.open


# ── Single-bar ───────────────────────────────────────────────────────────


def is_hammer(c: CandleData) -> bool:
    body = _body(c)
    return (
        _range(c) > 0
        and body <= 0.3 * _range(c)
        and _lower_shadow(c) > 2 * body
        and _upper_shadow(c) < body
    )


def is_inverted_hammer(c: CandleData) -> bool:
    body = _body(c)
    return (
        _range(c) > 0
        and body <= 0.3 * _range(c)
        and _upper_shadow(c) > 2 * body
        and _lower_shadow(c) < body
    )


def is_doji(c: CandleData) -> bool:
    return _range(c) > 0 and _body(c) < 0.1 * _range(c)


# ── Two-bar ──────────────────────────────────────────────────────────────


def is_bullish_engulfing(prev: CandleData, cur: CandleData) -> bool:
    return (
        _is_bearish(prev)
        and _is_bullish(cur)
        and _body(cur) > _body(prev)
        and cur.open < prev.close
        and cur.close > prev.open
    )


def is_bearish_engulfing(prev: CandleData, cur: CandleData) -> bool:
    return (
        _is_bullish(prev)
        and _is_bearish(cur)
        and _body(cur) > _body(prev)
        and cur.open > prev.close
        and cur.close < prev.open
    )


# ── Three-bar ────────────────────────────────────────────────────────────


def is_morning_star(first: CandleData, middle: CandleData, last: CandleData) -> bool:
    midpoint = (first.open + first.close) / 2
    return (
        _is_bearish(first)
        and _body(middle) < 0.3 * _body(first)
        and _is_bullish(last)
        and last.close > midpoint
    )


def is_evening_star(first: CandleData, middle: CandleData, last: CandleData) -> bool:
    midpoint = (first.open + first.close) / 2
    return (
        _is_bullish(first)
        and _body(middle) < 0.3 * _body(first)
        and _is_bearish(last)
        and last.close < midpoint
    )


def is_three_white_soldiers(a: CandleData, b: CandleData, c: CandleData) -> bool:
    return (
        all(_is_bullish(x) for x in (a, b, c))
        and a.close < b.close < c.close
        and a.open < b.open < c.open
    )


def is_three_black_crows(a: CandleData, b: CandleData, c: CandleData) -> bool:
    return (
        all(_is_bearish(x) for x in (a, b, c))
        and a.close > b.close > c.close
        and a.open > b.open > c.open
    )


# ── Scan ─────────────────────────────────────────────────────────────────


def detect_candlestick_patterns(candles: list[CandleData]) -> list[PatternMatch]:
    """Return every pattern formed by the last three candles.

    Returns an empty list when fewer than three candles are supplied.
    """
    if len(candles) < 3:
        return []

    first, prev, cur = candles[-3], candles[-2], candles[-1]
    patterns: list[PatternMatch] = []

    if is_hammer(cur):
        patterns.append(PatternMatch("Hammer", "bullish", 0.7))
    if is_inverted_hammer(cur):
        patterns.append(PatternMatch("Inverted Hammer", "bearish", 0.7))

    if is_bullish_engulfing(prev, cur):
        patterns.append(PatternMatch("Bullish Engulfing", "bullish", 0.85))
    if is_bearish_engulfing(prev, cur):
        patterns.append(PatternMatch("Bearish Engulfing", "bearish", 0.85))

    if is_morning_star(first, prev, cur):
        patterns.append(PatternMatch("Morning Star", "bullish", 0.9))
    if is_evening_star(first, prev, cur):
        patterns.append(PatternMatch("Evening Star", "bearish", 0.9))

    if is_doji(cur):
        direction = (
            "bearish" if abs(cur.high - cur.open) > abs(cur.low - cur.open) else "bullish"
        )
        patterns.append(PatternMatch("Doji", direction, 0.6))

    if is_three_white_soldiers(first, prev, cur):
        patterns.append(PatternMatch("Three White Soldiers", "bullish", 0.95))
    if is_three_black_crows(first, prev, cur):
        patterns.append(PatternMatch("Three Black Crows", "bearish", 0.95))

    return patterns
