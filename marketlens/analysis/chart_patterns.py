"""Multi-bar chart patterns: Fibonacci retracements, RSI divergence, triple taps.

Every match carries a plain-language description and trading plan.
"""

from marketlens.analysis.models import CandleData, PatternMatch, TradePlan


FIB_WINDOW = 50
FIB_LEVELS = ((0.382, "38.2%"), (0.618, "61.8%"), (0.786, "78.6%"))
FIB_TOLERANCE = 0.01

DIVERGENCE_WINDOW = 20
HARMONIC_WINDOW = 30
TRIPLE_TAP_WINDOW = 30
TRIPLE_TAP_MIN_BARS = 15
TRIPLE_TAP_TOLERANCE = 0.005

# Bat / Gartley detection needs XABCD pivot labelling, which is not built.
HARMONIC_DETECTORS_IMPLEMENTED = False


# ── Fibonacci ────────────────────────────────────────────────────────────


def analyze_fibonacci_patterns(candles: list[CandleData]) -> list[PatternMatch]:
    """Bounce or rejection at a 38.2 / 61.8 / 78.6 % retracement.

    Levels are measured down from the highest high of the last
    ``FIB_WINDOW`` bars.  A close within 1 % of a level matches; it is
    bullish when the close is above the previous close, bearish otherwise.
    Deeper levels score higher: ``strength = 0.7 + 0.3 × level``.
    """
    if len(candles) < FIB_WINDOW:
        return []

    recent = candles[-FIB_WINDOW:]
    high_point = max(c.high for c in recent)
    low_point = min(c.low for c in recent)
    price_range = high_point - low_point
    current = recent[-1].close
    previous = recent[-2].close

    results: list[PatternMatch] = []
    for level, label in FIB_LEVELS:
        fib_price = high_point - price_range * level
        if fib_price <= 0 or abs(current - fib_price) / fib_price >= FIB_TOLERANCE:
            continue
        if current > previous:
            results.append(PatternMatch(
                name=f"Fibonacci Bounce {label}",
                direction="bullish",
                strength=0.7 + level * 0.3,
                description=f"Bullish bounce off the {label} Fibonacci retracement",
                plan=TradePlan(
                    entry=f"Confirmation above {fib_price:.2f}",
                    stop_loss=f"Below the recent low ({low_point:.2f})",
                    take_profit="1:2 projection or next resistance",
                ),
            ))
        else:
            results.append(PatternMatch(
                name=f"Fibonacci Rejection {label}",
                direction="bearish",
                strength=0.7 + level * 0.3,
                description=f"Bearish rejection at the {label} Fibonacci retracement",
                plan=TradePlan(
                    entry=f"Confirmation below {fib_price:.2f}",
                    stop_loss=f"Above the recent high ({high_point:.2f})",
                    take_profit="Next support or 1:2 projection",
                ),
            ))
    return results


# ── Harmonics ────────────────────────────────────────────────────────────


def detect_bullish_bat(candles: list[CandleData]) -> bool:
    """Unimplemented: always ``False`` (see ``HARMONIC_DETECTORS_IMPLEMENTED``)."""
    return False


def detect_bearish_gartley(candles: list[CandleData]) -> bool:
    """Unimplemented: always ``False`` (see ``HARMONIC_DETECTORS_IMPLEMENTED``)."""
    return False


def analyze_harmonic_patterns(candles: list[CandleData]) -> list[PatternMatch]:
    """Bat / Gartley scan.  Yields nothing until the detectors exist."""
    if len(candles) < HARMONIC_WINDOW:
        return []

    recent = candles[-HARMONIC_WINDOW:]
    results: list[PatternMatch] = []
    if detect_bullish_bat(recent):
        results.append(PatternMatch(
            name="Bullish Bat",
            direction="bullish",
            strength=0.85,
            description="Bullish Bat harmonic pattern",
            plan=TradePlan(
                entry="At point D with candle confirmation",
                stop_loss="Below point D (max 1% of price)",
                take_profit="Point C or 0.382 retracement of AD",
            ),
        ))
    if detect_bearish_gartley(recent):
        results.append(PatternMatch(
            name="Bearish Gartley",
            direction="bearish",
            strength=0.8,
            description="Bearish Gartley harmonic pattern",
            plan=TradePlan(
                entry="At point D with candle confirmation",
                stop_loss="Above point D (max 1% of price)",
                take_profit="Point C or 0.382 retracement of AD",
            ),
        ))
    return results


# ── Divergence ───────────────────────────────────────────────────────────


def _local_extrema(values: list[float]) -> tuple[list[float], list[float]]:
    """Strict three-point peaks and valleys, in order of appearance."""
    highs: list[float] = []
    lows: list[float] = []
    for i in range(1, len(values) - 1):
        if values[i] > values[i - 1] and values[i] > values[i + 1]:
            highs.append(values[i])
        if values[i] < values[i - 1] and values[i] < values[i + 1]:
            lows.append(values[i])
    return highs, lows


def analyze_divergence_patterns(
    candles: list[CandleData],
    rsi_values: list[float],
) -> list[PatternMatch]:
    """Regular price/RSI divergence over the last ``DIVERGENCE_WINDOW`` bars.

    Bearish: price makes a higher high while RSI makes a lower high.
    Bullish: price makes a lower low while RSI makes a higher low.
    """
    if len(candles) < DIVERGENCE_WINDOW or len(rsi_values) < DIVERGENCE_WINDOW:
        return []

    closes = [c.close for c in candles[-DIVERGENCE_WINDOW:]]
    rsi = rsi_values[-DIVERGENCE_WINDOW:]
    price_highs, price_lows = _local_extrema(closes)
    rsi_highs, rsi_lows = _local_extrema(rsi)

    results: list[PatternMatch] = []
    if len(price_highs) >= 2 and len(rsi_highs) >= 2:
        if price_highs[-1] > price_highs[-2] and rsi_highs[-1] < rsi_highs[-2]:
            results.append(PatternMatch(
                name="Bearish Divergence",
                direction="bearish",
                strength=0.85,
                description="Regular bearish divergence between price and RSI",
                plan=TradePlan(
                    entry="On the structure break after the divergence",
                    stop_loss=f"Above the recent high ({price_highs[-1]:.2f})",
                    take_profit="1:2 projection or next support",
                ),
            ))

    if len(price_lows) >= 2 and len(rsi_lows) >= 2:
        if price_lows[-1] < price_lows[-2] and rsi_lows[-1] > rsi_lows[-2]:
            results.append(PatternMatch(
                name="Bullish Divergence",
                direction="bullish",
                strength=0.85,
                description="Regular bullish divergence between price and RSI",
                plan=TradePlan(
                    entry="On the structure break after the divergence",
                    stop_loss=f"Below the recent low ({price_lows[-1]:.2f})",
                    take_profit="1:2 projection or next resistance",
                ),
            ))
    return results


# ── Triple tap ───────────────────────────────────────────────────────────


def _near(value: float, level: float) -> bool:
    return level != 0 and abs(value - level) / abs(level) < TRIPLE_TAP_TOLERANCE


def detect_bullish_triple_tap(candles: list[CandleData]) -> bool:
    if len(candles) < TRIPLE_TAP_MIN_BARS:
        return False
    support = min(c.low for c in candles)
    touches = sum(1 for c in candles if _near(c.low, support))
    last = candles[-1]
    return touches >= 3 and _near(last.low, support) and last.close > last.open


def detect_bearish_triple_tap(candles: list[CandleData]) -> bool:
    if len(candles) < TRIPLE_TAP_MIN_BARS:
        return False
    resistance = max(c.high for c in candles)
    touches = sum(1 for c in candles if _near(c.high, resistance))
    last = candles[-1]
    return touches >= 3 and _near(last.high, resistance) and last.close < last.open


def analyze_triple_tap(candles: list[CandleData]) -> list[PatternMatch]:
    """Three touches of the window's extreme followed by a reversal candle."""
    recent = candles[-TRIPLE_TAP_WINDOW:]
    results: list[PatternMatch] = []
    if detect_bullish_triple_tap(recent):
        results.append(PatternMatch(
            name="Bullish Triple Tap",
            direction="bullish",
            strength=0.9,
            description="Triple touch of support with a bullish reaction",
            plan=TradePlan(
                entry="Break above the consolidation level",
                stop_loss="Below the latest low",
                take_profit="Support-to-consolidation distance projected upward",
            ),
        ))
    if detect_bearish_triple_tap(recent):
        results.append(PatternMatch(
            name="Bearish Triple Tap",
            direction="bearish",
            strength=0.9,
            description="Triple touch of resistance with a bearish reaction",
            plan=TradePlan(
                entry="Break below the consolidation level",
                stop_loss="Above the latest high",
                take_profit="Resistance-to-consolidation distance projected downward",
            ),
        ))
    return results


# ── Combined ─────────────────────────────────────────────────────────────


def analyze_advanced_patterns(
    candles: list[CandleData],
    rsi_values: list[float],
) -> list[PatternMatch]:
    """All chart patterns, strongest first.  Needs at least ``FIB_WINDOW`` bars."""
    if len(candles) < FIB_WINDOW:
        return []
    results = (
        analyze_fibonacci_patterns(candles)
        + analyze_harmonic_patterns(candles)
        + analyze_divergence_patterns(candles, rsi_values)
        + analyze_triple_tap(candles)
    )
    return sorted(results, key=lambda p: p.strength, reverse=True)
