"""Technical indicators: RSI, Bollinger, MACD, EMA, Stochastic, ADX, ATR, Squeeze.

Pure functions, no I/O.  None of them raise on short input; each returns a
documented neutral sentinel instead so a partially-filled series can still be
scored.
"""

import math

import numpy as np

from marketlens.analysis.models import (
    AdxResult,
    BollingerBands,
    CandleData,
    EmaSet,
    MacdResult,
    SqueezeResult,
    StochasticResult,
    TechnicalSnapshot,
    UltimateMacdResult,
    VolumeProfile,
)


# ── Series helpers ───────────────────────────────────────────────────────


def ema_series(values: list[float], period: int) -> list[float]:
    """Exponential moving average seeded with the first value.

    ``EMA_i = value_i × k + EMA_{i-1} × (1 - k)`` with ``k = 2 / (period + 1)``.
    Returns a list the same length as *values*.
    """
    if not values:
        return []
    k = 2.0 / (period + 1)
    out = [values[0]]
    for v in values[1:]:
        out.append(v * k + out[-1] * (1 - k))
    return out


def sma_series(values: list[float], period: int) -> list[float]:
    """Simple moving average series.

    Bars before the first full window carry the raw value through.
    """
    out: list[float] = []
    running = 0.0
    for i, v in enumerate(values):
        running += v
        if i >= period:
            running -= values[i - period]
        out.append(running / period if i >= period - 1 else v)
    return out


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


# ── SMA / Momentum ───────────────────────────────────────────────────────


def calculate_sma(closes: list[float], period: int = 20) -> float:
    """Simple moving average of the last *period* closes.

    Returns the last price when the series is shorter than *period*, and
    ``0.0`` for an empty series.
    """
    if not closes:
        return 0.0
    if len(closes) < period:
        return closes[-1]
    return _mean(closes[-period:])


def calculate_momentum(closes: list[float], period: int = 10) -> float:
    """Rate of change over *period* bars, in percent (``0.0`` when short)."""
    if len(closes) <= period:
        return 0.0
    base = closes[-period - 1]
    if base == 0:
        return 0.0
    return (closes[-1] / base - 1.0) * 100.0


# ── RSI ──────────────────────────────────────────────────────────────────


def _rsi_from_avgs(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 100.0
    if avg_gain == 0:
        return 0.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def calculate_rsi_series(closes: list[float], period: int = 14) -> list[float]:
    """Wilder RSI for every bar.

    Algorithm (Wilder-smoothed):
        1. delta = close[i] - close[i-1]
        2. Seed average gain/loss = SMA of the first *period* deltas.
        3. Subsequent: avg = (prev_avg × (period-1) + current) / period
        4. RSI = 100 - 100 / (1 + avg_gain / avg_loss)

    Bars before the seed are ``50.0``.  Zero average loss is ``100.0``,
    including a flat stretch with no gains either.
    """
    rsi = [50.0] * len(closes)
    if len(closes) < period + 1:
        return rsi

    deltas = [closes[i] - closes[i - 1] for i in range(1, len(closes))]
    gains = [max(d, 0.0) for d in deltas]
    losses = [abs(min(d, 0.0)) for d in deltas]

    avg_gain = sum(gains[:period]) / period
    avg_loss = sum(losses[:period]) / period
    rsi[period] = _rsi_from_avgs(avg_gain, avg_loss)

    for i in range(period, len(deltas)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        rsi[i + 1] = _rsi_from_avgs(avg_gain, avg_loss)

    return rsi


def calculate_rsi(closes: list[float], period: int = 14) -> float:
    """Latest Wilder RSI value.

    Returns ``50.0`` when fewer than ``period + 1`` closes are supplied.
    An uninterrupted rise gives ``100.0``; an uninterrupted fall ``0.0``.
    """
    if len(closes) < period + 1:
        return 50.0
    return calculate_rsi_series(closes, period)[-1]


# ── Bollinger Bands ──────────────────────────────────────────────────────


def calculate_bollinger(
    closes: list[float],
    period: int = 20,
    std_dev: float = 2.0,
) -> BollingerBands:
    """Bollinger Bands over the last *period* closes.

    Middle = SMA(close, *period*)
    Upper  = middle + *std_dev* × σ
    Lower  = middle − *std_dev* × σ

    σ is the population standard deviation.  When the series is shorter
    than *period* all three bands equal the last price.
    """
    if not closes:
        return BollingerBands(0.0, 0.0, 0.0)
    if len(closes) < period:
        last = closes[-1]
        return BollingerBands(last, last, last)

    window = closes[-period:]
    middle = _mean(window)
    sigma = math.sqrt(sum((c - middle) ** 2 for c in window) / period)
    return BollingerBands(
        upper=middle + std_dev * sigma,
        middle=middle,
        lower=middle - std_dev * sigma,
    )


# ── MACD ─────────────────────────────────────────────────────────────────


def macd_line_series(closes: list[float], fast: int = 12, slow: int = 26) -> list[float]:
    fast_ema = ema_series(closes, fast)
    slow_ema = ema_series(closes, slow)
    return [f - s for f, s in zip(fast_ema, slow_ema)]


def calculate_macd(
    closes: list[float],
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
) -> MacdResult:
    """Classic MACD: EMA(fast) − EMA(slow) with an EMA signal line."""
    if not closes:
        return MacdResult(0.0, 0.0, 0.0)
    line = macd_line_series(closes, fast, slow)
    signal_line = ema_series(line, signal)
    return MacdResult(
        macd_line=line[-1],
        signal_line=signal_line[-1],
        histogram=line[-1] - signal_line[-1],
    )


def _histogram_color(current: float, previous: float) -> str:
    if current > previous:
        return "aqua" if current > 0 else "maroon"
    if current < previous:
        return "blue" if current > 0 else "red"
    return "gray"


def calculate_ultimate_macd(
    closes: list[float],
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
    divergence_lookback: int = 10,
) -> UltimateMacdResult:
    """MACD with an SMA signal line and colour-coded momentum state.

    Histogram colour:
        aqua   — rising and above zero
        blue   — falling and above zero
        red    — falling and at/below zero
        maroon — rising and at/below zero
        gray   — unchanged

    A cross is reported when the MACD/signal ordering flips between the
    previous and the latest bar.  ``divergence`` compares the price change
    with the MACD change over *divergence_lookback* bars: price down while
    MACD up is bullish, the mirror is bearish.
    """
    if not closes:
        return UltimateMacdResult(
            0.0, 0.0, 0.0, "gray", "lime", "yellow", False, None, None,
        )

    line = macd_line_series(closes, fast, slow)
    signal_line = sma_series(line, signal)
    hist = [m - s for m, s in zip(line, signal_line)]

    macd_now, signal_now, hist_now = line[-1], signal_line[-1], hist[-1]
    macd_color = "lime" if macd_now >= signal_now else "red"

    if len(closes) < 2:
        return UltimateMacdResult(
            macd_now, signal_now, hist_now, "gray", macd_color, "yellow",
            False, None, None,
        )

    prev_diff = line[-2] - signal_line[-2]
    now_diff = macd_now - signal_now
    cross_type = None
    if prev_diff <= 0 < now_diff:
        cross_type = "bullish"
    elif prev_diff >= 0 > now_diff:
        cross_type = "bearish"

    divergence = None
    if len(closes) > divergence_lookback:
        price_change = closes[-1] - closes[-divergence_lookback - 1]
        macd_change = macd_now - line[-divergence_lookback - 1]
        if price_change < 0 < macd_change:
            divergence = "bullish"
        elif price_change > 0 > macd_change:
            divergence = "bearish"

    return UltimateMacdResult(
        macd=macd_now,
        signal=signal_now,
        histogram=hist_now,
        histogram_color=_histogram_color(hist_now, hist[-2]),
        macd_color=macd_color,
        signal_color="yellow",
        is_crossing=cross_type is not None,
        cross_type=cross_type,
        divergence=divergence,
    )


# ── EMA ──────────────────────────────────────────────────────────────────


def calculate_ema_set(closes: list[float]) -> EmaSet:
    """Latest EMA 9 / 21 / 50, each seeded with the first close."""
    if not closes:
        return EmaSet(0.0, 0.0, 0.0)
    return EmaSet(
        ema9=ema_series(closes, 9)[-1],
        ema21=ema_series(closes, 21)[-1],
        ema50=ema_series(closes, 50)[-1],
    )


# ── Stochastic ───────────────────────────────────────────────────────────


def calculate_stochastic(
    closes: list[float],
    period: int = 14,
    smooth_k: int = 3,
    smooth_d: int = 3,
) -> StochasticResult:
    """Slow stochastic computed on closes.

    raw %K = 100 × (close − lowest) / (highest − lowest) over *period*
    %K     = SMA(*smooth_k*) of raw %K
    %D     = SMA(*smooth_d*) of %K

    A flat window gives raw %K = 50.  Returns ``k = d = 50`` when fewer than
    *period* closes are supplied.
    """
    if len(closes) < period:
        return StochasticResult(50.0, 50.0)

    raw_k: list[float] = []
    for i in range(period - 1, len(closes)):
        window = closes[i - period + 1 : i + 1]
        highest, lowest = max(window), min(window)
        if highest == lowest:
            raw_k.append(50.0)
        else:
            raw_k.append(100.0 * (closes[i] - lowest) / (highest - lowest))

    k_values = [
        _mean(raw_k[max(0, j - smooth_k + 1) : j + 1]) for j in range(len(raw_k))
    ]
    return StochasticResult(k=k_values[-1], d=_mean(k_values[-smooth_d:]))


# ── ADX ──────────────────────────────────────────────────────────────────


def calculate_adx(candles: list[CandleData], period: int = 14) -> AdxResult:
    """Directional movement over the last *period* bars.

    Algorithm:
        1. +DM / −DM and true range per bar.
        2. Simple sums of the last *period* values.
        3. +DI = 100 × ΣDM+ / ΣTR, −DI likewise.
        4. DX = 100 × |+DI − −DI| / (+DI + −DI)

    DX is reported as ``adx`` without a second smoothing pass.  Returns
    ``50 / 50 / 50`` when fewer than ``period + 1`` candles are supplied.
    """
    if len(candles) < period + 1:
        return AdxResult(50.0, 50.0, 50.0)

    plus_dm: list[float] = []
    minus_dm: list[float] = []
    true_ranges: list[float] = []
    for i in range(1, len(candles)):
        cur, prev = candles[i], candles[i - 1]
        up_move = cur.high - prev.high
        down_move = prev.low - cur.low
        plus_dm.append(up_move if (up_move > down_move and up_move > 0) else 0.0)
        minus_dm.append(down_move if (down_move > up_move and down_move > 0) else 0.0)
        true_ranges.append(
            max(cur.high - cur.low, abs(cur.high - prev.close), abs(cur.low - prev.close))
        )

    tr_sum = sum(true_ranges[-period:])
    if tr_sum == 0:
        return AdxResult(0.0, 0.0, 0.0)

    plus_di = 100.0 * sum(plus_dm[-period:]) / tr_sum
    minus_di = 100.0 * sum(minus_dm[-period:]) / tr_sum
    di_sum = plus_di + minus_di
    dx = 100.0 * abs(plus_di - minus_di) / di_sum if di_sum > 0 else 0.0
    return AdxResult(adx=dx, plus_di=plus_di, minus_di=minus_di)


# ── ATR ──────────────────────────────────────────────────────────────────


def calculate_atr(candles: list[CandleData], period: int = 14) -> float:
    """Average bar range: mean of ``high − low`` over the last *period* bars.

    Uses fewer bars when the series is short; ``0.0`` for an empty series.
    """
    if not candles:
        return 0.0
    return _mean([c.high - c.low for c in candles[-period:]])


# ── Squeeze Momentum ─────────────────────────────────────────────────────


def _squeeze_basis(candles: list[CandleData], length: int) -> float:
    """Mean of the window's high/low midpoint and its close SMA."""
    window = candles[-length:]
    highest = max(c.high for c in window)
    lowest = min(c.low for c in window)
    return ((highest + lowest) / 2.0 + _mean([c.close for c in window])) / 2.0


def _squeeze_momentum(candles: list[CandleData], length: int, avg: float) -> float:
    """Linear-regression value of ``close − avg`` at the last bar of the window."""
    closes = [c.close for c in candles[-length:]]
    x = np.arange(length, dtype=float)
    y = np.array(closes, dtype=float) - avg
    slope, intercept = np.polyfit(x, y, 1)
    return float(intercept + slope * (length - 1))


def calculate_squeeze(
    candles: list[CandleData],
    bb_length: int = 20,
    bb_mult: float = 2.0,
    kc_length: int = 20,
    kc_mult: float = 1.5,
    use_true_range: bool = True,
) -> SqueezeResult:
    """Bollinger-inside-Keltner volatility squeeze with linreg momentum.

    Squeeze is *on* when both Bollinger bands sit inside the Keltner
    channel and *off* when both sit outside.  Momentum colour is lime/green
    above zero (rising/falling) and red/maroon at or below zero
    (falling/rising).  Squeeze colour: blue (neither), black (on), gray (off).
    """
    if len(candles) < max(bb_length, kc_length) + 1:
        return SqueezeResult(False, False, 0.0, "maroon", "blue")

    closes = [c.close for c in candles]
    bands = calculate_bollinger(closes, bb_length, bb_mult)

    kc_basis = _mean(closes[-kc_length:])
    ranges: list[float] = []
    for i in range(len(candles) - kc_length, len(candles)):
        cur = candles[i]
        if use_true_range:
            prev_close = candles[i - 1].close
            ranges.append(
                max(cur.high - cur.low, abs(cur.high - prev_close), abs(cur.low - prev_close))
            )
        else:
            ranges.append(cur.high - cur.low)
    range_ma = _mean(ranges)
    upper_kc = kc_basis + range_ma * kc_mult
    lower_kc = kc_basis - range_ma * kc_mult

    sqz_on = bands.lower > lower_kc and bands.upper < upper_kc
    sqz_off = bands.lower < lower_kc and bands.upper > upper_kc

    # Both regressions are taken against the latest window's basis.
    avg = _squeeze_basis(candles, kc_length)
    momentum = _squeeze_momentum(candles, kc_length, avg)
    prev_momentum = _squeeze_momentum(candles[:-1], kc_length, avg)

    if momentum > 0:
        momentum_color = "lime" if momentum > prev_momentum else "green"
    else:
        momentum_color = "red" if momentum < prev_momentum else "maroon"

    if sqz_on:
        squeeze_color = "black"
    elif sqz_off:
        squeeze_color = "gray"
    else:
        squeeze_color = "blue"

    return SqueezeResult(sqz_on, sqz_off, momentum, momentum_color, squeeze_color)


# ── Volume ───────────────────────────────────────────────────────────────


def analyze_volume(candles: list[CandleData], lookback: int = 20) -> VolumeProfile:
    """Relative volume of the last bar and Chaikin-style money flow.

    ``volume_ratio`` = last volume / mean volume over *lookback* bars.
    Profile: ``high`` ≥ 1.5, ``medium`` ≥ 0.75, else ``low``.
    Flow is the sign of Σ(money-flow multiplier × volume).
    """
    if not candles:
        return VolumeProfile(1.0, "medium", "neutral")

    window = candles[-lookback:]
    avg_volume = _mean([c.volume for c in window])
    ratio = window[-1].volume / avg_volume if avg_volume > 0 else 1.0

    if ratio >= 1.5:
        profile = "high"
    elif ratio >= 0.75:
        profile = "medium"
    else:
        profile = "low"

    money_flow = 0.0
    for c in window:
        spread = c.high - c.low
        if spread > 0:
            money_flow += ((c.close - c.low) - (c.high - c.close)) / spread * c.volume

    if money_flow > 0:
        flow = "accumulation"
    elif money_flow < 0:
        flow = "distribution"
    else:
        flow = "neutral"

    return VolumeProfile(volume_ratio=ratio, profile=profile, flow=flow)


# ── Trend / levels ───────────────────────────────────────────────────────

# (weight) RSI 1, MACD histogram 1.5, EMA 21/50 2, DI dominance 1.5
_TREND_WEIGHTS = (1.0, 1.5, 2.0, 1.5)
_TREND_SHARE = 0.6


def classify_trend(rsi: float, macd: MacdResult, ema: EmaSet, adx: AdxResult) -> str:
    """Weighted trend label: ``up``, ``down`` or ``sideways``.

    Each voter reads up/down/flat; a side needs more than 60% of the total
    weight to set the trend.
    """
    readings = (
        1 if rsi > 60 else -1 if rsi < 40 else 0,
        1 if macd.histogram > 0 else -1 if macd.histogram < 0 else 0,
        1 if ema.ema21 > ema.ema50 else -1 if ema.ema21 < ema.ema50 else 0,
        1 if adx.plus_di > adx.minus_di else -1 if adx.plus_di < adx.minus_di else 0,
    )
    total = sum(_TREND_WEIGHTS)
    up = sum(w for r, w in zip(readings, _TREND_WEIGHTS) if r > 0)
    down = sum(w for r, w in zip(readings, _TREND_WEIGHTS) if r < 0)
    if up / total > _TREND_SHARE:
        return "up"
    if down / total > _TREND_SHARE:
        return "down"
    return "sideways"


def calculate_price_levels(closes: list[float]) -> tuple[list[float], list[float]]:
    """Support and resistance from the close range and the last close.

    Support: last close −5%, 38.2% and 23.6% retracements (descending).
    Resistance: last close +5%, 61.8% and 78.6% retracements (ascending).
    Both lists are empty for an empty series.
    """
    if not closes:
        return [], []
    price = closes[-1]
    lowest, highest = min(closes), max(closes)
    span = highest - lowest
    support = sorted(
        [price * 0.95, lowest + span * 0.382, lowest + span * 0.236], reverse=True,
    )
    resistance = sorted([price * 1.05, lowest + span * 0.618, lowest + span * 0.786])
    return support, resistance


# ── Snapshot + base vote ─────────────────────────────────────────────────


def analyze_technical_signals(candles: list[CandleData]) -> TechnicalSnapshot:
    """Compute every indicator on *candles* and take the six-way base vote.

    Voters: RSI extremes, Bollinger breakout, MACD histogram/line agreement,
    stacked EMA 9/21/50, stochastic extremes, and ADX > 25 with the
    dominant directional index.  The majority side wins (ties are
    neutral); strength is the winning vote count over six.
    """
    closes = [c.close for c in candles]
    price = closes[-1] if closes else 0.0

    rsi = calculate_rsi(closes)
    bands = calculate_bollinger(closes)
    macd = calculate_macd(closes)
    ema = calculate_ema_set(closes)
    stoch = calculate_stochastic(closes)
    adx = calculate_adx(candles)

    buy = sell = 0

    if rsi < 30:
        buy += 1
    elif rsi > 70:
        sell += 1

    if price < bands.lower:
        buy += 1
    elif price > bands.upper:
        sell += 1

    if macd.histogram > 0 and macd.macd_line > macd.signal_line:
        buy += 1
    elif macd.histogram < 0 and macd.macd_line < macd.signal_line:
        sell += 1

    if ema.ema9 > ema.ema21 > ema.ema50:
        buy += 1
    elif ema.ema9 < ema.ema21 < ema.ema50:
        sell += 1

    if stoch.k < 20 and stoch.d < 20:
        buy += 1
    elif stoch.k > 80 and stoch.d > 80:
        sell += 1

    if adx.adx > 25:
        if adx.plus_di > adx.minus_di:
            buy += 1
        elif adx.minus_di > adx.plus_di:
            sell += 1

    if buy > sell:
        vote = "buy"
    elif sell > buy:
        vote = "sell"
    else:
        vote = "neutral"

    support, resistance = calculate_price_levels(closes)

    return TechnicalSnapshot(
        price=price,
        rsi=rsi,
        bollinger=bands,
        macd=macd,
        ultimate_macd=calculate_ultimate_macd(closes),
        ema=ema,
        stochastic=stoch,
        adx=adx,
        atr=calculate_atr(candles),
        squeeze=calculate_squeeze(candles),
        volume=analyze_volume(candles),
        sma20=calculate_sma(closes, 20),
        momentum_pct=calculate_momentum(closes, 10),
        vote=vote,
        vote_strength=max(buy, sell) / 6.0,
        buy_votes=buy,
        sell_votes=sell,
        trend=classify_trend(rsi, macd, ema, adx),
        support_levels=support,
        resistance_levels=resistance,
    )
