"""Backtest strategies: protocol, built-in rule sets and registry.

A strategy is a value: a name, a parameter dict, entry/exit predicates and
optional risk limits.  ``with_params`` returns a new value, so the optimizer
can sweep parameters without mutating anything shared.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Callable, Literal, Optional, Protocol, runtime_checkable

from marketlens.analysis.indicators import calculate_macd, calculate_rsi
from marketlens.analysis.models import CandleData


EntryRule = Callable[[list[CandleData], int, dict], bool]
ExitRule = Callable[[list[CandleData], int, int, dict], bool]


@runtime_checkable
class Strategy(Protocol):
    """Interface the backtest engine drives."""

    name: str
    params: dict[str, float]
    direction: Literal["buy", "sell"]
    stop_loss_pct: Optional[float]
    take_profit_pct: Optional[float]
    time_limit_bars: Optional[int]

    def entry(self, series: list[CandleData], index: int, params: dict) -> bool:
        ...

    def exit(
        self, series: list[CandleData], index: int, entry_index: int, params: dict,
    ) -> bool:
        ...

    def with_params(self, overrides: dict[str, float]) -> Strategy:
        ...


def _closes(series: list[CandleData], end: int) -> list[float]:
    """Closes up to and including bar *end*."""
    return [c.close for c in series[: end + 1]]


def _sma_at(series: list[CandleData], index: int, period: int) -> float:
    """SMA of the *period* closes ending at *index*; ``0.0`` before enough bars."""
    if period <= 0 or index < period - 1:
        return 0.0
    window = series[index - period + 1 : index + 1]
    return sum(c.close for c in window) / len(window)


@dataclass(frozen=True)
class _RuleSet:
    """Shared fields and ``with_params`` for the built-in strategies."""

    name: str = ""
    description: str = ""
    params: dict[str, float] = field(default_factory=dict)
    direction: Literal["buy", "sell"] = "buy"
    stop_loss_pct: Optional[float] = None
    take_profit_pct: Optional[float] = None
    time_limit_bars: Optional[int] = None

    def with_params(self, overrides: dict[str, float]):
        return replace(self, params={**self.params, **overrides})


# ── Custom ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CustomStrategy(_RuleSet):
    """Strategy assembled from caller-supplied predicates."""

    entry_rule: EntryRule = lambda series, index, params: False
    exit_rule: ExitRule = lambda series, index, entry_index, params: False

    def entry(self, series, index, params) -> bool:
        return self.entry_rule(series, index, params)

    def exit(self, series, index, entry_index, params) -> bool:
        return self.exit_rule(series, index, entry_index, params)


# ── Moving-average cross ─────────────────────────────────────────────────


@dataclass(frozen=True)
class MovingAverageCross(_RuleSet):
    """Long when the fast SMA crosses above the slow SMA; out on the reverse cross."""

    name: str = "Moving Average Cross"
    description: str = "Buy on a fast/slow SMA golden cross, sell on the death cross."
    params: dict[str, float] = field(
        default_factory=lambda: {"fast_period": 10, "slow_period": 30},
    )
    stop_loss_pct: Optional[float] = 5.0
    take_profit_pct: Optional[float] = 15.0

    def _warmup(self, params) -> int:
        return max(int(params["fast_period"]), int(params["slow_period"]))

    def _averages(self, series, index, params):
        fast, slow = int(params["fast_period"]), int(params["slow_period"])
        return (
            _sma_at(series, index, fast),
            _sma_at(series, index, slow),
            _sma_at(series, index - 1, fast),
            _sma_at(series, index - 1, slow),
        )

    def entry(self, series, index, params) -> bool:
        if index < self._warmup(params):
            return False
        fast, slow, prev_fast, prev_slow = self._averages(series, index, params)
        return prev_fast <= prev_slow and fast > slow

    def exit(self, series, index, entry_index, params) -> bool:
        if index < self._warmup(params):
            return False
        fast, slow, prev_fast, prev_slow = self._averages(series, index, params)
        return prev_fast >= prev_slow and fast < slow


# ── RSI reversal ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RsiReversal(_RuleSet):
    """Long when RSI climbs out of oversold; out once it reaches overbought."""

    name: str = "RSI Oversold/Overbought"
    description: str = "Buy when RSI leaves the oversold zone, sell when it is overbought."
    params: dict[str, float] = field(
        default_factory=lambda: {"rsi_period": 14, "oversold": 30, "overbought": 70},
    )
    stop_loss_pct: Optional[float] = 5.0
    time_limit_bars: Optional[int] = 30

    def entry(self, series, index, params) -> bool:
        period = int(params["rsi_period"])
        if index < period:
            return False
        closes = _closes(series, index)
        rsi = calculate_rsi(closes, period)
        prev_rsi = calculate_rsi(closes[:-1], period)
        return prev_rsi < params["oversold"] <= rsi

    def exit(self, series, index, entry_index, params) -> bool:
        return calculate_rsi(_closes(series, index), int(params["rsi_period"])) >= params["overbought"]


# ── MACD histogram ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class MacdHistogram(_RuleSet):
    """Long when the MACD histogram turns positive; out when it turns negative."""

    name: str = "MACD Histogram"
    description: str = "Buy when the MACD histogram crosses above zero, sell below."
    params: dict[str, float] = field(
        default_factory=lambda: {"fast_ema": 12, "slow_ema": 26, "signal_period": 9},
    )
    stop_loss_pct: Optional[float] = 7.0
    take_profit_pct: Optional[float] = 20.0

    def _histograms(self, series, index, params) -> tuple[float, float]:
        fast, slow, signal = (
            int(params["fast_ema"]), int(params["slow_ema"]), int(params["signal_period"]),
        )
        closes = _closes(series, index)
        now = calculate_macd(closes, fast, slow, signal).histogram
        prev = calculate_macd(closes[:-1], fast, slow, signal).histogram
        return now, prev

    def entry(self, series, index, params) -> bool:
        if index < int(params["slow_ema"]) + int(params["signal_period"]):
            return False
        now, prev = self._histograms(series, index, params)
        return prev <= 0 < now

    def exit(self, series, index, entry_index, params) -> bool:
        if index < 1:
            return False
        now, prev = self._histograms(series, index, params)
        return prev >= 0 > now


# ── Support / resistance ─────────────────────────────────────────────────


@dataclass(frozen=True)
class SupportResistance(_RuleSet):
    """Long on a bounce off the nearest support; out near the nearest resistance.

    Support is the highest of the lookback lows below the current close;
    resistance the lowest of the lookback highs above it.  ``threshold`` is
    a percentage distance.
    """

    name: str = "Support and Resistance"
    description: str = "Buy on a bounce from support, sell when resistance is reached."
    params: dict[str, float] = field(
        default_factory=lambda: {"lookback_period": 50, "threshold": 2},
    )
    stop_loss_pct: Optional[float] = 5.0
    time_limit_bars: Optional[int] = 20

    def entry(self, series, index, params) -> bool:
        lookback = int(params["lookback_period"])
        if index < lookback or index < 1:
            return False
        price = series[index].close
        prev_price = series[index - 1].close
        supports = [c.low for c in series[index - lookback : index] if c.low < price]
        if not supports or prev_price <= 0:
            return False
        support = max(supports)
        distance = abs(prev_price - support) / support * 100.0
        rise = (price - prev_price) / prev_price * 100.0
        return distance < params["threshold"] and rise > 0.5

    def exit(self, series, index, entry_index, params) -> bool:
        lookback = int(params["lookback_period"])
        price = series[index].close
        resistances = [
            c.high for c in series[max(0, index - lookback) : index] if c.high > price
        ]
        if not resistances:
            return False
        distance = abs(price - min(resistances)) / price * 100.0
        return distance < params["threshold"]


# ── Registry ─────────────────────────────────────────────────────────────


STRATEGY_REGISTRY: dict[str, type] = {
    "ma_cross": MovingAverageCross,
    "rsi_reversal": RsiReversal,
    "macd_histogram": MacdHistogram,
    "support_resistance": SupportResistance,
}


def get_strategy(name: str) -> Strategy:
    """Look up and instantiate a strategy by registry key.

    Raises ``KeyError`` if the strategy name is not registered.
    """
    if name not in STRATEGY_REGISTRY:
        raise KeyError(
            f"Unknown strategy '{name}'. "
            f"Available: {', '.join(STRATEGY_REGISTRY.keys())}"
        )
    return STRATEGY_REGISTRY[name]()
