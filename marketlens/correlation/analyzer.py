"""Cross-asset correlation — Pearson matrix over returns and derived pair views.

The math is pure and works on plain price lists; ``CorrelationAnalyzer``
adds the best-effort fetching around it.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Literal, Optional

import numpy as np

from marketlens.errors import DataUnavailable, InvalidParameter
from marketlens.providers.base import MarketDataProvider

logger = logging.getLogger("marketlens.correlation")

SIGNIFICANT_THRESHOLD = 0.7
PAIR_TRADING_THRESHOLD = 0.8
DIVERSIFICATION_THRESHOLD = 0.3
ZSCORE_SIGNAL = 2.0
ZSCORE_REPORT = 1.5


@dataclass(frozen=True)
class CorrelationMatrix:
    symbols: list[str]
    matrix: list[list[float]]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def get(self, a: str, b: str) -> float:
        return self.matrix[self.symbols.index(a)][self.symbols.index(b)]


@dataclass(frozen=True)
class CorrelationPair:
    pair: tuple[str, str]
    correlation: float
    type: Literal["positive", "negative", "neutral"]
    strength: Literal["strong", "moderate", "weak"]


@dataclass(frozen=True)
class DivergentPair:
    pair: tuple[str, str]
    correlation: float
    zscore: float
    spread_mean: float
    spread_std: float
    current_spread: float
    signal: Literal["buy", "sell", "neutral"]


# ── Statistics ───────────────────────────────────────────────────────────


def calculate_returns(prices: list[float]) -> list[float]:
    """Simple period-over-period returns; a zero base yields a 0 return."""
    return [
        (prices[i] - prices[i - 1]) / prices[i - 1] if prices[i - 1] else 0.0
        for i in range(1, len(prices))
    ]


def pearson_correlation(x: list[float], y: list[float]) -> float:
    """Pearson r of two equal-length series.

    Returns 0.0 when either series has no variance or fewer than two
    points, never NaN.
    """
    if len(x) != len(y):
        raise InvalidParameter(f"Series lengths differ: {len(x)} vs {len(y)}")
    if len(x) < 2:
        return 0.0
    xs = np.asarray(x, dtype=float)
    ys = np.asarray(y, dtype=float)
    x_dev = xs - xs.mean()
    y_dev = ys - ys.mean()
    denom = np.sqrt((x_dev ** 2).sum()) * np.sqrt((y_dev ** 2).sum())
    if denom == 0 or not np.isfinite(denom):
        return 0.0
    return float(np.clip((x_dev * y_dev).sum() / denom, -1.0, 1.0))


def build_correlation_matrix(prices_by_symbol: dict[str, list[float]]) -> CorrelationMatrix:
    """Symmetric correlation matrix of returns with a unit diagonal.

    Series are trimmed to their most recent common length first.
    """
    symbols = list(prices_by_symbol)
    if not symbols:
        raise InvalidParameter("At least one symbol is required")

    length = min(len(p) for p in prices_by_symbol.values())
    returns = {
        s: calculate_returns(prices_by_symbol[s][-length:]) if length else []
        for s in symbols
    }

    n = len(symbols)
    matrix = [[1.0 if i == j else 0.0 for j in range(n)] for i in range(n)]
    for i in range(n):
        for j in range(i + 1, n):
            r = pearson_correlation(returns[symbols[i]], returns[symbols[j]])
            matrix[i][j] = matrix[j][i] = r
    return CorrelationMatrix(symbols=symbols, matrix=matrix)


def _strength(abs_r: float) -> str:
    if abs_r > 0.8:
        return "strong"
    if abs_r > 0.5:
        return "moderate"
    return "weak"


def _pairs(matrix: CorrelationMatrix):
    for i in range(len(matrix.symbols)):
        for j in range(i + 1, len(matrix.symbols)):
            yield (matrix.symbols[i], matrix.symbols[j]), matrix.matrix[i][j]


# ── Derived views ────────────────────────────────────────────────────────


def find_significant_correlations(
    matrix: CorrelationMatrix,
    threshold: float = SIGNIFICANT_THRESHOLD,
) -> list[CorrelationPair]:
    """Pairs with ``|r| >= threshold``, strongest first."""
    result = [
        CorrelationPair(
            pair=pair,
            correlation=r,
            type="positive" if r > 0 else "negative",
            strength=_strength(abs(r)),
        )
        for pair, r in _pairs(matrix)
        if abs(r) >= threshold
    ]
    return sorted(result, key=lambda p: abs(p.correlation), reverse=True)


def find_pair_trading_opportunities(matrix: CorrelationMatrix) -> list[CorrelationPair]:
    """Strongly positively correlated pairs (``r >= 0.8``)."""
    return [
        p for p in find_significant_correlations(matrix, PAIR_TRADING_THRESHOLD)
        if p.type == "positive"
    ]


def find_diversification_opportunities(matrix: CorrelationMatrix) -> list[CorrelationPair]:
    """Weakly correlated pairs (``|r| < 0.3``), least correlated first."""
    result = []
    for pair, r in _pairs(matrix):
        if abs(r) < DIVERSIFICATION_THRESHOLD:
            kind = "positive" if r > 0 else "negative" if r < 0 else "neutral"
            result.append(CorrelationPair(pair, r, kind, "weak"))
    return sorted(result, key=lambda p: abs(p.correlation))


# ── Mean reversion ───────────────────────────────────────────────────────


def normalize(values: list[float]) -> list[float]:
    """Min-max scale to ``[0, 1]``; a flat series maps to zeros."""
    if not values:
        return []
    low, high = min(values), max(values)
    if high == low:
        return [0.0] * len(values)
    return [(v - low) / (high - low) for v in values]


def evaluate_pair_divergence(
    pair: tuple[str, str],
    prices_a: list[float],
    prices_b: list[float],
    correlation: float,
) -> Optional[DivergentPair]:
    """Z-score of the latest normalized spread between two price series.

    ``z > 2`` is a sell of the first leg, ``z < −2`` a buy.  Returns
    ``None`` unless there is a signal or ``|z| > 1.5``.  A spread with no
    variance has ``z = 0``.
    """
    length = min(len(prices_a), len(prices_b))
    if length == 0:
        return None
    spread = np.asarray(normalize(prices_a[-length:])) - np.asarray(normalize(prices_b[-length:]))
    mean = float(spread.mean())
    std = float(spread.std())  # population
    current = float(spread[-1])
    zscore = (current - mean) / std if std > 0 else 0.0

    if zscore > ZSCORE_SIGNAL:
        signal = "sell"
    elif zscore < -ZSCORE_SIGNAL:
        signal = "buy"
    else:
        signal = "neutral"

    if signal == "neutral" and abs(zscore) <= ZSCORE_REPORT:
        return None
    return DivergentPair(pair, correlation, zscore, mean, std, current, signal)


# ── Service ──────────────────────────────────────────────────────────────


class CorrelationAnalyzer:
    """Fetches closes and runs the correlation views.

    Args:
        market: Any ``MarketDataProvider`` supplying ``get_history``.
    """

    def __init__(self, market: MarketDataProvider) -> None:
        self._market = market

    async def _closes(
        self, symbols: list[str], timeframe: str, lookback_days: int,
    ) -> dict[str, list[float]]:
        """Closes per symbol; failed or empty symbols are logged and left out."""
        end = datetime.now(timezone.utc)
        start = end - timedelta(days=lookback_days)
        results = await asyncio.gather(
            *(self._market.get_history(s, timeframe, start, end) for s in symbols),
            return_exceptions=True,
        )
        closes: dict[str, list[float]] = {}
        for symbol, result in zip(symbols, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning("Excluding %s from correlation: %s", symbol, result)
                continue
            if not result:
                logger.warning("Excluding %s from correlation: no bars", symbol)
                continue
            closes[symbol] = [c.close for c in result]
        return closes

    async def calculate_correlation_matrix(
        self,
        symbols: list[str],
        timeframe: str = "1d",
        lookback_days: int = 30,
    ) -> CorrelationMatrix:
        """Correlation matrix for every symbol whose history could be fetched.

        Raises ``InvalidParameter`` for an empty symbol list or a
        non-positive lookback, ``DataUnavailable`` when no symbol survives.
        """
        if not symbols:
            raise InvalidParameter("At least one symbol is required")
        if lookback_days <= 0:
            raise InvalidParameter(f"lookback_days must be positive, got {lookback_days}")

        closes = await self._closes(list(dict.fromkeys(symbols)), timeframe, lookback_days)
        if not closes:
            raise DataUnavailable(f"No price history for any of {', '.join(symbols)}")
        return build_correlation_matrix(closes)

    async def find_divergent_pairs(
        self,
        matrix: CorrelationMatrix,
        lookback_days: int = 30,
        timeframe: str = "1d",
    ) -> list[DivergentPair]:
        """Mean-reversion candidates among the pair-trading pairs, largest |z| first."""
        result: list[DivergentPair] = []
        for candidate in find_pair_trading_opportunities(matrix):
            closes = await self._closes(list(candidate.pair), timeframe, lookback_days)
            if len(closes) < 2:
                logger.warning("Skipping pair %s-%s: history unavailable", *candidate.pair)
                continue
            a, b = candidate.pair
            divergence = evaluate_pair_divergence(
                candidate.pair, closes[a], closes[b], candidate.correlation,
            )
            if divergence is not None:
                result.append(divergence)
        return sorted(result, key=lambda d: abs(d.zscore), reverse=True)
