"""Backtest statistics — pure functions for trade-series and equity analysis."""

import math

from marketlens.backtest.models import Trade


def calculate_stats(
    trades: list[Trade],
    equity_curve: list[float],
    initial_capital: float,
    final_capital: float,
) -> dict:
    """Compute summary statistics for a finished backtest.

    Returns:
        Dict with ``total_trades``, ``winning_trades``, ``losing_trades``,
        ``win_rate`` (fraction), ``profit_factor``, ``max_drawdown`` (%),
        ``performance`` (%), and ``sharpe_ratio``.
    """
    profits = [t.profit for t in trades]
    winners = [p for p in profits if p > 0]
    losers = [p for p in profits if p <= 0]

    total = len(profits)
    gross_profit = sum(winners)
    gross_loss = abs(sum(losers))
    # No losing P&L: report gross profit rather than infinity.
    profit_factor = gross_profit / gross_loss if gross_loss > 0 else gross_profit

    return {
        "total_trades": total,
        "winning_trades": len(winners),
        "losing_trades": len(losers),
        "win_rate": len(winners) / total if total else 0.0,
        "profit_factor": profit_factor,
        "max_drawdown": max_drawdown_pct(equity_curve),
        "performance": (final_capital / initial_capital - 1.0) * 100.0,
        "sharpe_ratio": _sharpe([t.profit_percent / 100.0 for t in trades]),
    }


def max_drawdown_pct(equity_curve: list[float]) -> float:
    """Largest peak-to-trough decline of *equity_curve*, in percent of the peak."""
    peak = 0.0
    max_dd = 0.0
    for value in equity_curve:
        if value > peak:
            peak = value
        if peak > 0:
            dd = (peak - value) / peak * 100.0
            if dd > max_dd:
                max_dd = dd
    return max_dd


# ── Helpers ──────────────────────────────────────────────────────────────


def _sharpe(returns: list[float]) -> float:
    """Annualised Sharpe ratio from per-trade returns.

    Uses sample standard deviation (n − 1).  Returns 0.0 when the series
    has fewer than 2 observations or zero variance.
    """
    n = len(returns)
    if n < 2:
        return 0.0
    mean = sum(returns) / n
    variance = sum((r - mean) ** 2 for r in returns) / (n - 1)
    std = math.sqrt(variance)
    if std == 0:
        return 0.0
    return (mean / std) * math.sqrt(252)
