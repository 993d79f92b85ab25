"""Backtest engine — replays a price series through a strategy bar by bar.

A two-state machine (flat / in position) with at most one open position.
Fills happen at bar closes, the whole current capital is committed to each
trade, and realized P&L compounds.  No real orders are placed.
"""

import logging
import math
from typing import Optional

from marketlens.analysis.models import CandleData
from marketlens.backtest.models import BacktestResult, Trade
from marketlens.backtest.stats import calculate_stats
from marketlens.backtest.strategies import Strategy
from marketlens.errors import DataUnavailable, InvalidParameter

logger = logging.getLogger("marketlens.backtest")

EXIT_SIGNAL = "Exit Signal"
STOP_LOSS = "Stop Loss"
TAKE_PROFIT = "Take Profit"
TIME_LIMIT = "Time Limit"
END_OF_PERIOD = "End of Period"


def validate_series(candles: list[CandleData]) -> None:
    """Raise ``DataUnavailable`` for an empty or malformed series."""
    if not candles:
        raise DataUnavailable("Backtest series is empty")
    for i, candle in enumerate(candles):
        if not math.isfinite(candle.close) or candle.close <= 0:
            raise DataUnavailable(f"Invalid close {candle.close!r} at bar {i}")
        if i and candle.time < candles[i - 1].time:
            raise DataUnavailable(f"Bar {i} is older than bar {i - 1}")


class BacktestEngine:
    """Simulates one strategy over historical candles."""

    # ── Public API ───────────────────────────────────────────────────────

    def run(
        self,
        candles: list[CandleData],
        strategy: Strategy,
        initial_capital: float = 10_000.0,
        symbol: str = "",
    ) -> BacktestResult:
        """Execute a full backtest.

        Exit checks run in a fixed order on every bar after the entry bar
        (exit signal, stop loss, take profit, time limit); the first that
        holds closes the trade at that bar's close.  A position still open
        after the last bar is closed there with ``"End of Period"``.

        Raises ``InvalidParameter`` for a non-positive capital and
        ``DataUnavailable`` for an empty or malformed series.
        """
        if initial_capital <= 0:
            raise InvalidParameter(
                f"initial_capital must be positive, got {initial_capital}"
            )
        validate_series(candles)

        params = dict(strategy.params)
        capital = initial_capital
        equity_curve: list[float] = [initial_capital]
        trades: list[Trade] = []
        entry_index: Optional[int] = None

        for i, candle in enumerate(candles):
            if entry_index is None:
                if strategy.entry(candles, i, params):
                    entry_index = i
                equity_curve.append(capital)
                continue

            change_pct = self._change_pct(strategy, candles[entry_index].close, candle.close)
            reason = self._exit_reason(strategy, candles, i, entry_index, params, change_pct)
            if reason is None:
                equity_curve.append(capital * (1 + change_pct / 100.0))
                continue

            trade = self._close(strategy, candles, entry_index, i, capital, len(trades) + 1, reason)
            capital += trade.profit
            trades.append(trade)
            equity_curve.append(capital)
            entry_index = None

        if entry_index is not None:
            # The last curve point is already marked to market at this close.
            last = len(candles) - 1
            trade = self._close(strategy, candles, entry_index, last, capital, len(trades) + 1, END_OF_PERIOD)
            capital += trade.profit
            trades.append(trade)
            equity_curve[-1] = capital

        stats = calculate_stats(trades, equity_curve, initial_capital, capital)
        logger.info(
            "Backtest %s %s: %d trades, performance %.2f%%, max drawdown %.2f%%",
            symbol or "-", strategy.name, stats["total_trades"],
            stats["performance"], stats["max_drawdown"],
        )

        return BacktestResult(
            symbol=symbol,
            strategy=strategy.name,
            start=candles[0].time,
            end=candles[-1].time,
            initial_capital=initial_capital,
            final_capital=capital,
            trades=trades,
            equity_curve=equity_curve,
            returns=[t.profit_percent / 100.0 for t in trades],
            **stats,
        )

    # ── Helpers ──────────────────────────────────────────────────────────

    @staticmethod
    def _change_pct(strategy: Strategy, entry_price: float, price: float) -> float:
        """Unrealized return of the open position, in percent."""
        if strategy.direction == "sell":
            return (entry_price - price) / entry_price * 100.0
        return (price - entry_price) / entry_price * 100.0

    @staticmethod
    def _exit_reason(
        strategy: Strategy,
        candles: list[CandleData],
        index: int,
        entry_index: int,
        params: dict,
        change_pct: float,
    ) -> Optional[str]:
        """First exit condition that holds, or ``None``."""
        if strategy.exit(candles, index, entry_index, params):
            return EXIT_SIGNAL
        if strategy.stop_loss_pct is not None and change_pct <= -strategy.stop_loss_pct:
            return STOP_LOSS
        if strategy.take_profit_pct is not None and change_pct >= strategy.take_profit_pct:
            return TAKE_PROFIT
        if (
            strategy.time_limit_bars is not None
            and index - entry_index >= strategy.time_limit_bars
        ):
            return TIME_LIMIT
        return None

    @classmethod
    def _close(
        cls,
        strategy: Strategy,
        candles: list[CandleData],
        entry_index: int,
        exit_index: int,
        capital: float,
        trade_id: int,
        reason: str,
    ) -> Trade:
        entry, exit_ = candles[entry_index], candles[exit_index]
        change_pct = cls._change_pct(strategy, entry.close, exit_.close)
        return Trade(
            id=trade_id,
            direction=strategy.direction,
            entry_time=entry.time,
            entry_price=entry.close,
            exit_time=exit_.time,
            exit_price=exit_.close,
            profit=capital * change_pct / 100.0,
            profit_percent=change_pct,
            duration=exit_index - entry_index,
            reason=reason,
        )
