"""Backtest data models — trades, run results and optimization output."""

from dataclasses import dataclass
from datetime import datetime
from typing import Literal


@dataclass(frozen=True)
class Trade:
    """A closed simulated trade.  Prices are bar closes."""

    id: int
    direction: Literal["buy", "sell"]
    entry_time: datetime
    entry_price: float
    exit_time: datetime
    exit_price: float
    profit: float
    profit_percent: float
    duration: int  # bars held
    reason: str


@dataclass(frozen=True)
class BacktestResult:
    symbol: str
    strategy: str
    start: datetime
    end: datetime
    initial_capital: float
    final_capital: float
    trades: list[Trade]
    equity_curve: list[float]  # one point per bar plus the starting capital
    returns: list[float]  # per-trade fractional returns
    total_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: float  # fraction in [0, 1]
    profit_factor: float
    max_drawdown: float  # percent
    performance: float  # percent
    sharpe_ratio: float = 0.0


@dataclass(frozen=True)
class ParamRange:
    """Inclusive ``min..max`` grid with a positive ``step``."""

    min: float
    max: float
    step: float


@dataclass(frozen=True)
class OptimizationResult:
    best_params: dict[str, float]
    performance: float
    result: BacktestResult
    evaluated: int = 0
    failed: int = 0
