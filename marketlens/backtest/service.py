"""BacktestService — fetches history once and runs backtests or optimizations."""

import logging
from datetime import datetime
from typing import Optional, Union

from marketlens.analysis.models import CandleData
from marketlens.backtest.engine import BacktestEngine
from marketlens.backtest.models import BacktestResult, OptimizationResult, ParamRange
from marketlens.backtest.optimizer import StrategyOptimizer, build_grid
from marketlens.backtest.strategies import Strategy, get_strategy
from marketlens.config import Config
from marketlens.errors import InvalidParameter
from marketlens.providers.base import MarketDataProvider

logger = logging.getLogger("marketlens.backtest")


def resolve_strategy(
    strategy: Union[str, Strategy],
    params: Optional[dict[str, float]] = None,
) -> Strategy:
    """Accept a strategy value or a registry key, with optional overrides.

    Raises ``InvalidParameter`` for an unknown key or unknown parameter names.
    """
    if isinstance(strategy, str):
        try:
            strategy = get_strategy(strategy)
        except KeyError as exc:
            raise InvalidParameter(str(exc.args[0])) from exc
    if params:
        unknown = set(params) - set(strategy.params)
        if unknown:
            raise InvalidParameter(
                f"Unknown parameter(s) for {strategy.name}: {', '.join(sorted(unknown))}"
            )
        strategy = strategy.with_params(params)
    return strategy


class BacktestService:
    """Async façade over the engine and optimizer.

    Args:
        config: Global ``Config`` (initial capital, grid limits, workers).
        market: Any ``MarketDataProvider`` supplying ``get_history``.
    """

    def __init__(self, config: Config, market: MarketDataProvider) -> None:
        self._config = config
        self._market = market
        self._engine = BacktestEngine()
        self._optimizer = StrategyOptimizer(
            max_combinations=config.max_optimizer_combinations,
            max_workers=config.optimizer_workers,
        )

    async def _history(
        self, symbol: str, start: datetime, end: datetime, interval: str,
    ) -> list[CandleData]:
        if start >= end:
            raise InvalidParameter(f"start {start} must be before end {end}")
        candles = await self._market.get_history(symbol, interval, start, end)
        logger.info("Loaded %d %s bars for %s", len(candles), interval, symbol)
        return candles

    async def run_backtest(
        self,
        symbol: str,
        strategy: Union[str, Strategy],
        start_date: datetime,
        end_date: datetime,
        initial_capital: Optional[float] = None,
        bar_interval: str = "1d",
    ) -> BacktestResult:
        """Backtest *strategy* on *symbol* between the two dates."""
        strategy = resolve_strategy(strategy)
        capital = initial_capital if initial_capital is not None else self._config.initial_capital
        if capital <= 0:
            raise InvalidParameter(f"initial_capital must be positive, got {capital}")
        candles = await self._history(symbol, start_date, end_date, bar_interval)
        return self._engine.run(candles, strategy, capital, symbol)

    async def optimize_strategy(
        self,
        symbol: str,
        strategy: Union[str, Strategy],
        start_date: datetime,
        end_date: datetime,
        param_ranges: dict[str, ParamRange],
        initial_capital: Optional[float] = None,
        bar_interval: str = "1d",
    ) -> OptimizationResult:
        """Grid-search *param_ranges* for *strategy* on one history fetch.

        The grid is validated before anything is fetched.
        """
        strategy = resolve_strategy(strategy)
        build_grid(param_ranges, self._config.max_optimizer_combinations)
        capital = initial_capital if initial_capital is not None else self._config.initial_capital
        if capital <= 0:
            raise InvalidParameter(f"initial_capital must be positive, got {capital}")
        candles = await self._history(symbol, start_date, end_date, bar_interval)
        return self._optimizer.optimize(candles, strategy, param_ranges, capital, symbol)
