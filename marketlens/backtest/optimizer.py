"""Strategy optimizer — exhaustive grid search over strategy parameters.

Every point of the Cartesian product of the parameter ranges is backtested
independently; the one with the highest ``performance`` wins.  Ties keep
the earliest combination in iteration order, which follows the order the
ranges were given in.
"""

import itertools
import logging
from concurrent.futures import ThreadPoolExecutor

from marketlens.analysis.models import CandleData
from marketlens.backtest.engine import BacktestEngine, validate_series
from marketlens.backtest.models import OptimizationResult, ParamRange
from marketlens.backtest.strategies import Strategy
from marketlens.errors import InvalidParameter, OptimizationExhausted

logger = logging.getLogger("marketlens.backtest")

DEFAULT_MAX_COMBINATIONS = 10_000


def range_values(name: str, bounds: ParamRange) -> list[float]:
    """Inclusive grid ``min, min + step, ... <= max``.

    Values stay ``int`` when all three bounds are integers.  Raises
    ``InvalidParameter`` for a non-positive step or ``min > max``.
    """
    if bounds.step <= 0:
        raise InvalidParameter(f"Parameter '{name}': step must be positive, got {bounds.step}")
    if bounds.min > bounds.max:
        raise InvalidParameter(
            f"Parameter '{name}': min {bounds.min} is greater than max {bounds.max}"
        )

    count = int((bounds.max - bounds.min) / bounds.step + 1e-9) + 1
    if all(float(v).is_integer() for v in (bounds.min, bounds.max, bounds.step)):
        return [int(bounds.min) + k * int(bounds.step) for k in range(count)]
    return [round(bounds.min + k * bounds.step, 10) for k in range(count)]


def build_grid(
    param_ranges: dict[str, ParamRange],
    max_combinations: int = DEFAULT_MAX_COMBINATIONS,
) -> list[dict[str, float]]:
    """Expand *param_ranges* into the ordered list of parameter dicts.

    Raises ``InvalidParameter`` for an empty mapping, an invalid range, or
    a grid larger than *max_combinations*.
    """
    if not param_ranges:
        raise InvalidParameter("At least one parameter range is required")

    names = list(param_ranges)
    axes = [range_values(name, param_ranges[name]) for name in names]

    total = 1
    for axis in axes:
        total *= len(axis)
    if total > max_combinations:
        raise InvalidParameter(
            f"Parameter grid has {total} combinations, limit is {max_combinations}"
        )

    return [dict(zip(names, combo)) for combo in itertools.product(*axes)]


class StrategyOptimizer:
    """Grid-search driver around ``BacktestEngine``.

    Args:
        max_combinations: Upper bound on the grid size.
        max_workers: Run combinations on a thread pool of this size;
            ``0`` or ``1`` runs them sequentially.
    """

    def __init__(
        self,
        max_combinations: int = DEFAULT_MAX_COMBINATIONS,
        max_workers: int = 0,
    ) -> None:
        self._max_combinations = max_combinations
        self._max_workers = max_workers
        self._engine = BacktestEngine()

    def optimize(
        self,
        candles: list[CandleData],
        strategy: Strategy,
        param_ranges: dict[str, ParamRange],
        initial_capital: float = 10_000.0,
        symbol: str = "",
    ) -> OptimizationResult:
        """Backtest every grid point and return the best.

        Raises ``InvalidParameter`` for a bad grid, ``DataUnavailable`` for a
        bad series, and ``OptimizationExhausted`` when every point fails.
        """
        grid = build_grid(param_ranges, self._max_combinations)
        validate_series(candles)

        def _run(params: dict[str, float]):
            return self._engine.run(
                candles, strategy.with_params(params), initial_capital, symbol,
            )

        if self._max_workers > 1 and len(grid) > 1:
            with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
                futures = [pool.submit(_run, params) for params in grid]
                outcomes = []
                for future in futures:
                    try:
                        outcomes.append(future.result())
                    except Exception as exc:
                        outcomes.append(exc)
        else:
            outcomes = []
            for params in grid:
                try:
                    outcomes.append(_run(params))
                except Exception as exc:
                    outcomes.append(exc)

        best = None
        best_params: dict[str, float] = {}
        failed = 0
        for params, outcome in zip(grid, outcomes):
            if isinstance(outcome, Exception):
                failed += 1
                logger.warning("Combination %s failed: %s", params, outcome)
                continue
            if best is None or outcome.performance > best.performance:
                best, best_params = outcome, params

        if best is None:
            raise OptimizationExhausted(
                f"All {len(grid)} parameter combinations failed for {strategy.name}"
            )

        logger.info(
            "Optimized %s over %d combinations (%d failed): best %s → %.2f%%",
            strategy.name, len(grid), failed, best_params, best.performance,
        )
        return OptimizationResult(
            best_params=best_params,
            performance=best.performance,
            result=best,
            evaluated=len(grid),
            failed=failed,
        )
