"""Tests for the grid-search optimizer and the async BacktestService."""

import math
from datetime import datetime, timedelta, timezone

import pytest

from marketlens.analysis.models import CandleData
from marketlens.backtest.engine import BacktestEngine
from marketlens.backtest.models import ParamRange
from marketlens.backtest.optimizer import StrategyOptimizer, build_grid, range_values
from marketlens.backtest.service import BacktestService, resolve_strategy
from marketlens.backtest.strategies import CustomStrategy, MovingAverageCross
from marketlens.config import Config
from marketlens.errors import DataUnavailable, InvalidParameter, OptimizationExhausted


# ── Helpers ──────────────────────────────────────────────────────────────

_T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)
_V_SHAPE = [10, 9, 8, 7, 6, 7, 8, 9, 10, 11]


def _make_candle(i, o, h, l, c, vol=1000):
    return CandleData(time=_T0 + timedelta(days=i), open=o, high=h, low=l, close=c, volume=vol)


def _series(closes):
    return [_make_candle(i, c, c * 1.01, c * 0.99, c) for i, c in enumerate(closes)]


class FakeMarket:
    """Serves a fixed history and records each fetch."""

    def __init__(self, closes):
        self.candles = _series(closes)
        self.history_calls = []

    async def get_history(self, symbol, interval, start, end):
        self.history_calls.append((symbol, interval, start, end))
        return self.candles


# ── Grid ─────────────────────────────────────────────────────────────────


class TestGrid:
    def test_integer_range(self):
        assert range_values("p", ParamRange(5, 15, 5)) == [5, 10, 15]

    def test_float_range(self):
        assert range_values("p", ParamRange(0.1, 0.3, 0.1)) == [0.1, 0.2, 0.3]

    def test_max_not_on_step(self):
        assert range_values("p", ParamRange(1, 10, 4)) == [1, 5, 9]

    def test_single_value(self):
        assert range_values("p", ParamRange(7, 7, 1)) == [7]

    @pytest.mark.parametrize("bounds", [ParamRange(1, 5, 0), ParamRange(1, 5, -1), ParamRange(6, 5, 1)])
    def test_invalid_range(self, bounds):
        with pytest.raises(InvalidParameter, match="'p'"):
            range_values("p", bounds)

    def test_product_order(self):
        grid = build_grid({"a": ParamRange(1, 2, 1), "b": ParamRange(10, 20, 10)})
        assert grid == [
            {"a": 1, "b": 10},
            {"a": 1, "b": 20},
            {"a": 2, "b": 10},
            {"a": 2, "b": 20},
        ]

    def test_empty_ranges(self):
        with pytest.raises(InvalidParameter):
            build_grid({})

    def test_combination_limit(self):
        ranges = {"a": ParamRange(1, 10, 1), "b": ParamRange(1, 10, 1)}
        with pytest.raises(InvalidParameter, match="100 combinations"):
            build_grid(ranges, max_combinations=99)
        assert len(build_grid(ranges, max_combinations=100)) == 100


# ── Optimizer ────────────────────────────────────────────────────────────


class TestStrategyOptimizer:
    def test_single_point_matches_direct_run(self):
        candles = _series(_V_SHAPE)
        strategy = MovingAverageCross()
        ranges = {"fast_period": ParamRange(2, 2, 1), "slow_period": ParamRange(4, 4, 1)}

        result = StrategyOptimizer().optimize(candles, strategy, ranges, 10_000)
        direct = BacktestEngine().run(
            candles, strategy.with_params({"fast_period": 2, "slow_period": 4}), 10_000,
        )

        assert result.best_params == {"fast_period": 2, "slow_period": 4}
        assert result.performance == pytest.approx(direct.performance)
        assert result.result.trades == direct.trades
        assert result.evaluated == 1
        assert result.failed == 0

    def test_picks_highest_performance(self):
        candles = _series([100, 90, 80, 120, 130])
        strategy = CustomStrategy(
            name="enter-at",
            params={"bar": 0},
            entry_rule=lambda series, index, params: index == params["bar"],
        )
        result = StrategyOptimizer().optimize(
            candles, strategy, {"bar": ParamRange(0, 3, 1)}, 1_000,
        )
        # Entering at 80 and riding to 130 is the best point.
        assert result.best_params == {"bar": 2}
        assert result.performance == pytest.approx(62.5)

    def test_ties_keep_first_combination(self):
        candles = _series([100.0] * 10)
        ranges = {"fast_period": ParamRange(2, 4, 1), "slow_period": ParamRange(5, 6, 1)}
        result = StrategyOptimizer().optimize(candles, MovingAverageCross(), ranges)
        assert result.best_params == {"fast_period": 2, "slow_period": 5}
        assert result.performance == 0.0
        assert result.evaluated == 6

    def test_failures_are_counted(self):
        candles = _series([100, 110, 120])

        def _entry(series, index, params):
            if params["bar"] == 1:
                raise RuntimeError("bad combination")
            return index == params["bar"]

        strategy = CustomStrategy(name="flaky", params={"bar": 0}, entry_rule=_entry)
        result = StrategyOptimizer().optimize(
            candles, strategy, {"bar": ParamRange(0, 2, 1)}, 1_000,
        )
        assert result.failed == 1
        assert result.best_params == {"bar": 0}

    def test_all_failing(self):
        def _boom(series, index, params):
            raise RuntimeError("boom")

        strategy = CustomStrategy(name="broken", entry_rule=_boom)
        with pytest.raises(OptimizationExhausted):
            StrategyOptimizer().optimize(
                _series([100, 101]), strategy, {"x": ParamRange(1, 3, 1)},
            )

    def test_thread_pool_matches_sequential(self):
        candles = _series(_V_SHAPE)
        ranges = {"fast_period": ParamRange(1, 3, 1), "slow_period": ParamRange(4, 6, 1)}
        sequential = StrategyOptimizer(max_workers=0).optimize(candles, MovingAverageCross(), ranges)
        pooled = StrategyOptimizer(max_workers=4).optimize(candles, MovingAverageCross(), ranges)
        assert pooled.best_params == sequential.best_params
        assert pooled.performance == pytest.approx(sequential.performance)

    def test_fast_period_past_slow_period(self):
        closes = [100 + 10 * math.sin(i / 5) for i in range(80)]
        ranges = {"fast_period": ParamRange(5, 45, 40), "slow_period": ParamRange(30, 30, 1)}
        result = StrategyOptimizer().optimize(_series(closes), MovingAverageCross(), ranges)
        assert result.evaluated == 2
        assert result.failed == 0

    def test_grid_checked_before_series(self):
        with pytest.raises(InvalidParameter):
            StrategyOptimizer(max_combinations=2).optimize(
                [], MovingAverageCross(), {"fast_period": ParamRange(1, 5, 1)},
            )

    def test_empty_series(self):
        with pytest.raises(DataUnavailable):
            StrategyOptimizer().optimize(
                [], MovingAverageCross(), {"fast_period": ParamRange(1, 2, 1)},
            )


# ── Service ──────────────────────────────────────────────────────────────


class TestResolveStrategy:
    def test_key_with_params(self):
        strategy = resolve_strategy("ma_cross", {"fast_period": 3})
        assert strategy.params["fast_period"] == 3

    def test_unknown_key(self):
        with pytest.raises(InvalidParameter, match="Unknown strategy"):
            resolve_strategy("nope")

    def test_unknown_param(self):
        with pytest.raises(InvalidParameter, match="window"):
            resolve_strategy("ma_cross", {"window": 3})

    def test_passes_strategy_values_through(self):
        strategy = MovingAverageCross()
        assert resolve_strategy(strategy) is strategy


class TestBacktestService:
    _START = datetime(2025, 1, 1, tzinfo=timezone.utc)
    _END = datetime(2025, 2, 1, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_run_backtest(self):
        market = FakeMarket(_V_SHAPE)
        service = BacktestService(Config(initial_capital=2_000), market)
        strategy = resolve_strategy("ma_cross", {"fast_period": 2, "slow_period": 4})
        result = await service.run_backtest("BTCUSDT", strategy, self._START, self._END)
        assert result.initial_capital == 2_000
        assert result.symbol == "BTCUSDT"
        assert result.total_trades == 1
        assert market.history_calls == [("BTCUSDT", "1d", self._START, self._END)]

    @pytest.mark.asyncio
    async def test_registry_key(self):
        service = BacktestService(Config(), FakeMarket([100.0] * 10))
        result = await service.run_backtest(
            "BTCUSDT", "rsi_reversal", self._START, self._END, initial_capital=500,
        )
        assert result.strategy == "RSI Oversold/Overbought"
        assert result.final_capital == 500

    @pytest.mark.asyncio
    async def test_start_after_end(self):
        market = FakeMarket(_V_SHAPE)
        service = BacktestService(Config(), market)
        with pytest.raises(InvalidParameter):
            await service.run_backtest("BTCUSDT", "ma_cross", self._END, self._START)
        assert market.history_calls == []

    @pytest.mark.asyncio
    async def test_unknown_strategy(self):
        service = BacktestService(Config(), FakeMarket(_V_SHAPE))
        with pytest.raises(InvalidParameter):
            await service.run_backtest("BTCUSDT", "nope", self._START, self._END)

    @pytest.mark.asyncio
    async def test_optimize_matches_backtest(self):
        market = FakeMarket(_V_SHAPE)
        service = BacktestService(Config(), market)
        ranges = {"fast_period": ParamRange(2, 2, 1), "slow_period": ParamRange(4, 4, 1)}

        optimized = await service.optimize_strategy(
            "BTCUSDT", "ma_cross", self._START, self._END, ranges,
        )
        direct = await service.run_backtest(
            "BTCUSDT",
            resolve_strategy("ma_cross", optimized.best_params),
            self._START,
            self._END,
        )
        assert optimized.performance == pytest.approx(direct.performance)
        assert optimized.performance == pytest.approx(25.0)

    @pytest.mark.asyncio
    async def test_optimize_rejects_grid_before_fetch(self):
        market = FakeMarket(_V_SHAPE)
        service = BacktestService(Config(max_optimizer_combinations=5), market)
        with pytest.raises(InvalidParameter):
            await service.optimize_strategy(
                "BTCUSDT", "ma_cross", self._START, self._END,
                {"fast_period": ParamRange(1, 10, 1)},
            )
        assert market.history_calls == []
