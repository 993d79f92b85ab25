"""Tests for the internal API — routes, body validation and error mapping."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

from fastapi.testclient import TestClient

from marketlens.analysis.indicators import analyze_technical_signals
from marketlens.analysis.models import CandleData
from marketlens.api.routers import configure_routers
from marketlens.backtest.engine import BacktestEngine
from marketlens.backtest.models import OptimizationResult, ParamRange
from marketlens.backtest.strategies import get_strategy
from marketlens.correlation.analyzer import CorrelationMatrix
from marketlens.errors import DataUnavailable, InvalidParameter, OptimizationExhausted
from marketlens.main import app
from marketlens.signals.models import TopSignals, TradingSignal

client = TestClient(app)


# ── Helpers ──────────────────────────────────────────────────────────────

_T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


def _make_signal(symbol="BTCUSDT", direction="buy", confidence=0.75):
    return TradingSignal(
        symbol=symbol,
        direction=direction,
        confidence=confidence,
        price=65000.0,
        price_change_24h=1.5,
        volume_24h=1200.0,
        quote_volume=78_000_000.0,
        timestamp=_T0,
        reasons=["Indicator vote buy (4/6)"],
        technical=analyze_technical_signals([]),
    )


def _make_result():
    candles = [
        CandleData(time=_T0 + timedelta(days=i), open=100, high=101, low=99, close=100, volume=1)
        for i in range(10)
    ]
    return BacktestEngine().run(candles, get_strategy("ma_cross"), 10_000, "BTCUSDT")


def _make_signal_service(signal=None, top=None, error=None):
    service = AsyncMock()
    if error is not None:
        service.generate_signal.side_effect = error
        service.generate_signals.side_effect = error
    service.generate_signal.return_value = signal or _make_signal()
    service.generate_signals.return_value = top or TopSignals([_make_signal()], [])
    return service


def _backtest_body(**overrides):
    body = {
        "symbol": "BTCUSDT",
        "strategy": "ma_cross",
        "start": "2025-01-01",
        "end": "2025-03-01",
    }
    body.update(overrides)
    return body


# ── Health ───────────────────────────────────────────────────────────────


class TestHealth:
    def test_health(self):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


# ── Signals ──────────────────────────────────────────────────────────────


class TestSignalEndpoints:
    def test_symbol_signal(self):
        service = _make_signal_service()
        configure_routers(signal_service=service)
        resp = client.get("/signals/symbol", params={"symbol": "BTCUSDT"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["symbol"] == "BTCUSDT"
        assert data["direction"] == "buy"
        assert data["confidence"] == 0.75
        assert data["reasons"] == ["Indicator vote buy (4/6)"]
        assert "rsi" in data["technical"]
        service.generate_signal.assert_awaited_once_with("BTCUSDT", "DAY")

    def test_symbol_signal_timeframe(self):
        service = _make_signal_service()
        configure_routers(signal_service=service)
        client.get("/signals/symbol", params={"symbol": "ETHUSDT", "timeframe": "HOUR"})
        service.generate_signal.assert_awaited_once_with("ETHUSDT", "HOUR")

    def test_symbol_required(self):
        configure_routers(signal_service=_make_signal_service())
        assert client.get("/signals/symbol").status_code == 422

    def test_top_signals(self):
        service = _make_signal_service()
        configure_routers(signal_service=service)
        resp = client.get("/signals", params={"timeframe": "WEEK"})
        assert resp.status_code == 200
        data = resp.json()
        assert len(data["buy_signals"]) == 1
        assert data["sell_signals"] == []
        service.generate_signals.assert_awaited_once_with("WEEK")

    def test_invalid_timeframe_is_400(self):
        service = _make_signal_service(error=InvalidParameter("Unsupported timeframe 'YEAR'"))
        configure_routers(signal_service=service)
        resp = client.get("/signals/symbol", params={"symbol": "BTCUSDT", "timeframe": "YEAR"})
        assert resp.status_code == 400
        assert "YEAR" in resp.json()["error"]

    def test_data_unavailable_is_503(self):
        service = _make_signal_service(error=DataUnavailable("Binance down"))
        configure_routers(signal_service=service)
        resp = client.get("/signals")
        assert resp.status_code == 503
        assert resp.json() == {"error": "Binance down"}

    def test_not_configured_is_503(self):
        configure_routers()
        assert client.get("/signals").status_code == 503


# ── Backtest / optimize ──────────────────────────────────────────────────


class TestBacktestEndpoints:
    def test_backtest(self):
        service = AsyncMock()
        service.run_backtest.return_value = _make_result()
        configure_routers(backtest_service=service)

        resp = client.post("/backtest", json=_backtest_body(params={"fast_period": 5}))

        assert resp.status_code == 200
        data = resp.json()
        assert data["symbol"] == "BTCUSDT"
        assert data["total_trades"] == 0
        assert len(data["equity_curve"]) == 11
        kwargs = service.run_backtest.call_args.kwargs
        assert kwargs["strategy"].params["fast_period"] == 5
        assert kwargs["start_date"] == datetime(2025, 1, 1, tzinfo=timezone.utc)
        assert kwargs["bar_interval"] == "1d"

    def test_missing_field(self):
        configure_routers(backtest_service=AsyncMock())
        body = _backtest_body()
        del body["symbol"]
        resp = client.post("/backtest", json=body)
        assert resp.status_code == 400
        assert "symbol" in resp.json()["error"]

    def test_bad_date(self):
        configure_routers(backtest_service=AsyncMock())
        resp = client.post("/backtest", json=_backtest_body(start="last tuesday"))
        assert resp.status_code == 400

    def test_unknown_strategy(self):
        service = AsyncMock()
        configure_routers(backtest_service=service)
        resp = client.post("/backtest", json=_backtest_body(strategy="martingale"))
        assert resp.status_code == 400
        service.run_backtest.assert_not_awaited()

    def test_optimize(self):
        result = _make_result()
        service = AsyncMock()
        service.optimize_strategy.return_value = OptimizationResult(
            best_params={"fast_period": 2}, performance=0.0, result=result, evaluated=3,
        )
        configure_routers(backtest_service=service)

        resp = client.post(
            "/optimize",
            json=_backtest_body(ranges={"fast_period": {"min": 2, "max": 4, "step": 1}}),
        )

        assert resp.status_code == 200
        assert resp.json()["best_params"] == {"fast_period": 2}
        kwargs = service.optimize_strategy.call_args.kwargs
        assert kwargs["param_ranges"] == {"fast_period": ParamRange(2, 4, 1)}

    def test_optimize_bad_ranges(self):
        configure_routers(backtest_service=AsyncMock())
        resp = client.post(
            "/optimize", json=_backtest_body(ranges={"fast_period": {"min": 2}}),
        )
        assert resp.status_code == 400

    def test_optimize_exhausted_is_422(self):
        service = AsyncMock()
        service.optimize_strategy.side_effect = OptimizationExhausted("All 3 failed")
        configure_routers(backtest_service=service)
        resp = client.post(
            "/optimize",
            json=_backtest_body(ranges={"fast_period": {"min": 2, "max": 4, "step": 1}}),
        )
        assert resp.status_code == 422
        assert resp.json() == {"error": "All 3 failed"}


# ── Correlation ──────────────────────────────────────────────────────────


class TestCorrelationEndpoint:
    def test_correlation(self):
        analyzer = AsyncMock()
        analyzer.calculate_correlation_matrix.return_value = CorrelationMatrix(
            symbols=["BTCUSDT", "ETHUSDT", "DOGEUSDT"],
            matrix=[[1.0, 0.9, 0.1], [0.9, 1.0, 0.2], [0.1, 0.2, 1.0]],
            timestamp=_T0,
        )
        configure_routers(correlation_analyzer=analyzer)

        resp = client.post(
            "/correlation",
            json={"symbols": ["BTCUSDT", "ETHUSDT", "DOGEUSDT"], "lookback_days": 14},
        )

        assert resp.status_code == 200
        data = resp.json()
        assert data["matrix"]["symbols"] == ["BTCUSDT", "ETHUSDT", "DOGEUSDT"]
        assert [p["pair"] for p in data["significant"]] == [["BTCUSDT", "ETHUSDT"]]
        assert [p["pair"] for p in data["pair_trading"]] == [["BTCUSDT", "ETHUSDT"]]
        assert len(data["diversification"]) == 2
        analyzer.calculate_correlation_matrix.assert_awaited_once_with(
            ["BTCUSDT", "ETHUSDT", "DOGEUSDT"], timeframe="1d", lookback_days=14,
        )

    def test_symbols_must_be_list(self):
        configure_routers(correlation_analyzer=AsyncMock())
        resp = client.post("/correlation", json={"symbols": "BTCUSDT"})
        assert resp.status_code == 400

    def test_bad_lookback(self):
        configure_routers(correlation_analyzer=AsyncMock())
        resp = client.post("/correlation", json={"symbols": ["A"], "lookback_days": "month"})
        assert resp.status_code == 400
