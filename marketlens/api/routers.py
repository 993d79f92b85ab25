"""Internal API routers — /signals, /backtest, /optimize, /correlation endpoints.

No business logic. Validates request bodies and delegates to the injected
services; ``MarketLensError`` subclasses are mapped to status codes by the
application's exception handler.
"""

import logging
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Query

from marketlens.backtest.models import ParamRange
from marketlens.backtest.service import resolve_strategy
from marketlens.correlation.analyzer import (
    find_diversification_opportunities,
    find_pair_trading_opportunities,
    find_significant_correlations,
)
from marketlens.errors import DataUnavailable, InvalidParameter

logger = logging.getLogger("marketlens.api")
router = APIRouter()

# ── Shared state (set during app startup) ────────────────────────────────

_signal_service = None  # Set via configure_routers()
_backtest_service = None  # Set via configure_routers()
_correlation_analyzer = None  # Set via configure_routers()
_default_timeframe = "DAY"


def configure_routers(
    signal_service=None,
    backtest_service=None,
    correlation_analyzer=None,
    default_timeframe: Optional[str] = None,
) -> None:
    """Inject dependencies from the application startup.

    Args:
        signal_service: A ``SignalService`` (or duck-type for tests).
        backtest_service: A ``BacktestService``.
        correlation_analyzer: A ``CorrelationAnalyzer``.
        default_timeframe: Timeframe used when a request omits one.
    """
    global _signal_service, _backtest_service, _correlation_analyzer, _default_timeframe  # noqa: PLW0603
    _signal_service = signal_service
    _backtest_service = backtest_service
    _correlation_analyzer = correlation_analyzer
    if default_timeframe:
        _default_timeframe = default_timeframe


def _require(service, name: str):
    if service is None:
        raise DataUnavailable(f"{name} is not configured")
    return service


# ── Body parsing ─────────────────────────────────────────────────────────


def _field(body: dict, key: str):
    if key not in body or body[key] in (None, ""):
        raise InvalidParameter(f"Missing required field '{key}'")
    return body[key]


def _parse_date(body: dict, key: str) -> datetime:
    raw = _field(body, key)
    try:
        parsed = datetime.fromisoformat(str(raw))
    except ValueError:
        raise InvalidParameter(f"Field '{key}' must be an ISO date, got '{raw}'") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _int_field(body: dict, key: str, default: int) -> int:
    raw = body.get(key, default)
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise InvalidParameter(f"Field '{key}' must be an integer, got '{raw}'") from None


def _parse_ranges(raw) -> dict[str, ParamRange]:
    if not isinstance(raw, dict):
        raise InvalidParameter("Field 'ranges' must be an object of {min, max, step}")
    ranges: dict[str, ParamRange] = {}
    for name, bounds in raw.items():
        try:
            ranges[name] = ParamRange(
                min=bounds["min"], max=bounds["max"], step=bounds["step"],
            )
        except (KeyError, TypeError):
            raise InvalidParameter(
                f"Range for '{name}' needs numeric min, max and step"
            ) from None
    return ranges


# ── Signals ──────────────────────────────────────────────────────────────


@router.get("/signals/symbol")
async def get_symbol_signal(
    symbol: str = Query(...),
    timeframe: Optional[str] = Query(None),
):
    """Fused trading signal for one symbol."""
    service = _require(_signal_service, "Signal service")
    signal = await service.generate_signal(symbol, timeframe or _default_timeframe)
    return asdict(signal)


@router.get("/signals")
async def get_signals(timeframe: Optional[str] = Query(None)):
    """Top buy and sell signals across the active symbols."""
    service = _require(_signal_service, "Signal service")
    top = await service.generate_signals(timeframe or _default_timeframe)
    return asdict(top)


# ── Backtest / optimize ──────────────────────────────────────────────────


@router.post("/backtest")
async def post_backtest(body: dict):
    """Run one backtest.  Body: symbol, strategy, start, end, optional params,
    initial_capital and interval."""
    service = _require(_backtest_service, "Backtest service")
    strategy = resolve_strategy(_field(body, "strategy"), body.get("params"))
    result = await service.run_backtest(
        symbol=_field(body, "symbol"),
        strategy=strategy,
        start_date=_parse_date(body, "start"),
        end_date=_parse_date(body, "end"),
        initial_capital=body.get("initial_capital"),
        bar_interval=body.get("interval", "1d"),
    )
    return asdict(result)


@router.post("/optimize")
async def post_optimize(body: dict):
    """Grid-search strategy parameters.  Body: symbol, strategy, start, end, ranges."""
    service = _require(_backtest_service, "Backtest service")
    result = await service.optimize_strategy(
        symbol=_field(body, "symbol"),
        strategy=_field(body, "strategy"),
        start_date=_parse_date(body, "start"),
        end_date=_parse_date(body, "end"),
        param_ranges=_parse_ranges(_field(body, "ranges")),
        initial_capital=body.get("initial_capital"),
        bar_interval=body.get("interval", "1d"),
    )
    return asdict(result)


# ── Correlation ──────────────────────────────────────────────────────────


@router.post("/correlation")
async def post_correlation(body: dict):
    """Correlation matrix plus significant, pair-trading and diversification views."""
    analyzer = _require(_correlation_analyzer, "Correlation analyzer")
    symbols = body.get("symbols") or []
    if not isinstance(symbols, list):
        raise InvalidParameter("Field 'symbols' must be a list")
    matrix = await analyzer.calculate_correlation_matrix(
        symbols,
        timeframe=body.get("timeframe", "1d"),
        lookback_days=_int_field(body, "lookback_days", 30),
    )
    return {
        "matrix": asdict(matrix),
        "significant": [asdict(p) for p in find_significant_correlations(matrix)],
        "pair_trading": [asdict(p) for p in find_pair_trading_opportunities(matrix)],
        "diversification": [asdict(p) for p in find_diversification_opportunities(matrix)],
    }
