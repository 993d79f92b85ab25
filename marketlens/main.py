"""MarketLens — application entry point.

Boots the FastAPI internal server and provides the CLI entry point for
serve, signals, backtest and correlation modes.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from marketlens.api.routers import router
from marketlens.errors import (
    DataUnavailable,
    InvalidParameter,
    MarketLensError,
    OptimizationExhausted,
)

app = FastAPI(title="MarketLens Internal API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("marketlens")

_ERROR_STATUS: dict[type, int] = {
    InvalidParameter: 400,
    OptimizationExhausted: 422,
    DataUnavailable: 503,
}


@app.exception_handler(MarketLensError)
async def handle_marketlens_error(request: Request, exc: MarketLensError):
    """Map the error taxonomy onto HTTP status codes."""
    status = next(
        (code for kind, code in _ERROR_STATUS.items() if isinstance(exc, kind)), 500,
    )
    if status >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content={"error": str(exc)})


@app.get("/health")
async def health():
    """Liveness probe."""
    return {"status": "ok"}


def build_services(config):
    """Wire providers and services from *config*.

    Returns ``(signal_service, backtest_service, correlation_analyzer)``.
    News sentiment is only enabled when a Finnhub key is configured.
    """
    from marketlens.backtest.service import BacktestService
    from marketlens.correlation.analyzer import CorrelationAnalyzer
    from marketlens.providers.binance_client import BinanceClient
    from marketlens.providers.news_sentiment import NewsSentimentClient
    from marketlens.signals.generator import SignalService

    market = BinanceClient(config)
    sentiment = NewsSentimentClient(config) if config.finnhub_api_key else None
    if sentiment is None:
        logger.info("FINNHUB_API_KEY not set, news sentiment disabled.")

    return (
        SignalService(config, market, sentiment),
        BacktestService(config, market),
        CorrelationAnalyzer(market),
    )


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli() -> None:
    """Parse CLI arguments and dispatch to the appropriate mode."""
    import argparse
    import asyncio
    import sys

    from marketlens.api.routers import configure_routers
    from marketlens.config import load_config

    parser = argparse.ArgumentParser(description="MarketLens market analysis engine")
    parser.add_argument(
        "--mode",
        choices=["serve", "signals", "signal", "backtest", "correlation"],
        default="serve",
        help="Run mode (default: serve)",
    )
    parser.add_argument("--symbol", help="Symbol, e.g. BTCUSDT")
    parser.add_argument("--symbols", help="Comma-separated symbols for correlation")
    parser.add_argument("--timeframe", help="HOUR, DAY, WEEK or MONTH")
    parser.add_argument("--strategy", default="ma_cross", help="Backtest strategy key")
    parser.add_argument("--start", help="Backtest start date (YYYY-MM-DD)")
    parser.add_argument("--end", help="Backtest end date (YYYY-MM-DD)")
    parser.add_argument("--interval", default="1d", help="Bar interval (default: 1d)")
    parser.add_argument("--days", type=int, default=30, help="Correlation lookback days")
    args = parser.parse_args()

    config = load_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    signal_service, backtest_service, analyzer = build_services(config)
    timeframe = args.timeframe or config.default_timeframe

    try:
        if args.mode == "serve":
            configure_routers(
                signal_service=signal_service,
                backtest_service=backtest_service,
                correlation_analyzer=analyzer,
                default_timeframe=config.default_timeframe,
            )
            _serve(config.api_port)
        elif args.mode == "signal":
            if not args.symbol:
                parser.error("--symbol is required for signal mode")
            asyncio.run(_print_signal(signal_service, args.symbol, timeframe))
        elif args.mode == "signals":
            asyncio.run(_print_signals(signal_service, timeframe))
        elif args.mode == "backtest":
            if not (args.symbol and args.start and args.end):
                parser.error("--symbol, --start and --end are required for backtest mode")
            asyncio.run(_run_backtest(backtest_service, args))
        else:
            if not args.symbols:
                parser.error("--symbols is required for correlation mode")
            asyncio.run(_run_correlation(analyzer, args.symbols.split(","), args))
    except MarketLensError as exc:
        logger.error("%s: %s", type(exc).__name__, exc)
        sys.exit(1)


def _serve(port: int) -> None:
    import uvicorn

    logger.info("Starting MarketLens API on port %d", port)
    uvicorn.run(app, host="0.0.0.0", port=port, log_level="info")


async def _print_signal(service, symbol: str, timeframe: str) -> None:
    signal = await service.generate_signal(symbol, timeframe)
    logger.info(
        "%s: %s @ %.4f, confidence %.0f%%",
        signal.symbol, signal.direction.upper(), signal.price, signal.confidence * 100,
    )
    for reason in signal.reasons:
        logger.info("  - %s", reason)


async def _print_signals(service, timeframe: str) -> None:
    top = await service.generate_signals(timeframe)
    for label, signals in (("BUY", top.buy_signals), ("SELL", top.sell_signals)):
        for s in signals:
            logger.info(
                "%s %-12s confidence %.0f%%  price %.4f  (%d reasons)",
                label, s.symbol, s.confidence * 100, s.price, len(s.reasons),
            )


async def _run_backtest(service, args) -> None:
    from datetime import datetime, timezone

    start = datetime.fromisoformat(args.start).replace(tzinfo=timezone.utc)
    end = datetime.fromisoformat(args.end).replace(tzinfo=timezone.utc)
    result = await service.run_backtest(
        args.symbol, args.strategy, start, end, bar_interval=args.interval,
    )
    logger.info(
        "Backtest complete: %d trades, performance %.2f%%, win rate %.1f%%, "
        "max drawdown %.2f%%, profit factor %.2f",
        result.total_trades,
        result.performance,
        result.win_rate * 100,
        result.max_drawdown,
        result.profit_factor,
    )


async def _run_correlation(analyzer, symbols: list[str], args) -> None:
    from marketlens.correlation.analyzer import find_significant_correlations

    matrix = await analyzer.calculate_correlation_matrix(
        [s.strip() for s in symbols if s.strip()], args.interval, args.days,
    )
    for pair in find_significant_correlations(matrix):
        logger.info(
            "%s / %s: %.3f (%s %s)",
            pair.pair[0], pair.pair[1], pair.correlation, pair.strength, pair.type,
        )
    for divergent in await analyzer.find_divergent_pairs(matrix, args.days, args.interval):
        logger.info(
            "Divergence %s / %s: z=%.2f → %s",
            divergent.pair[0], divergent.pair[1], divergent.zscore, divergent.signal,
        )


if __name__ == "__main__":
    _run_cli()
