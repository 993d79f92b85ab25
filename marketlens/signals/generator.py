"""SignalService — per-symbol analysis pipeline and batch signal generation.

A single-symbol run fetches bars, the ticker snapshot and news sentiment
concurrently, runs every analyzer, and fuses the result.  Batch runs fan
out across the active symbol list; a failing symbol is logged and left out.
"""

import asyncio
import logging
from typing import Optional

from marketlens.analysis.candlesticks import detect_candlestick_patterns
from marketlens.analysis.chart_patterns import analyze_advanced_patterns
from marketlens.analysis.indicators import analyze_technical_signals, calculate_rsi_series
from marketlens.analysis.models import CandleData
from marketlens.analysis.structure import analyze_smart_money
from marketlens.config import Config, resolve_timeframe
from marketlens.errors import DataUnavailable, MarketLensError
from marketlens.providers.base import MarketDataProvider, SentimentProvider
from marketlens.providers.models import MarketSnapshot, SentimentResult
from marketlens.signals.fusion import fuse_signal
from marketlens.signals.models import TopSignals, TradingSignal

logger = logging.getLogger("marketlens.signals")

# Well-known pairs analysed ahead of the rest of the active list.
POPULAR_SYMBOLS = (
    "BTCUSDT", "ETHUSDT", "BNBUSDT", "SOLUSDT", "XRPUSDT",
    "ADAUSDT", "DOGEUSDT", "AVAXUSDT", "DOTUSDT", "LINKUSDT",
)


def select_symbols(active: list[str], limit: int) -> list[str]:
    """Popular symbols that are active first, then the rest in volume order."""
    active_set = set(active)
    ordered = [s for s in POPULAR_SYMBOLS if s in active_set]
    ordered += [s for s in active if s not in ordered]
    return ordered[:limit]


def analyze_series(
    symbol: str,
    candles: list[CandleData],
    snapshot: Optional[MarketSnapshot] = None,
    sentiment: Optional[SentimentResult] = None,
) -> TradingSignal:
    """Run every analyzer on *candles* and fuse the evidence."""
    technical = analyze_technical_signals(candles)
    closes = [c.close for c in candles]
    return fuse_signal(
        symbol=symbol,
        snapshot=snapshot,
        technical=technical,
        candlestick_patterns=detect_candlestick_patterns(candles),
        chart_patterns=analyze_advanced_patterns(candles, calculate_rsi_series(closes)),
        structure=analyze_smart_money(candles, atr=technical.atr),
        sentiment=sentiment,
    )


def _unwrap(result, what: str, symbol: str):
    """Return a gathered value or re-raise its failure as ``DataUnavailable``."""
    if not isinstance(result, BaseException):
        return result
    if isinstance(result, MarketLensError) or not isinstance(result, Exception):
        raise result
    raise DataUnavailable(f"{what} for {symbol} failed: {result}") from result


class SignalService:
    """Generates fused trading signals from the configured collaborators.

    Args:
        config:    Global ``Config``.
        market:    Any ``MarketDataProvider``.
        sentiment: Optional ``SentimentProvider``; without one the
                   sentiment rule is skipped.
    """

    def __init__(
        self,
        config: Config,
        market: MarketDataProvider,
        sentiment: Optional[SentimentProvider] = None,
    ) -> None:
        self._config = config
        self._market = market
        self._sentiment = sentiment

    async def _no_sentiment(self):
        return None

    # ── Public API ───────────────────────────────────────────────────────

    async def generate_signal(self, symbol: str, timeframe: str) -> TradingSignal:
        """Analyse one symbol.

        Raises ``InvalidParameter`` for an unsupported timeframe and
        ``DataUnavailable`` when the bars or the snapshot cannot be fetched.
        A sentiment failure only drops the sentiment rule.
        """
        resolve_timeframe(timeframe)

        sentiment_call = (
            self._sentiment.get_sentiment(symbol)
            if self._sentiment is not None
            else self._no_sentiment()
        )
        series_res, snapshot_res, sentiment_res = await asyncio.gather(
            self._market.get_series(symbol, timeframe),
            self._market.get_snapshot(symbol),
            sentiment_call,
            return_exceptions=True,
        )

        candles = _unwrap(series_res, "Series fetch", symbol)
        snapshot = _unwrap(snapshot_res, "Snapshot fetch", symbol)
        if not candles:
            raise DataUnavailable(f"No bars returned for {symbol} ({timeframe})")

        sentiment = sentiment_res
        if isinstance(sentiment_res, BaseException):
            if not isinstance(sentiment_res, Exception):
                raise sentiment_res
            logger.warning("Sentiment unavailable for %s: %s", symbol, sentiment_res)
            sentiment = None

        signal = analyze_series(symbol, candles, snapshot, sentiment)
        logger.info(
            "%s %s → %s (confidence %.2f, %d reasons)",
            symbol, timeframe, signal.direction, signal.confidence, len(signal.reasons),
        )
        return signal

    async def generate_signals(self, timeframe: str | None = None) -> TopSignals:
        """Analyse the active symbol list and rank the directional calls.

        Symbols that fail are omitted.  Neutral signals and calls below
        ``Config.min_signal_confidence`` are dropped; buy and sell lists are
        each sorted by confidence × volume × price and capped at
        ``Config.top_signals``.
        """
        timeframe = timeframe or self._config.default_timeframe
        resolve_timeframe(timeframe)

        active = await self._market.get_active_symbols()
        symbols = select_symbols(active, self._config.max_symbols)

        results = await asyncio.gather(
            *(self.generate_signal(s, timeframe) for s in symbols),
            return_exceptions=True,
        )

        signals: list[TradingSignal] = []
        for symbol, result in zip(symbols, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning("Skipping %s: %s", symbol, result)
                continue
            if result.confidence < self._config.min_signal_confidence:
                logger.debug(
                    "Dropping %s %s: confidence %.2f below %.2f",
                    symbol, result.direction, result.confidence,
                    self._config.min_signal_confidence,
                )
                continue
            signals.append(result)

        limit = self._config.top_signals
        buys = sorted(
            (s for s in signals if s.direction == "buy"),
            key=lambda s: s.rank_score,
            reverse=True,
        )
        sells = sorted(
            (s for s in signals if s.direction == "sell"),
            key=lambda s: s.rank_score,
            reverse=True,
        )
        logger.info(
            "Analysed %d/%d symbols: %d buy, %d sell",
            len(signals), len(symbols), len(buys), len(sells),
        )
        return TopSignals(buy_signals=buys[:limit], sell_signals=sells[:limit])
