"""Binance public REST API async client.

Read-only market data: klines, 24-hour tickers and the active symbol list.
Every failure surfaces as ``DataUnavailable``.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Optional

import httpx

from marketlens.analysis.models import CandleData
from marketlens.config import Config, resolve_timeframe
from marketlens.errors import DataUnavailable
from marketlens.providers.models import MarketSnapshot

logger = logging.getLogger("marketlens.providers")

# Retry settings
_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 2.0  # seconds; doubles each attempt
_RETRYABLE_STATUS_CODES = {502, 503, 504, 429}

_KLINES_PAGE_LIMIT = 1000
_MIN_QUOTE_VOLUME = 1_000_000.0


def normalize_symbol(symbol: str) -> str:
    """``"btc/usdt"`` → ``"BTCUSDT"``."""
    return symbol.replace("/", "").replace("-", "").upper()


def _to_millis(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)


def parse_klines(rows: list) -> list[CandleData]:
    """Convert Binance kline arrays ``[openTime, o, h, l, c, v, ...]`` to candles.

    Raises ``DataUnavailable`` on a malformed row.
    """
    candles: list[CandleData] = []
    for row in rows:
        try:
            candles.append(
                CandleData(
                    time=datetime.fromtimestamp(int(row[0]) / 1000, tz=timezone.utc),
                    open=float(row[1]),
                    high=float(row[2]),
                    low=float(row[3]),
                    close=float(row[4]),
                    volume=float(row[5]),
                )
            )
        except (TypeError, ValueError, IndexError) as exc:
            raise DataUnavailable(f"Malformed kline row {row!r}: {exc}") from exc
    return candles


class BinanceClient:
    """Async client wrapping the Binance v3 public endpoints."""

    def __init__(self, config: Config, quote_asset: str = "USDT") -> None:
        self._base_url = config.binance_base_url.rstrip("/")
        self._cache_ttl = config.cache_ttl_seconds
        self._quote_asset = quote_asset
        self._active_cache: Optional[list[str]] = None
        self._active_cache_at = 0.0

    # ── Retry helper ─────────────────────────────────────────────────────

    async def _get_with_retry(self, path: str, params: dict | None = None):
        """GET *path* and return the decoded JSON body.

        Retries on transient server errors (502, 503, 504) and rate-limits
        (429) with exponential backoff.  Anything else, including exhausted
        retries, raises ``DataUnavailable``.
        """
        url = f"{self._base_url}{path}"
        last_exc: Optional[Exception] = None

        for attempt in range(_MAX_RETRIES):
            try:
                async with httpx.AsyncClient() as client:
                    resp = await client.get(url, params=params, timeout=30.0)

                if resp.status_code in _RETRYABLE_STATUS_CODES:
                    delay = _RETRY_BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        "Binance GET %s returned %d, retry %d/%d in %.1fs",
                        path, resp.status_code, attempt + 1, _MAX_RETRIES, delay,
                    )
                    last_exc = httpx.HTTPStatusError(
                        f"Server error '{resp.status_code}'",
                        request=resp.request,
                        response=resp,
                    )
                    await asyncio.sleep(delay)
                    continue

                resp.raise_for_status()
                return resp.json()

            except httpx.TransportError as exc:
                delay = _RETRY_BASE_DELAY * (2 ** attempt)
                logger.warning(
                    "Binance GET %s transport error (%s), retry %d/%d in %.1fs",
                    path, exc, attempt + 1, _MAX_RETRIES, delay,
                )
                last_exc = exc
                await asyncio.sleep(delay)
            except (httpx.HTTPStatusError, ValueError) as exc:
                raise DataUnavailable(f"Binance GET {path} failed: {exc}") from exc

        raise DataUnavailable(
            f"Binance GET {path} failed after {_MAX_RETRIES} attempts: {last_exc}"
        )

    # ── Candles ──────────────────────────────────────────────────────────

    async def get_series(self, symbol: str, timeframe: str) -> list[CandleData]:
        """Most recent bars for a timeframe label, oldest first."""
        interval, limit = resolve_timeframe(timeframe)
        rows = await self._get_with_retry(
            "/klines",
            {"symbol": normalize_symbol(symbol), "interval": interval, "limit": limit},
        )
        return parse_klines(rows)

    async def get_history(
        self,
        symbol: str,
        interval: str,
        start: datetime,
        end: datetime,
    ) -> list[CandleData]:
        """All bars between *start* and *end*, paging through the kline endpoint."""
        start_ms, end_ms = _to_millis(start), _to_millis(end)
        candles: list[CandleData] = []

        while start_ms <= end_ms:
            rows = await self._get_with_retry(
                "/klines",
                {
                    "symbol": normalize_symbol(symbol),
                    "interval": interval,
                    "startTime": start_ms,
                    "endTime": end_ms,
                    "limit": _KLINES_PAGE_LIMIT,
                },
            )
            page = parse_klines(rows)
            if not page:
                break
            candles.extend(page)
            if len(page) < _KLINES_PAGE_LIMIT:
                break
            start_ms = _to_millis(page[-1].time) + 1

        logger.debug("Fetched %d %s bars for %s", len(candles), interval, symbol)
        return candles

    # ── Tickers ──────────────────────────────────────────────────────────

    async def get_snapshot(self, symbol: str) -> MarketSnapshot:
        data = await self._get_with_retry(
            "/ticker/24hr", {"symbol": normalize_symbol(symbol)},
        )
        try:
            return MarketSnapshot(
                symbol=data["symbol"],
                price=float(data["lastPrice"]),
                price_change_percent_24h=float(data["priceChangePercent"]),
                volume=float(data["volume"]),
                quote_volume=float(data["quoteVolume"]),
                high_24h=float(data["highPrice"]),
                low_24h=float(data["lowPrice"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise DataUnavailable(f"Malformed ticker for {symbol}: {exc}") from exc

    async def get_active_symbols(self) -> list[str]:
        """Quote-asset symbols above the minimum quote volume, busiest first.

        Cached for ``cache_ttl_seconds``.  A stale cache is served when the
        refresh fails.
        """
        now = time.monotonic()
        if self._active_cache is not None and now - self._active_cache_at < self._cache_ttl:
            return self._active_cache

        try:
            tickers = await self._get_with_retry("/ticker/24hr")
            ranked = sorted(
                (
                    (t["symbol"], float(t["quoteVolume"]))
                    for t in tickers
                    if t["symbol"].endswith(self._quote_asset)
                ),
                key=lambda item: item[1],
                reverse=True,
            )
        except (KeyError, TypeError, ValueError) as exc:
            return self._stale_or_raise(DataUnavailable(f"Malformed ticker list: {exc}"))
        except DataUnavailable as exc:
            return self._stale_or_raise(exc)

        self._active_cache = [s for s, vol in ranked if vol >= _MIN_QUOTE_VOLUME]
        self._active_cache_at = now
        return self._active_cache

    def _stale_or_raise(self, exc: DataUnavailable) -> list[str]:
        if self._active_cache is None:
            raise exc
        logger.warning("Active symbol refresh failed (%s), serving cached list", exc)
        return self._active_cache
