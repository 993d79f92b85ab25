"""News sentiment from the Finnhub crypto news feed.

Headlines are scored with keyword lists and weighted by recency and
source.  The news feed is cached for ``cache_ttl_seconds``.
"""

import logging
import re
import time
from datetime import datetime, timezone
from typing import Optional

import httpx

from marketlens.config import Config
from marketlens.errors import DataUnavailable
from marketlens.providers.models import NewsImpact, NewsItem, SentimentResult

logger = logging.getLogger("marketlens.providers")

POSITIVE_WORDS = (
    "bullish", "surge", "soar", "gain", "rally", "jump", "recover",
    "breakthrough", "support", "upgrade", "adopt", "partnership",
    "innovation", "growth", "success", "positive", "strong",
)
NEGATIVE_WORDS = (
    "bearish", "crash", "plunge", "drop", "fall", "decline", "tumble",
    "resistance", "downgrade", "ban", "hack", "scam", "fraud",
    "concern", "risk", "warning", "negative", "weak",
)
MAJOR_SOURCES = ("reuters", "bloomberg", "coindesk", "cointelegraph")

_POSITIVE_RE = re.compile(r"\b(?:" + "|".join(POSITIVE_WORDS) + r")\b")
_NEGATIVE_RE = re.compile(r"\b(?:" + "|".join(NEGATIVE_WORDS) + r")\b")

_QUOTE_SUFFIXES = ("USDT", "BUSD", "USDC", "USD", "BTC", "ETH")


# ── Scoring ──────────────────────────────────────────────────────────────


def classify_text(text: str) -> str:
    """Keyword vote: more positive than negative hits is ``positive``."""
    lowered = text.lower()
    positive = len(_POSITIVE_RE.findall(lowered))
    negative = len(_NEGATIVE_RE.findall(lowered))
    if positive > negative:
        return "positive"
    if negative > positive:
        return "negative"
    return "neutral"


def news_impact(item: NewsItem, now: datetime | None = None) -> float:
    """Impact in [0, 1]: decays linearly over 24 h, ×1.5 for major sources."""
    now = now or datetime.now(timezone.utc)
    hours = (now - item.published_at).total_seconds() / 3600.0
    impact = max(0.0, 1.0 - hours / 24.0)
    if any(source in item.source.lower() for source in MAJOR_SOURCES):
        impact *= 1.5
    return min(impact, 1.0)


def score_news(items: list[NewsItem], now: datetime | None = None) -> SentimentResult:
    """Aggregate impact-weighted sentiment over *items*.

    ``score = (positive impact − negative impact) / total impact``; above
    0.1 is positive, below −0.1 negative.  Confidence is
    ``min(|score| × 1.5, 1)``.  The five most impactful items are kept.
    """
    analysed = [
        NewsImpact(
            headline=item.headline,
            sentiment=classify_text(f"{item.headline} {item.summary}"),
            impact=news_impact(item, now),
        )
        for item in items
    ]

    positive = sum(a.impact for a in analysed if a.sentiment == "positive")
    negative = sum(a.impact for a in analysed if a.sentiment == "negative")
    total = sum(a.impact for a in analysed)
    score = (positive - negative) / total if total > 0 else 0.0

    if score > 0.1:
        overall = "positive"
    elif score < -0.1:
        overall = "negative"
    else:
        overall = "neutral"

    return SentimentResult(
        overall_sentiment=overall,
        confidence=min(abs(score) * 1.5, 1.0),
        relevant_news=sorted(analysed, key=lambda a: a.impact, reverse=True)[:5],
    )


def base_asset(symbol: str) -> str:
    """``"BTCUSDT"`` → ``"BTC"``; unknown quote suffixes are left alone."""
    cleaned = symbol.replace("/", "").upper()
    for suffix in _QUOTE_SUFFIXES:
        if cleaned.endswith(suffix) and len(cleaned) > len(suffix):
            return cleaned[: -len(suffix)]
    return cleaned


def is_relevant(item: NewsItem, asset: str) -> bool:
    needle = asset.lower()
    return (
        needle in item.related.lower()
        or needle in item.headline.lower()
        or needle in item.summary.lower()
    )


# ── Client ───────────────────────────────────────────────────────────────


class NewsSentimentClient:
    """Finnhub crypto-news client implementing ``SentimentProvider``."""

    def __init__(self, config: Config) -> None:
        if not config.finnhub_api_key:
            raise ValueError("FINNHUB_API_KEY is required for news sentiment")
        self._base_url = config.finnhub_base_url.rstrip("/")
        self._api_key = config.finnhub_api_key
        self._cache_ttl = config.cache_ttl_seconds
        self._news_cache: Optional[list[NewsItem]] = None
        self._news_cache_at = 0.0

    async def _fetch_news(self) -> list[NewsItem]:
        now = time.monotonic()
        if self._news_cache is not None and now - self._news_cache_at < self._cache_ttl:
            return self._news_cache

        try:
            async with httpx.AsyncClient() as client:
                resp = await client.get(
                    f"{self._base_url}/crypto/news",
                    params={"token": self._api_key},
                    timeout=30.0,
                )
            resp.raise_for_status()
            items = [
                NewsItem(
                    headline=raw.get("headline", ""),
                    summary=raw.get("summary", ""),
                    source=raw.get("source", ""),
                    category=raw.get("category", ""),
                    related=raw.get("related", ""),
                    published_at=datetime.fromtimestamp(
                        int(raw["datetime"]), tz=timezone.utc,
                    ),
                )
                for raw in resp.json()
            ]
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as exc:
            raise DataUnavailable(f"News feed unavailable: {exc}") from exc

        self._news_cache = items
        self._news_cache_at = now
        logger.debug("News cache refreshed with %d items", len(items))
        return items

    async def get_sentiment(self, symbol: str) -> SentimentResult:
        asset = base_asset(symbol)
        news = await self._fetch_news()
        return score_news([n for n in news if is_relevant(n, asset)])
