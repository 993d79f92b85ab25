"""Provider data models — typed representations of upstream market and news data."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal


Sentiment = Literal["positive", "negative", "neutral"]


@dataclass(frozen=True)
class MarketSnapshot:
    """24-hour rolling ticker statistics for one symbol."""

    symbol: str
    price: float
    price_change_percent_24h: float
    volume: float
    quote_volume: float
    high_24h: float
    low_24h: float


@dataclass(frozen=True)
class NewsItem:
    """A single news headline as delivered by the news feed."""

    headline: str
    summary: str
    source: str
    category: str
    related: str
    published_at: datetime


@dataclass(frozen=True)
class NewsImpact:
    headline: str
    sentiment: Sentiment
    impact: float


@dataclass(frozen=True)
class SentimentResult:
    """Aggregate news sentiment for a symbol."""

    overall_sentiment: Sentiment
    confidence: float
    relevant_news: list[NewsImpact] = field(default_factory=list)
