"""Collaborator contracts — the data sources the analysis engine consumes.

Any object with matching methods satisfies these protocols; the bundled
HTTP adapters are one implementation, test fakes are another.
"""

from datetime import datetime
from typing import Protocol, runtime_checkable

from marketlens.analysis.models import CandleData
from marketlens.providers.models import MarketSnapshot, SentimentResult


@runtime_checkable
class MarketDataProvider(Protocol):
    """Source of OHLCV series, ticker snapshots and the active symbol list.

    Implementations raise ``DataUnavailable`` when data cannot be obtained
    and return an empty list for "no bars, but the request was valid".
    """

    async def get_series(self, symbol: str, timeframe: str) -> list[CandleData]:
        """Bars for a timeframe label (``HOUR``, ``DAY``, ``WEEK``, ``MONTH``)."""
        ...

    async def get_history(
        self,
        symbol: str,
        interval: str,
        start: datetime,
        end: datetime,
    ) -> list[CandleData]:
        """Bars of *interval* between *start* and *end*, oldest first."""
        ...

    async def get_snapshot(self, symbol: str) -> MarketSnapshot:
        ...

    async def get_active_symbols(self) -> list[str]:
        """Tradable symbols ordered by quote volume, highest first."""
        ...


@runtime_checkable
class SentimentProvider(Protocol):
    """Source of aggregate news sentiment."""

    async def get_sentiment(self, symbol: str) -> SentimentResult:
        ...
