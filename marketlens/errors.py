"""MarketLens — error taxonomy.

Every failure the engine raises on purpose derives from ``MarketLensError``
so callers can catch the whole family at the API boundary.
"""


class MarketLensError(Exception):
    """Base class for all MarketLens errors."""


class DataUnavailable(MarketLensError):
    """Upstream data is missing, empty where it must not be, or malformed."""


class InvalidParameter(MarketLensError, ValueError):
    """A caller-supplied argument is outside the accepted domain."""


class OptimizationExhausted(MarketLensError):
    """Every parameter combination in an optimization grid failed."""
