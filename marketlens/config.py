"""MarketLens — application configuration.

Loads .env variables into a typed config object.
Validates values on startup.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from marketlens.errors import InvalidParameter


# Timeframe → (bar interval, bar count)
TIMEFRAMES: dict[str, tuple[str, int]] = {
    "HOUR": ("15m", 100),
    "DAY": ("1h", 100),
    "WEEK": ("4h", 100),
    "MONTH": ("1d", 100),
}


def resolve_timeframe(timeframe: str) -> tuple[str, int]:
    """Return ``(interval, limit)`` for a timeframe label.

    Raises ``InvalidParameter`` for unsupported labels.
    """
    try:
        return TIMEFRAMES[timeframe.upper()]
    except (KeyError, AttributeError):
        raise InvalidParameter(
            f"Unsupported timeframe '{timeframe}'. "
            f"Available: {', '.join(TIMEFRAMES)}"
        ) from None


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    binance_base_url: str = "https://api.binance.com/api/v3"
    finnhub_base_url: str = "https://finnhub.io/api/v1"
    finnhub_api_key: str | None = None
    default_timeframe: str = "DAY"
    top_signals: int = 5
    min_signal_confidence: float = 0.6
    max_symbols: int = 10
    max_optimizer_combinations: int = 10_000
    optimizer_workers: int = 0  # 0 = run sequentially
    initial_capital: float = 10_000.0
    cache_ttl_seconds: float = 300.0
    log_level: str = "INFO"
    api_port: int = 8080


def _int_var(name: str, default: str, minimum: int = 0) -> int:
    raw = os.environ.get(name, default)
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got '{raw}'") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def _float_var(name: str, default: str) -> float:
    raw = os.environ.get(name, default)
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got '{raw}'") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


def _ratio_var(name: str, default: str) -> float:
    raw = os.environ.get(name, default)
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got '{raw}'") from None
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be between 0 and 1, got {value}")
    return value


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    All variables are optional.  Raises ``ValueError`` with a message naming
    the offending variable when a value cannot be parsed or is out of range.
    """
    load_dotenv(dotenv_path=env_path)

    timeframe = os.environ.get("DEFAULT_TIMEFRAME", "DAY").upper()
    if timeframe not in TIMEFRAMES:
        raise ValueError(
            f"DEFAULT_TIMEFRAME must be one of {', '.join(TIMEFRAMES)}, "
            f"got '{timeframe}'"
        )

    return Config(
        binance_base_url=os.environ.get(
            "BINANCE_BASE_URL", "https://api.binance.com/api/v3",
        ),
        finnhub_base_url=os.environ.get(
            "FINNHUB_BASE_URL", "https://finnhub.io/api/v1",
        ),
        finnhub_api_key=os.environ.get("FINNHUB_API_KEY") or None,
        default_timeframe=timeframe,
        top_signals=_int_var("TOP_SIGNALS", "5", minimum=1),
        min_signal_confidence=_ratio_var("MIN_SIGNAL_CONFIDENCE", "0.6"),
        max_symbols=_int_var("MAX_SYMBOLS", "10", minimum=1),
        max_optimizer_combinations=_int_var(
            "MAX_OPTIMIZER_COMBINATIONS", "10000", minimum=1,
        ),
        optimizer_workers=_int_var("OPTIMIZER_WORKERS", "0"),
        initial_capital=_float_var("INITIAL_CAPITAL", "10000"),
        cache_ttl_seconds=_float_var("CACHE_TTL_SECONDS", "300"),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        api_port=_int_var("API_PORT", "8080", minimum=1),
    )
