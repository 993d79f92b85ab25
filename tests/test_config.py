"""Tests for marketlens.config — environment variable loading and validation."""

import pytest

from marketlens.config import TIMEFRAMES, Config, load_config, resolve_timeframe
from marketlens.errors import InvalidParameter


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Ensure MarketLens env vars are cleared between tests."""
    for var in [
        "BINANCE_BASE_URL",
        "FINNHUB_BASE_URL",
        "FINNHUB_API_KEY",
        "DEFAULT_TIMEFRAME",
        "TOP_SIGNALS",
        "MIN_SIGNAL_CONFIDENCE",
        "MAX_SYMBOLS",
        "MAX_OPTIMIZER_COMBINATIONS",
        "OPTIMIZER_WORKERS",
        "INITIAL_CAPITAL",
        "CACHE_TTL_SECONDS",
        "LOG_LEVEL",
        "API_PORT",
    ]:
        monkeypatch.delenv(var, raising=False)


def _no_dotenv(tmp_path):
    """A non-existent .env path so load_dotenv doesn't pick up a real file."""
    return str(tmp_path / "missing.env")


class TestLoadConfig:
    def test_defaults(self, tmp_path):
        cfg = load_config(env_path=_no_dotenv(tmp_path))
        assert cfg == Config()
        assert cfg.default_timeframe == "DAY"
        assert cfg.top_signals == 5
        assert cfg.max_symbols == 10
        assert cfg.finnhub_api_key is None
        assert cfg.initial_capital == 10_000.0
        assert cfg.api_port == 8080

    def test_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DEFAULT_TIMEFRAME", "week")
        monkeypatch.setenv("TOP_SIGNALS", "3")
        monkeypatch.setenv("FINNHUB_API_KEY", "key-123")
        monkeypatch.setenv("OPTIMIZER_WORKERS", "4")
        monkeypatch.setenv("INITIAL_CAPITAL", "2500.5")
        cfg = load_config(env_path=_no_dotenv(tmp_path))
        assert cfg.default_timeframe == "WEEK"
        assert cfg.top_signals == 3
        assert cfg.finnhub_api_key == "key-123"
        assert cfg.optimizer_workers == 4
        assert cfg.initial_capital == pytest.approx(2500.5)

    def test_empty_api_key_is_none(self, monkeypatch, tmp_path):
        monkeypatch.setenv("FINNHUB_API_KEY", "")
        assert load_config(env_path=_no_dotenv(tmp_path)).finnhub_api_key is None

    def test_reads_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("MAX_SYMBOLS=25\nLOG_LEVEL=DEBUG\n")
        cfg = load_config(env_path=str(env_file))
        assert cfg.max_symbols == 25
        assert cfg.log_level == "DEBUG"

    def test_invalid_timeframe(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DEFAULT_TIMEFRAME", "YEAR")
        with pytest.raises(ValueError, match="DEFAULT_TIMEFRAME"):
            load_config(env_path=_no_dotenv(tmp_path))

    def test_non_integer(self, monkeypatch, tmp_path):
        monkeypatch.setenv("TOP_SIGNALS", "many")
        with pytest.raises(ValueError, match="TOP_SIGNALS"):
            load_config(env_path=_no_dotenv(tmp_path))

    def test_below_minimum(self, monkeypatch, tmp_path):
        monkeypatch.setenv("MAX_SYMBOLS", "0")
        with pytest.raises(ValueError, match="MAX_SYMBOLS"):
            load_config(env_path=_no_dotenv(tmp_path))

    def test_non_positive_capital(self, monkeypatch, tmp_path):
        monkeypatch.setenv("INITIAL_CAPITAL", "-5")
        with pytest.raises(ValueError, match="INITIAL_CAPITAL"):
            load_config(env_path=_no_dotenv(tmp_path))

    def test_min_signal_confidence(self, monkeypatch, tmp_path):
        assert load_config(env_path=_no_dotenv(tmp_path)).min_signal_confidence == 0.6
        monkeypatch.setenv("MIN_SIGNAL_CONFIDENCE", "0")
        assert load_config(env_path=_no_dotenv(tmp_path)).min_signal_confidence == 0.0

    @pytest.mark.parametrize("raw", ["1.5", "-0.1", "high"])
    def test_min_signal_confidence_out_of_range(self, monkeypatch, tmp_path, raw):
        monkeypatch.setenv("MIN_SIGNAL_CONFIDENCE", raw)
        with pytest.raises(ValueError, match="MIN_SIGNAL_CONFIDENCE"):
            load_config(env_path=_no_dotenv(tmp_path))


class TestResolveTimeframe:
    def test_known_labels(self):
        assert resolve_timeframe("HOUR") == ("15m", 100)
        assert resolve_timeframe("DAY") == ("1h", 100)
        assert resolve_timeframe("WEEK") == ("4h", 100)
        assert resolve_timeframe("MONTH") == ("1d", 100)

    def test_case_insensitive(self):
        assert resolve_timeframe("day") == TIMEFRAMES["DAY"]

    def test_unknown_label(self):
        with pytest.raises(InvalidParameter, match="YEAR"):
            resolve_timeframe("YEAR")

    def test_invalid_parameter_is_value_error(self):
        with pytest.raises(ValueError):
            resolve_timeframe("")
