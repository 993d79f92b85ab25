"""Tests for signal fusion — base vote, rule overrides, boosts and clamping."""

from dataclasses import replace
from datetime import datetime, timezone

import pytest

from marketlens.analysis.models import (
    AdxResult,
    BollingerBands,
    EmaSet,
    MacdResult,
    OrderBlock,
    PatternMatch,
    PriceZones,
    SmartMoneyResult,
    SqueezeResult,
    StochasticResult,
    StructureResult,
    TechnicalSnapshot,
    UltimateMacdResult,
    VolumeProfile,
    ZoneBand,
)
from marketlens.providers.models import MarketSnapshot, SentimentResult
from marketlens.signals.fusion import FUSION_RULES, fuse_signal


# ── Helpers ──────────────────────────────────────────────────────────────

_NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


def _make_technical(**overrides) -> TechnicalSnapshot:
    """A snapshot where no fusion rule fires."""
    base = TechnicalSnapshot(
        price=100.0,
        rsi=50.0,
        bollinger=BollingerBands(110.0, 100.0, 90.0),
        macd=MacdResult(0.0, 0.0, 0.0),
        ultimate_macd=UltimateMacdResult(
            0.0, 0.0, 0.0, "gray", "lime", "yellow", False, None, None,
        ),
        ema=EmaSet(100.0, 100.0, 100.0),
        stochastic=StochasticResult(50.0, 50.0),
        adx=AdxResult(20.0, 20.0, 20.0),
        atr=1.0,
        squeeze=SqueezeResult(False, False, 0.0, "maroon", "blue"),
        volume=VolumeProfile(1.0, "medium", "neutral"),
        sma20=100.0,
        momentum_pct=0.0,
        vote="neutral",
        vote_strength=0.0,
    )
    return replace(base, **overrides)


def _buy(strength=0.5, **overrides):
    votes = round(strength * 6)
    return _make_technical(vote="buy", vote_strength=strength, buy_votes=votes, **overrides)


def _fuse(technical, **kwargs):
    return fuse_signal("BTCUSDT", None, technical, timestamp=_NOW, **kwargs)


def _empty_structure(**overrides):
    base = SmartMoneyResult(
        swing_structure=StructureResult(),
        internal_structure=StructureResult(),
    )
    return replace(base, **overrides)


# ── Base vote ────────────────────────────────────────────────────────────


class TestBaseVote:
    def test_all_quiet_is_neutral(self):
        signal = _fuse(_make_technical())
        assert signal.direction == "neutral"
        assert signal.confidence == 0.0
        assert signal.reasons == []

    def test_vote_carries_through(self):
        signal = _fuse(_buy(0.5))
        assert signal.direction == "buy"
        assert signal.confidence == pytest.approx(0.5)
        assert signal.reasons == ["Indicator vote buy (3/6)"]

    def test_rule_chain_order(self):
        assert len(FUSION_RULES) == 13
        assert FUSION_RULES[0].__name__ == "_rsi_extremes"
        assert FUSION_RULES[-1].__name__ == "_zones"


# ── Overrides ────────────────────────────────────────────────────────────


class TestOverrides:
    def test_rsi_oversold_overrides_neutral(self):
        signal = _fuse(_make_technical(rsi=25.0, vote_strength=1 / 6))
        assert signal.direction == "buy"
        assert signal.confidence == pytest.approx(0.2)
        assert any("RSI oversold" in r for r in signal.reasons)

    def test_rsi_overbought_flips_buy(self):
        signal = _fuse(_buy(0.5, rsi=75.0))
        assert signal.direction == "sell"
        assert signal.confidence == pytest.approx(0.6)

    def test_bollinger_breakout(self):
        signal = _fuse(_buy(0.5, price=115.0, sma20=115.0))
        assert signal.direction == "sell"
        assert signal.confidence == pytest.approx(0.575)

    def test_macd_cross(self):
        macd = UltimateMacdResult(1.0, 0.5, 0.5, "gray", "lime", "yellow", True, "bullish")
        signal = _fuse(_make_technical(ultimate_macd=macd, vote_strength=0.4))
        assert signal.direction == "buy"
        assert signal.confidence == pytest.approx(0.5)
        assert "Bullish MACD cross" in signal.reasons

    def test_later_override_wins(self):
        technical = _buy(
            0.5, rsi=75.0, momentum_pct=6.0,
            volume=VolumeProfile(1.6, "high", "neutral"),
        )
        signal = _fuse(technical)
        assert signal.direction == "buy"
        assert signal.confidence == pytest.approx(0.5 * 1.2 * 1.2)

    def test_momentum_needs_volume(self):
        signal = _fuse(_buy(0.5, momentum_pct=-8.0))
        assert signal.direction == "buy"
        assert signal.confidence == pytest.approx(0.5)

    def test_neutral_with_zero_strength_stays_at_zero(self):
        signal = _fuse(_make_technical(rsi=20.0))
        assert signal.direction == "buy"
        assert signal.confidence == 0.0


# ── Boosts ───────────────────────────────────────────────────────────────


class TestBoosts:
    def test_confidence_clamped_to_one(self):
        technical = _buy(
            1.0,
            rsi=20.0,
            price=85.0,
            sma20=100.0,
            ultimate_macd=UltimateMacdResult(
                1.0, 0.5, 0.5, "aqua", "lime", "yellow", True, "bullish", "bullish",
            ),
            volume=VolumeProfile(3.0, "high", "accumulation"),
        )
        signal = _fuse(technical)
        assert signal.direction == "buy"
        assert signal.confidence == 1.0

    def test_squeeze_dampens(self):
        squeeze = SqueezeResult(True, False, 0.0, "maroon", "black")
        signal = _fuse(_buy(0.5, squeeze=squeeze))
        assert signal.confidence == pytest.approx(0.4)

    def test_squeeze_release_with_momentum(self):
        squeeze = SqueezeResult(False, True, 2.0, "lime", "gray")
        signal = _fuse(_buy(0.5, squeeze=squeeze))
        assert signal.confidence == pytest.approx(0.575)

    def test_volume_spike_and_flow(self):
        signal = _fuse(_buy(0.5, volume=VolumeProfile(2.5, "high", "accumulation")))
        assert signal.confidence == pytest.approx(0.5 * 1.2 * 1.1)

    def test_volume_spike_ignored_without_direction(self):
        signal = _fuse(_make_technical(volume=VolumeProfile(2.5, "high", "neutral")))
        assert signal.direction == "neutral"
        assert signal.reasons == []

    def test_sma_deviation(self):
        signal = _fuse(_buy(0.5, sma20=110.0))
        assert signal.confidence == pytest.approx(0.55)

    def test_aligned_candlestick_pattern(self):
        patterns = [
            PatternMatch("Hammer", "bullish", 0.7),
            PatternMatch("Doji", "bearish", 0.6),
        ]
        signal = _fuse(_buy(0.5), candlestick_patterns=patterns)
        assert signal.confidence == pytest.approx(0.575)
        assert "Candlestick pattern: Hammer (bullish)" in signal.reasons
        assert "Candlestick pattern: Doji (bearish)" in signal.reasons
        assert signal.candlestick_patterns == patterns

    def test_aligned_chart_pattern(self):
        patterns = [PatternMatch("Bullish Triple Tap", "bullish", 0.9)]
        signal = _fuse(_buy(0.5), chart_patterns=patterns)
        assert signal.confidence == pytest.approx(0.55)

    def test_opposing_pattern_only_explains(self):
        patterns = [PatternMatch("Evening Star", "bearish", 0.9)]
        signal = _fuse(_buy(0.5), candlestick_patterns=patterns)
        assert signal.confidence == pytest.approx(0.5)
        assert "Candlestick pattern: Evening Star (bearish)" in signal.reasons


# ── Sentiment ────────────────────────────────────────────────────────────


class TestSentiment:
    def test_aligned_sentiment_boosts(self):
        signal = _fuse(_buy(0.5), sentiment=SentimentResult("positive", 0.6))
        assert signal.confidence == pytest.approx(0.55)
        assert any("News sentiment positive" in r for r in signal.reasons)

    def test_opposing_sentiment_is_reported(self):
        signal = _fuse(_buy(0.5), sentiment=SentimentResult("negative", 0.6))
        assert signal.confidence == pytest.approx(0.5)
        assert any("News sentiment negative" in r for r in signal.reasons)

    def test_neutral_sentiment_is_silent(self):
        signal = _fuse(_buy(0.5), sentiment=SentimentResult("neutral", 0.0))
        assert signal.reasons == ["Indicator vote buy (3/6)"]


# ── Structure ────────────────────────────────────────────────────────────


class TestStructure:
    def test_swing_and_internal_breaks(self):
        structure = _empty_structure(
            swing_structure=StructureResult(bullish_bos=True, trend="bullish"),
            internal_structure=StructureResult(bullish_choch=True, trend="bullish"),
        )
        signal = _fuse(_buy(0.5), structure=structure)
        assert signal.confidence == pytest.approx(0.5 * 1.2 * 1.1)
        assert signal.structure is structure

    def test_opposing_break_is_ignored(self):
        structure = _empty_structure(
            swing_structure=StructureResult(bearish_bos=True, trend="bearish"),
        )
        signal = _fuse(_buy(0.5), structure=structure)
        assert signal.confidence == pytest.approx(0.5)

    def test_order_block_proximity(self):
        block = OrderBlock(high=100.5, low=99.5, time=_NOW, type="bullish")
        structure = _empty_structure(swing_order_blocks=[block])
        signal = _fuse(_buy(0.5), structure=structure)
        assert signal.confidence == pytest.approx(0.55)
        assert "Price at a bullish order block" in signal.reasons

    def test_far_order_block(self):
        block = OrderBlock(high=80.0, low=79.0, time=_NOW, type="bullish")
        signal = _fuse(_buy(0.5), structure=_empty_structure(swing_order_blocks=[block]))
        assert signal.confidence == pytest.approx(0.5)

    def test_discount_zone(self):
        zones = PriceZones(
            premium=ZoneBand(120.0, 119.0),
            discount=ZoneBand(101.0, 99.0),
            equilibrium=ZoneBand(110.5, 109.5),
        )
        signal = _fuse(_buy(0.5), structure=_empty_structure(zones=zones))
        assert signal.confidence == pytest.approx(0.55)
        assert "Price in the discount zone" in signal.reasons

    def test_missing_structure_is_skipped(self):
        signal = _fuse(_buy(0.5), structure=None)
        assert signal.confidence == pytest.approx(0.5)


# ── Output ───────────────────────────────────────────────────────────────


class TestSignalOutput:
    def test_snapshot_fields(self):
        snapshot = MarketSnapshot("BTCUSDT", 101.5, 2.5, 1200.0, 121_800.0, 103.0, 98.0)
        signal = fuse_signal("BTCUSDT", snapshot, _buy(0.5), timestamp=_NOW)
        assert signal.price == 101.5
        assert signal.price_change_24h == 2.5
        assert signal.volume_24h == 1200.0
        assert signal.quote_volume == 121_800.0
        assert signal.timestamp == _NOW
        assert signal.rank_score == pytest.approx(0.5 * 1200.0 * 101.5)

    def test_without_snapshot_uses_technical_price(self):
        signal = _fuse(_buy(0.5))
        assert signal.price == 100.0
        assert signal.volume_24h == 0.0

    @pytest.mark.parametrize("rsi", [5.0, 25.0, 50.0, 75.0, 95.0])
    def test_confidence_always_bounded(self, rsi):
        technical = _buy(
            1.0, rsi=rsi, momentum_pct=20.0,
            volume=VolumeProfile(5.0, "high", "accumulation"),
        )
        signal = _fuse(technical, sentiment=SentimentResult("positive", 1.0))
        assert 0.0 <= signal.confidence <= 1.0
