from datetime import timedelta

import pandas as pd
import pytest

from seven_layer_system.layers.multi_timeframe import (
    Alignment,
    EntrySignal,
    MultiTimeframeAligner,
    TimeframeTrend,
    TrendType,
)
from seven_layer_system.models import bars_to_frame

from tests.builders import flat_bars, trending_bars


@pytest.fixture
def aligner():
    return MultiTimeframeAligner()


def _frames(step):
    return (
        bars_to_frame(trending_bars(60, step=step, interval=timedelta(hours=1))),
        bars_to_frame(trending_bars(60, step=step / 2, interval=timedelta(minutes=15))),
        bars_to_frame(trending_bars(60, step=step / 5, interval=timedelta(minutes=5))),
    )


def _trend(direction, strength=50.0):
    return TimeframeTrend('X', direction, strength, 0.0, 0.0, 50.0)


def test_all_bullish_timeframes_align_perfectly(aligner):
    result = aligner.analyze(*_frames(10.0))

    assert result.alignment == Alignment.PERFECT
    assert result.entry_signal == EntrySignal.BUY
    assert result.one_hour_trend.direction == TrendType.BULLISH
    assert result.score >= 50


def test_all_bearish_timeframes_give_sell(aligner):
    result = aligner.analyze(*_frames(-10.0))
    assert result.alignment == Alignment.PERFECT
    assert result.entry_signal == EntrySignal.SELL


def test_short_series_is_neutral_with_zero_strength(aligner):
    df = bars_to_frame(trending_bars(20))
    trend = aligner.analyze_trend(df, '1H')
    assert trend.direction == TrendType.NEUTRAL
    assert trend.strength == 0.0


def test_flat_series_is_neutral_strength_30(aligner):
    trend = aligner.analyze_trend(bars_to_frame(flat_bars(60)), '15M')
    assert trend.direction == TrendType.NEUTRAL
    assert trend.strength == 30.0


@pytest.mark.parametrize("directions,expected", [
    ((TrendType.BULLISH, TrendType.BULLISH, TrendType.NEUTRAL), Alignment.STRONG),
    ((TrendType.BEARISH, TrendType.BEARISH, TrendType.BULLISH), Alignment.STRONG),
    ((TrendType.BULLISH, TrendType.NEUTRAL, TrendType.BULLISH), Alignment.WEAK),
    ((TrendType.BULLISH, TrendType.BEARISH, TrendType.NEUTRAL), Alignment.CONFLICTING),
    ((TrendType.NEUTRAL, TrendType.NEUTRAL, TrendType.NEUTRAL), Alignment.CONFLICTING),
])
def test_alignment_grades(directions, expected):
    trends = [_trend(d) for d in directions]
    assert MultiTimeframeAligner.determine_alignment(*trends) == expected


def test_strong_alignment_without_5m_confirmation_waits():
    trends = [_trend(TrendType.BULLISH), _trend(TrendType.BULLISH), _trend(TrendType.NEUTRAL)]
    assert MultiTimeframeAligner.entry_signal(Alignment.STRONG, *trends) == EntrySignal.WAIT


def test_confluence_clusters_levels_across_timeframes(aligner):
    def zigzag(peak):
        highs = [100.0] * 25
        lows = [90.0] * 25
        highs[10] = peak
        return pd.DataFrame({'open': 95.0, 'high': highs, 'low': lows, 'close': 95.0})

    zones = aligner.find_confluence_zones([zigzag(120.0), zigzag(120.2), zigzag(150.0)])

    assert len(zones) == 1
    assert zones[0].level == pytest.approx(120.0)
    assert zones[0].matches == 2
    assert zones[0].strength == pytest.approx(66.66)


def test_empty_frames_score_in_bounds(aligner):
    empty = bars_to_frame([])
    result = aligner.analyze(empty, empty, empty)
    assert result.alignment == Alignment.CONFLICTING
    assert result.entry_signal == EntrySignal.WAIT
    assert 0 <= result.score <= 100
