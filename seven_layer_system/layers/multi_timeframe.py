"""
LAYER 3: MULTI-TIMEFRAME ALIGNMENT
Do the 1H, 15M and 5M trends agree?

Per-timeframe EMA/RSI trend classification, alignment grading and
cross-timeframe confluence of swing levels.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List

import pandas as pd
from loguru import logger

from seven_layer_system.config.trading_config import CONFIG, TradingConfig
from seven_layer_system.indicators.technical import TechnicalIndicators
from seven_layer_system.models import LayerResult


class TrendType(Enum):
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"


class Alignment(Enum):
    PERFECT = "PERFECT"
    STRONG = "STRONG"
    WEAK = "WEAK"
    CONFLICTING = "CONFLICTING"


class EntrySignal(Enum):
    BUY = "BUY"
    SELL = "SELL"
    WAIT = "WAIT"


@dataclass
class TimeframeTrend:
    """Trend read for a single timeframe"""
    tf_name: str
    direction: TrendType
    strength: float  # 0-100
    ema20: float
    ema50: float
    rsi: float


@dataclass
class ConfluenceZone:
    level: float
    strength: float  # 0-100
    matches: int     # number of levels clustered here


@dataclass
class MultiTimeframeResult(LayerResult):
    score: float
    alignment: Alignment
    one_hour_trend: TimeframeTrend
    fifteen_min_trend: TimeframeTrend
    five_min_trend: TimeframeTrend
    confluence_zones: List[ConfluenceZone]
    entry_signal: EntrySignal
    reason: str


class MultiTimeframeAligner:
    """Layer 3: agreement between the 1H, 15M and 5M trends"""

    def __init__(self, config: TradingConfig = CONFIG):
        self.config = config

    def analyze(self, one_hour: pd.DataFrame, fifteen_min: pd.DataFrame,
                five_min: pd.DataFrame) -> MultiTimeframeResult:
        one_hour_trend = self.analyze_trend(one_hour, '1H')
        fifteen_min_trend = self.analyze_trend(fifteen_min, '15M')
        five_min_trend = self.analyze_trend(five_min, '5M')

        alignment = self.determine_alignment(one_hour_trend, fifteen_min_trend, five_min_trend)
        zones = self.find_confluence_zones([one_hour, fifteen_min, five_min])
        entry = self.entry_signal(alignment, one_hour_trend, fifteen_min_trend, five_min_trend)
        score = self._score(alignment, [one_hour_trend, fifteen_min_trend, five_min_trend], zones)

        result = MultiTimeframeResult(
            score=score,
            alignment=alignment,
            one_hour_trend=one_hour_trend,
            fifteen_min_trend=fifteen_min_trend,
            five_min_trend=five_min_trend,
            confluence_zones=zones,
            entry_signal=entry,
            reason=self._explain(score, alignment, entry),
        )
        logger.info(f"L3 Multi-Timeframe: {alignment.value} | entry {entry.value} | score {score:.1f}")
        return result

    def analyze_trend(self, df: pd.DataFrame, tf_name: str) -> TimeframeTrend:
        """Classify one timeframe; short series are NEUTRAL with zero strength"""
        cfg = self.config
        if len(df) < cfg.MIN_TREND_BARS:
            last_close = float(df['close'].iloc[-1]) if len(df) else 0.0
            return TimeframeTrend(tf_name, TrendType.NEUTRAL, 0.0, last_close, last_close, 50.0)

        close = df['close']
        price = float(close.iloc[-1])
        ema20 = TechnicalIndicators.latest_ema(close, cfg.EMA_FAST)
        ema50 = TechnicalIndicators.latest_ema(close, cfg.EMA_SLOW)
        rsi = TechnicalIndicators.latest_rsi(close, cfg.RSI_PERIOD)

        if price > ema20 > ema50 and rsi > 50:
            direction = TrendType.BULLISH
        elif price < ema20 < ema50 and rsi < 50:
            direction = TrendType.BEARISH
        else:
            return TimeframeTrend(tf_name, TrendType.NEUTRAL, 30.0, ema20, ema50, rsi)

        strength = self._trend_strength(price, ema20, ema50, rsi, direction)
        return TimeframeTrend(tf_name, direction, strength, ema20, ema50, rsi)

    @staticmethod
    def _trend_strength(price: float, ema20: float, ema50: float, rsi: float, direction: TrendType) -> float:
        strength = 50.0

        ema_spread = abs(ema20 - ema50) / ema50 * 100
        if ema_spread > 2:
            strength += 20
        elif ema_spread > 1:
            strength += 10

        distance = (price - ema20) / ema20 * 100
        if direction == TrendType.BULLISH:
            if distance > 1:
                strength += 15
            if 55 < rsi < 75:
                strength += 15
        else:
            if distance < -1:
                strength += 15
            if 25 < rsi < 45:
                strength += 15

        return min(100.0, strength)

    @staticmethod
    def determine_alignment(one_hour: TimeframeTrend, fifteen_min: TimeframeTrend,
                            five_min: TimeframeTrend) -> Alignment:
        directions = [one_hour.direction, fifteen_min.direction, five_min.direction]
        if all(d == TrendType.BULLISH for d in directions) or all(d == TrendType.BEARISH for d in directions):
            return Alignment.PERFECT
        if one_hour.direction == fifteen_min.direction and one_hour.direction != TrendType.NEUTRAL:
            return Alignment.STRONG
        if directions.count(TrendType.BULLISH) == 2 or directions.count(TrendType.BEARISH) == 2:
            return Alignment.WEAK
        return Alignment.CONFLICTING

    def find_confluence_zones(self, frames: List[pd.DataFrame]) -> List[ConfluenceZone]:
        """Cluster swing levels from every timeframe within a 0.3% band"""
        cfg = self.config
        levels = []
        for df in frames:
            levels.extend(TechnicalIndicators.swing_levels(df, cfg.SWING_LOOKBACK, cfg.MIN_SWING_BARS))

        zones = []
        for i, level in enumerate(levels):
            matches = 1 + sum(
                1 for other in levels[i + 1:]
                if abs(level - other) / level < cfg.CONFLUENCE_TOLERANCE_PCT
            )
            if matches >= 2:
                zones.append(ConfluenceZone(level=level, strength=min(100.0, matches * 33.33), matches=matches))

        zones.sort(key=lambda z: z.strength, reverse=True)
        return zones[:cfg.MAX_CONFLUENCE_ZONES]

    @staticmethod
    def entry_signal(alignment: Alignment, one_hour: TimeframeTrend, fifteen_min: TimeframeTrend,
                     five_min: TimeframeTrend) -> EntrySignal:
        """BUY/SELL only when the 5M trend confirms a PERFECT or STRONG higher-timeframe read"""
        if alignment not in (Alignment.PERFECT, Alignment.STRONG):
            return EntrySignal.WAIT
        if one_hour.direction == fifteen_min.direction == five_min.direction == TrendType.BULLISH:
            return EntrySignal.BUY
        if one_hour.direction == fifteen_min.direction == five_min.direction == TrendType.BEARISH:
            return EntrySignal.SELL
        return EntrySignal.WAIT

    @staticmethod
    def _score(alignment: Alignment, trends: List[TimeframeTrend], zones: List[ConfluenceZone]) -> float:
        score = {Alignment.PERFECT: 50, Alignment.STRONG: 35, Alignment.WEAK: 15}.get(alignment, 0)
        avg_strength = sum(t.strength for t in trends) / len(trends)
        score += avg_strength * 0.3
        score += min(20, len(zones) * 5)
        return min(100.0, score)

    @staticmethod
    def _explain(score: float, alignment: Alignment, entry: EntrySignal) -> str:
        reasons = [f"Timeframe alignment: {alignment.value}", f"Entry signal: {entry.value}"]
        if score >= 70:
            reasons.append("All timeframes aligned")
        elif score >= 50:
            reasons.append("Major timeframes aligned")
        elif score >= 30:
            reasons.append("Partial alignment")
        else:
            reasons.append("Conflicting timeframes, do not trade")
        return ". ".join(reasons)
