"""
LAYER 1: MARKET REGIME
Is the broad market trending, ranging or too volatile to trade?

Classifies the daily history into TRENDING_BULLISH, TRENDING_BEARISH,
RANGING, VOLATILE or UNCERTAIN using EMA ordering, ADX and the VIX bucket.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List

import pandas as pd
from loguru import logger

from seven_layer_system.config.trading_config import CONFIG, TradingConfig
from seven_layer_system.indicators.technical import TechnicalIndicators, VixCategory, categorize_vix
from seven_layer_system.models import LayerResult


class RegimeType(Enum):
    TRENDING_BULLISH = "TRENDING_BULLISH"
    TRENDING_BEARISH = "TRENDING_BEARISH"
    RANGING = "RANGING"
    VOLATILE = "VOLATILE"
    UNCERTAIN = "UNCERTAIN"


class TrendDirection(Enum):
    UP = "UP"
    DOWN = "DOWN"
    SIDEWAYS = "SIDEWAYS"


class Sentiment(Enum):
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"


@dataclass
class RegimeIndicators:
    adx: float
    ema20: float
    ema50: float
    ema200: float
    rsi: float
    macd: float
    macd_signal: float
    macd_histogram: float


@dataclass
class MarketRegimeResult(LayerResult):
    regime_type: RegimeType
    regime_strength: float    # 0-100
    trend_direction: TrendDirection
    trend_strength: float     # 0-100, ADX scaled
    vix_level: float
    vix_category: VixCategory
    score: float              # 0-100
    market_sentiment: Sentiment
    sentiment_score: float    # -100 to +100
    indicators: RegimeIndicators
    support_levels: List[float]
    resistance_levels: List[float]
    reason: str


class MarketRegimeAnalyzer:
    """Layer 1: regime classification from the daily history"""

    def __init__(self, config: TradingConfig = CONFIG):
        self.config = config

    def analyze(self, spot_price: float, vix_level: float, historical: pd.DataFrame) -> MarketRegimeResult:
        """
        Detect the market regime and score it

        Args:
            spot_price: Current index level (used for key levels when there is no history)
            vix_level: Current India VIX
            historical: Daily OHLCV frame, oldest first (>= 50 bars recommended)

        Returns:
            MarketRegimeResult
        """
        vix_category = categorize_vix(vix_level, self.config)
        indicators = self._calculate_indicators(historical)
        direction, strength = self._detect_trend(historical, indicators)
        sentiment, sentiment_score = self._calculate_sentiment(direction, indicators, vix_level)
        regime = self._classify_regime(direction, strength, vix_category, indicators)
        support, resistance = self._key_levels(historical, spot_price)
        score = self._score(regime, strength, vix_category, indicators)

        if len(historical) < self.config.MIN_TREND_BARS:
            logger.warning(f"L1: only {len(historical)} daily bars, trend treated as SIDEWAYS")

        result = MarketRegimeResult(
            regime_type=regime,
            regime_strength=self._regime_strength(regime, strength),
            trend_direction=direction,
            trend_strength=strength,
            vix_level=vix_level,
            vix_category=vix_category,
            score=score,
            market_sentiment=sentiment,
            sentiment_score=sentiment_score,
            indicators=indicators,
            support_levels=support,
            resistance_levels=resistance,
            reason=self._explain(regime, direction, strength, vix_category, score),
        )
        logger.info(f"L1 Market Regime: {regime.value} | score {score:.1f}")
        return result

    def _calculate_indicators(self, df: pd.DataFrame) -> RegimeIndicators:
        cfg = self.config
        close = df['close']
        macd = TechnicalIndicators.latest_macd(close, cfg.MACD_FAST, cfg.MACD_SLOW, cfg.MACD_SIGNAL)
        return RegimeIndicators(
            adx=TechnicalIndicators.latest_adx(df, cfg.ADX_PERIOD),
            ema20=TechnicalIndicators.latest_ema(close, cfg.EMA_FAST),
            ema50=TechnicalIndicators.latest_ema(close, cfg.EMA_SLOW),
            ema200=TechnicalIndicators.latest_ema(close, cfg.EMA_LONG),
            rsi=TechnicalIndicators.latest_rsi(close, cfg.RSI_PERIOD),
            macd=macd['macd'],
            macd_signal=macd['signal'],
            macd_histogram=macd['histogram'],
        )

    def _detect_trend(self, df: pd.DataFrame, ind: RegimeIndicators):
        if len(df) < self.config.MIN_TREND_BARS:
            return TrendDirection.SIDEWAYS, 0.0

        price = float(df['close'].iloc[-1])
        if price > ind.ema20 > ind.ema50:
            direction = TrendDirection.UP
        elif price < ind.ema20 < ind.ema50:
            direction = TrendDirection.DOWN
        else:
            direction = TrendDirection.SIDEWAYS

        strength = min(100.0, ind.adx * self.config.ADX_STRENGTH_MULTIPLIER)
        return direction, strength

    def _classify_regime(self, direction: TrendDirection, strength: float,
                         vix_category: VixCategory, ind: RegimeIndicators) -> RegimeType:
        if vix_category == VixCategory.EXTREME or ind.adx < self.config.ADX_WEAK:
            return RegimeType.VOLATILE
        if strength > self.config.MIN_TREND_STRENGTH:
            if direction == TrendDirection.UP:
                return RegimeType.TRENDING_BULLISH
            if direction == TrendDirection.DOWN:
                return RegimeType.TRENDING_BEARISH
        if ind.adx < self.config.ADX_TRENDING:
            return RegimeType.RANGING
        return RegimeType.UNCERTAIN

    def _calculate_sentiment(self, direction: TrendDirection, ind: RegimeIndicators, vix: float):
        score = 0.0
        if direction == TrendDirection.UP:
            score += 30
        elif direction == TrendDirection.DOWN:
            score -= 30

        if ind.rsi > 50:
            score += 20
        elif ind.rsi < 50:
            score -= 20

        if ind.macd_histogram > 0:
            score += 20
        elif ind.macd_histogram < 0:
            score -= 20

        if vix < 15:
            score += 15
        elif vix > 25:
            score -= 15

        if ind.ema20 > ind.ema50:
            score += 15
        elif ind.ema20 < ind.ema50:
            score -= 15

        if score > 20:
            return Sentiment.BULLISH, score
        if score < -20:
            return Sentiment.BEARISH, score
        return Sentiment.NEUTRAL, score

    @staticmethod
    def _regime_strength(regime: RegimeType, strength: float) -> float:
        if regime in (RegimeType.TRENDING_BULLISH, RegimeType.TRENDING_BEARISH):
            return strength
        if regime == RegimeType.RANGING:
            return 100 - strength  # strong range = low ADX
        return 50.0

    def _score(self, regime: RegimeType, strength: float,
               vix_category: VixCategory, ind: RegimeIndicators) -> float:
        score = {
            RegimeType.TRENDING_BULLISH: 40,
            RegimeType.TRENDING_BEARISH: 40,
            RegimeType.RANGING: 25,
            RegimeType.VOLATILE: 10,
        }.get(regime, 0)

        score += strength * 0.3
        score += {VixCategory.LOW: 20, VixCategory.MEDIUM: 15, VixCategory.HIGH: 5}.get(vix_category, 0)

        if ind.adx > self.config.ADX_TRENDING:
            score += 10
        elif ind.adx > self.config.ADX_WEAK:
            score += 5

        return min(100.0, max(0.0, score))

    @staticmethod
    def _key_levels(df: pd.DataFrame, spot_price: float):
        if df.empty:
            recent_high = recent_low = spot_price
        else:
            recent_high = float(df['high'].iloc[-20:].max())
            recent_low = float(df['low'].iloc[-20:].min())
        return (
            [recent_low * 0.99, recent_low * 0.98],
            [recent_high * 1.01, recent_high * 1.02],
        )

    @staticmethod
    def _explain(regime: RegimeType, direction: TrendDirection, strength: float,
                 vix_category: VixCategory, score: float) -> str:
        reasons = [
            f"Market regime: {regime.value}",
            f"Trend: {direction.value} with {strength:.0f}% strength",
            f"VIX: {vix_category.value}",
        ]
        if score >= 70:
            reasons.append("Strong favorable conditions for trading")
        elif score >= 50:
            reasons.append("Moderate conditions, proceed with caution")
        elif score >= 30:
            reasons.append("Weak conditions, be selective")
        else:
            reasons.append("Unfavorable conditions, avoid trading")
        return ". ".join(reasons)
