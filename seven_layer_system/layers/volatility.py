"""
LAYER 4: VOLATILITY
Are options cheap or expensive to buy right now?

Compares ATM implied volatility against realised (historical) volatility
and the recent VIX distribution.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List

import numpy as np
import pandas as pd
from loguru import logger

from seven_layer_system.config.trading_config import CONFIG, TradingConfig
from seven_layer_system.indicators.technical import TechnicalIndicators, VixCategory, categorize_vix
from seven_layer_system.models import LayerResult


class VixTrend(Enum):
    RISING = "RISING"
    FALLING = "FALLING"
    STABLE = "STABLE"


class IVRank(Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class VolRegime(Enum):
    COMPRESSED = "COMPRESSED"
    NORMAL = "NORMAL"
    ELEVATED = "ELEVATED"
    EXTREME = "EXTREME"


class OptionPricing(Enum):
    CHEAP = "CHEAP"
    FAIR = "FAIR"
    EXPENSIVE = "EXPENSIVE"


STRIKE_SUGGESTIONS = {
    VolRegime.COMPRESSED: "ATM or 1-2 strikes OTM (Delta 0.40-0.60)",
    VolRegime.NORMAL: "ATM or 1-2 strikes OTM (Delta 0.40-0.60)",
    VolRegime.ELEVATED: "2-3 strikes OTM (Delta 0.25-0.40)",
    VolRegime.EXTREME: "3-5 strikes OTM (Delta 0.15-0.30) or avoid trading",
}


@dataclass
class VolatilityResult(LayerResult):
    score: float
    vix_level: float
    vix_category: VixCategory
    vix_trend: VixTrend
    iv_percentile: float     # 0-100, share of VIX history below current IV
    iv_rank: IVRank
    historical_vol: float    # annualised %, 0 when unavailable
    implied_vol: float
    iv_hv_ratio: float
    vol_regime: VolRegime
    option_pricing: OptionPricing
    optimal_strike_suggestion: str
    reason: str


class VolatilityAnalyzer:
    """Layer 4: implied vs realised volatility"""

    def __init__(self, config: TradingConfig = CONFIG):
        self.config = config

    def analyze(self, vix_current: float, vix_history: List[float], strike_iv: float,
                historical: pd.DataFrame) -> VolatilityResult:
        """
        Args:
            vix_current: Current India VIX
            vix_history: Recent VIX closes, oldest first
            strike_iv: ATM implied volatility (percent)
            historical: Daily OHLCV frame used for realised volatility
        """
        cfg = self.config
        vix_category = categorize_vix(vix_current, cfg)
        vix_trend = self.vix_trend(vix_history)
        hv = TechnicalIndicators.historical_volatility(historical['close'], cfg.HV_PERIOD, cfg.TRADING_DAYS_PER_YEAR)
        iv_percentile = self.iv_percentile(strike_iv, vix_history)
        iv_rank = self._rank_iv(iv_percentile)

        notes = []
        if hv > 0:
            ratio = strike_iv / hv
        else:
            ratio = 1.0
            notes.append("Historical volatility unavailable, IV/HV treated as neutral")
            logger.warning(f"L4: only {len(historical)} daily bars, IV/HV ratio set to 1.0")

        regime = self._vol_regime(ratio)
        pricing = self._option_pricing(ratio, iv_percentile)
        score = self._score(vix_category, vix_trend, iv_percentile, regime, pricing)

        result = VolatilityResult(
            score=score,
            vix_level=vix_current,
            vix_category=vix_category,
            vix_trend=vix_trend,
            iv_percentile=iv_percentile,
            iv_rank=iv_rank,
            historical_vol=hv,
            implied_vol=strike_iv,
            iv_hv_ratio=ratio,
            vol_regime=regime,
            option_pricing=pricing,
            optimal_strike_suggestion=STRIKE_SUGGESTIONS[regime],
            reason=self._explain(score, vix_category, regime, pricing, notes),
        )
        logger.info(f"L4 Volatility: {regime.value} / {pricing.value} | IV/HV {ratio:.2f} | score {score:.1f}")
        return result

    @staticmethod
    def vix_trend(vix_history: List[float]) -> VixTrend:
        """Mean of the last 5 readings against the 5 before; +/-5% moves count"""
        if len(vix_history) < 5:
            return VixTrend.STABLE
        recent = vix_history[-5:]
        older = vix_history[-10:-5]
        if not older:
            return VixTrend.STABLE

        older_avg = float(np.mean(older))
        if older_avg == 0:
            return VixTrend.STABLE
        change = (float(np.mean(recent)) - older_avg) / older_avg * 100
        if change > 5:
            return VixTrend.RISING
        if change < -5:
            return VixTrend.FALLING
        return VixTrend.STABLE

    @staticmethod
    def iv_percentile(current_iv: float, vix_history: List[float]) -> float:
        if not vix_history:
            return 50.0
        lower = sum(1 for v in vix_history if v < current_iv)
        return lower / len(vix_history) * 100

    @staticmethod
    def _rank_iv(percentile: float) -> IVRank:
        if percentile < 30:
            return IVRank.LOW
        if percentile < 70:
            return IVRank.MEDIUM
        return IVRank.HIGH

    @staticmethod
    def _vol_regime(ratio: float) -> VolRegime:
        if ratio < 0.9:
            return VolRegime.COMPRESSED
        if ratio < 1.1:
            return VolRegime.NORMAL
        if ratio < 1.3:
            return VolRegime.ELEVATED
        return VolRegime.EXTREME

    @staticmethod
    def _option_pricing(ratio: float, percentile: float) -> OptionPricing:
        if ratio < 0.9 or percentile < 25:
            return OptionPricing.CHEAP
        if ratio > 1.2 or percentile > 75:
            return OptionPricing.EXPENSIVE
        return OptionPricing.FAIR

    @staticmethod
    def _score(vix_category: VixCategory, vix_trend: VixTrend, percentile: float,
               regime: VolRegime, pricing: OptionPricing) -> float:
        score = {VixCategory.LOW: 30, VixCategory.MEDIUM: 25, VixCategory.HIGH: 15}.get(vix_category, 5)
        score += {VixTrend.FALLING: 15, VixTrend.STABLE: 10}.get(vix_trend, 5)

        if percentile < 25:
            score += 25
        elif percentile < 50:
            score += 20
        elif percentile < 75:
            score += 10
        else:
            score += 5

        score += {VolRegime.COMPRESSED: 20, VolRegime.NORMAL: 15, VolRegime.ELEVATED: 5}.get(regime, 0)
        score += {OptionPricing.CHEAP: 10, OptionPricing.FAIR: 5}.get(pricing, 0)
        return float(min(100, score))

    @staticmethod
    def _explain(score: float, vix_category: VixCategory, regime: VolRegime,
                 pricing: OptionPricing, notes: List[str]) -> str:
        reasons = [
            f"VIX: {vix_category.value}",
            f"Volatility regime: {regime.value}",
            f"Option pricing: {pricing.value}",
        ]
        reasons.extend(notes)
        if score >= 70:
            reasons.append("Excellent volatility conditions for option buying")
        elif score >= 50:
            reasons.append("Good volatility conditions")
        elif score >= 30:
            reasons.append("Fair volatility, be selective")
        else:
            reasons.append("Poor volatility conditions, options are expensive")
        return ". ".join(reasons)
