"""
Seven analysis layers, evaluated in order by the orchestrator:

L1 market regime, L2 price action, L3 multi-timeframe alignment,
L4 volatility, L5 writer ratio (mandatory veto), L6 risk regime,
L7 portfolio sizing.
"""

from .market_regime import MarketRegimeAnalyzer, MarketRegimeResult, RegimeType, TrendDirection
from .price_action import PriceActionAnalyzer, PriceActionResult, PriceLevel, MarketStructure, Zone, ZoneKind
from .multi_timeframe import MultiTimeframeAligner, MultiTimeframeResult, Alignment, EntrySignal, TrendType
from .volatility import VolatilityAnalyzer, VolatilityResult, VolRegime, OptionPricing, VixTrend
from .writer_ratio import WriterRatioGate, WriterRatioResult, compute_writer_ratio
from .risk_regime import RiskRegimeFilter, RiskRegimeResult, RiskLevel
from .portfolio import PortfolioSizer, PortfolioResult, ProposedTrade

__all__ = [
    'MarketRegimeAnalyzer', 'MarketRegimeResult', 'RegimeType', 'TrendDirection',
    'PriceActionAnalyzer', 'PriceActionResult', 'PriceLevel', 'MarketStructure', 'Zone', 'ZoneKind',
    'MultiTimeframeAligner', 'MultiTimeframeResult', 'Alignment', 'EntrySignal', 'TrendType',
    'VolatilityAnalyzer', 'VolatilityResult', 'VolRegime', 'OptionPricing', 'VixTrend',
    'WriterRatioGate', 'WriterRatioResult', 'compute_writer_ratio',
    'RiskRegimeFilter', 'RiskRegimeResult', 'RiskLevel',
    'PortfolioSizer', 'PortfolioResult', 'ProposedTrade',
]
