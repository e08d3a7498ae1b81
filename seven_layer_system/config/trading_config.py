"""
Trading Configuration
All thresholds and constants used by the seven analysis layers
"""

from dataclasses import dataclass
from typing import Dict


@dataclass
class TradingConfig:
    """Main signal-engine configuration"""

    # Market Hours (IST)
    TIMEZONE: str = 'Asia/Kolkata'
    MARKET_START_HOUR: int = 9
    MARKET_START_MINUTE: int = 15
    MARKET_END_HOUR: int = 15
    MARKET_END_MINUTE: int = 30

    # Technical Indicators
    EMA_FAST: int = 20
    EMA_SLOW: int = 50
    EMA_LONG: int = 200
    RSI_PERIOD: int = 14
    ADX_PERIOD: int = 14
    MACD_FAST: int = 12
    MACD_SLOW: int = 26
    MACD_SIGNAL: int = 9
    HV_PERIOD: int = 20
    TRADING_DAYS_PER_YEAR: int = 252
    MIN_TREND_BARS: int = 50           # below this a series is treated as trendless
    SWING_LOOKBACK: int = 50
    MIN_SWING_BARS: int = 20

    # VIX buckets
    VIX_LOW: float = 15.0
    VIX_MEDIUM: float = 20.0
    VIX_HIGH: float = 30.0

    # L1: Market regime
    ADX_TRENDING: float = 25.0
    ADX_WEAK: float = 20.0
    ADX_STRENGTH_MULTIPLIER: float = 3.33
    MIN_TREND_STRENGTH: float = 25.0

    # L2: Price action
    ZONE_VOLUME_MULTIPLIER: float = 1.5
    ZONE_RANGE_MULTIPLIER: float = 1.3
    ZONE_MOVE_MULTIPLIER: float = 3.0
    ZONE_LOOKBACK: int = 10
    ZONE_FORWARD_BARS: int = 5
    ZONE_TOLERANCE_PCT: float = 0.002  # 0.2% band around a zone
    MAX_ZONES: int = 5
    ORDER_BLOCK_BODY_MULTIPLIER: float = 2.0
    ORDER_BLOCK_STRENGTH: float = 80.0
    MAX_ORDER_BLOCKS: int = 10
    FVG_STRENGTH: float = 70.0
    MAX_FVGS: int = 5
    STRUCTURE_BARS: int = 20

    # L3: Multi-timeframe
    CONFLUENCE_TOLERANCE_PCT: float = 0.003  # 0.3% clustering band
    MAX_CONFLUENCE_ZONES: int = 5

    # L5: Writer ratio gate
    MIN_WRITER_RATIO: float = 2.5
    IDEAL_WRITER_RATIO: float = 3.0
    DEGENERATE_WRITER_RATIO: float = 999.0

    # L6: Risk regime
    OPEN_BLACKOUT_MINUTES: int = 15
    CLOSE_BLACKOUT_MINUTES: int = 15
    LUNCH_HOUR: int = 12
    EVENT_WINDOW_BEFORE_MINUTES: int = 120
    EVENT_WINDOW_AFTER_MINUTES: int = 60
    EXTREME_VIX: float = 30.0
    LOW_LIQUIDITY_RATIO: float = 0.5

    # L7: Portfolio
    MAX_PORTFOLIO_RISK_PCT: float = 10.0
    KELLY_MULTIPLIER: float = 0.25     # quarter-Kelly
    KELLY_CAP: float = 0.25
    DEFAULT_KELLY_FRACTION: float = 0.02
    MIN_KELLY_TRADES: int = 20
    MIN_WIN_RATE: float = 0.40
    MIN_PROFIT_FACTOR: float = 1.2
    DEFAULT_RISK_PER_TRADE_PCT: float = 2.0
    DEFAULT_MAX_OPEN_POSITIONS: int = 5

    # Orchestrator
    DEFAULT_STOP_LOSS_PCT: float = 0.02
    DEFAULT_TARGET_PCT: float = 0.05
    EXECUTE_THRESHOLD: float = 70.0
    WAIT_THRESHOLD: float = 50.0
    LAYER_WEIGHTS: dict = None

    def __post_init__(self):
        """Initialize derived attributes"""
        if self.LAYER_WEIGHTS is None:
            # writer ratio counts double
            self.LAYER_WEIGHTS = {
                'layer1': 1, 'layer2': 1, 'layer3': 1, 'layer4': 1,
                'layer5': 2, 'layer6': 1, 'layer7': 1,
            }

    @property
    def total_weight(self) -> float:
        return float(sum(self.LAYER_WEIGHTS.values()))

    def to_dict(self) -> Dict:
        """Export the headline thresholds as a dictionary"""
        return {
            'timezone': self.TIMEZONE,
            'min_writer_ratio': self.MIN_WRITER_RATIO,
            'ideal_writer_ratio': self.IDEAL_WRITER_RATIO,
            'max_portfolio_risk': f"{self.MAX_PORTFOLIO_RISK_PCT}%",
            'kelly_multiplier': self.KELLY_MULTIPLIER,
            'stop_loss': f"{self.DEFAULT_STOP_LOSS_PCT*100}%",
            'target': f"{self.DEFAULT_TARGET_PCT*100}%",
            'execute_threshold': self.EXECUTE_THRESHOLD,
            'wait_threshold': self.WAIT_THRESHOLD,
            'layer_weights': dict(self.LAYER_WEIGHTS),
        }


# Singleton instance
CONFIG = TradingConfig()
