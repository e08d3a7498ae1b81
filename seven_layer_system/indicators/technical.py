"""
Technical indicators shared by the analysis layers
Implements EMA, RSI, MACD, ADX, ATR, historical volatility and swing levels
"""

from enum import Enum
from typing import Dict, List

import numpy as np
import pandas as pd

from seven_layer_system.config.trading_config import CONFIG, TradingConfig


class VixCategory(Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    EXTREME = "EXTREME"


def categorize_vix(vix: float, config: TradingConfig = CONFIG) -> VixCategory:
    """Bucket India VIX: LOW (<15), MEDIUM (<20), HIGH (<30), EXTREME"""
    if vix < config.VIX_LOW:
        return VixCategory.LOW
    if vix < config.VIX_MEDIUM:
        return VixCategory.MEDIUM
    if vix < config.VIX_HIGH:
        return VixCategory.HIGH
    return VixCategory.EXTREME


class TechnicalIndicators:
    """Class containing all technical indicator calculations"""

    @staticmethod
    def calculate_ema(data: pd.Series, period: int) -> pd.Series:
        """
        Calculate Exponential Moving Average

        Args:
            data: Price series (typically close prices)
            period: EMA period

        Returns:
            EMA series
        """
        return data.ewm(span=period, adjust=False).mean()

    @staticmethod
    def calculate_rsi(data: pd.Series, period: int = 14) -> pd.Series:
        """
        Calculate Relative Strength Index using Wilder's smoothing

        A window with neither gains nor losses reads 50.

        Args:
            data: Price series
            period: RSI period (default 14)

        Returns:
            RSI series (NaN until `period` changes are available)
        """
        delta = data.diff()

        gains = delta.clip(lower=0)
        losses = -delta.clip(upper=0)

        # Wilder's smoothing (EMA with alpha = 1/period)
        avg_gain = gains.ewm(alpha=1 / period, min_periods=period, adjust=False).mean()
        avg_loss = losses.ewm(alpha=1 / period, min_periods=period, adjust=False).mean()

        rs = avg_gain / avg_loss
        rsi = 100 - (100 / (1 + rs))

        flat = (avg_gain == 0) & (avg_loss == 0)
        return rsi.mask(flat, 50.0)

    @staticmethod
    def calculate_macd(
        data: pd.Series,
        fast_period: int = 12,
        slow_period: int = 26,
        signal_period: int = 9
    ) -> Dict[str, pd.Series]:
        """
        Calculate MACD (Moving Average Convergence Divergence)

        Returns:
            Dictionary with MACD, Signal, and Histogram series
        """
        ema_fast = TechnicalIndicators.calculate_ema(data, fast_period)
        ema_slow = TechnicalIndicators.calculate_ema(data, slow_period)

        macd_line = ema_fast - ema_slow
        signal_line = TechnicalIndicators.calculate_ema(macd_line, signal_period)
        histogram = macd_line - signal_line

        return {
            'MACD': macd_line,
            'Signal': signal_line,
            'Histogram': histogram
        }

    @staticmethod
    def true_range(data: pd.DataFrame) -> pd.Series:
        prev_close = data['close'].shift(1)
        tr1 = data['high'] - data['low']
        tr2 = (data['high'] - prev_close).abs()
        tr3 = (data['low'] - prev_close).abs()
        return pd.concat([tr1, tr2, tr3], axis=1).max(axis=1)

    @staticmethod
    def calculate_atr(data: pd.DataFrame, period: int = 14) -> pd.Series:
        """
        Calculate Average True Range with Wilder's smoothing

        Args:
            data: DataFrame with OHLC data
            period: ATR period (default 14)

        Returns:
            ATR series
        """
        return TechnicalIndicators.true_range(data).ewm(alpha=1 / period, adjust=False).mean()

    @staticmethod
    def calculate_adx(data: pd.DataFrame, period: int = 14) -> pd.Series:
        """
        Calculate Average Directional Index (Wilder)

        +DM/-DM and true range are Wilder-smoothed, DX is derived from the
        directional indicators and smoothed again into ADX.

        Args:
            data: DataFrame with OHLC data
            period: ADX period (default 14)

        Returns:
            ADX series in [0, 100]
        """
        high, low = data['high'], data['low']
        up_move = high.diff()
        down_move = -low.diff()

        plus_dm = up_move.where((up_move > down_move) & (up_move > 0), 0.0)
        minus_dm = down_move.where((down_move > up_move) & (down_move > 0), 0.0)

        alpha = 1 / period
        atr = TechnicalIndicators.calculate_atr(data, period)
        plus_di = 100 * plus_dm.ewm(alpha=alpha, adjust=False).mean() / atr
        minus_di = 100 * minus_dm.ewm(alpha=alpha, adjust=False).mean() / atr

        di_sum = plus_di + minus_di
        dx = (100 * (plus_di - minus_di).abs() / di_sum).where(di_sum > 0, 0.0)

        return dx.ewm(alpha=alpha, adjust=False).mean()

    @staticmethod
    def historical_volatility(close: pd.Series, period: int = 20, trading_days: int = 252) -> float:
        """
        Annualised historical volatility in percent

        Population stdev of the last `period` log returns x sqrt(trading_days) x 100.
        Returns 0.0 when fewer than period + 1 closes are available.
        """
        if len(close) < period + 1:
            return 0.0
        window = close.iloc[-(period + 1):].to_numpy(dtype=float)
        log_returns = np.diff(np.log(window))
        return float(np.std(log_returns) * np.sqrt(trading_days) * 100)

    @staticmethod
    def swing_levels(data: pd.DataFrame, lookback: int = 50, min_bars: int = 20) -> List[float]:
        """
        Two-bar fractal swing highs and lows over the last `lookback` bars

        Returns:
            Swing levels in chronological order (highs and lows interleaved);
            empty when fewer than `min_bars` bars are available
        """
        if len(data) < min_bars:
            return []

        recent = data.iloc[-lookback:]
        highs = recent['high'].to_numpy(dtype=float)
        lows = recent['low'].to_numpy(dtype=float)

        levels = []
        for i in range(2, len(recent) - 2):
            if highs[i] > max(highs[i - 2], highs[i - 1], highs[i + 1], highs[i + 2]):
                levels.append(float(highs[i]))
            if lows[i] < min(lows[i - 2], lows[i - 1], lows[i + 1], lows[i + 2]):
                levels.append(float(lows[i]))
        return levels

    # ------------------------------------------------------------------
    # Scalar wrappers with neutral fallbacks for short histories
    # ------------------------------------------------------------------

    @staticmethod
    def latest_ema(close: pd.Series, period: int) -> float:
        """Last EMA value; falls back to the last close, or 0 for an empty series"""
        if len(close) == 0:
            return 0.0
        if len(close) < period:
            return float(close.iloc[-1])
        return float(TechnicalIndicators.calculate_ema(close, period).iloc[-1])

    @staticmethod
    def latest_rsi(close: pd.Series, period: int = 14) -> float:
        if len(close) < period + 1:
            return 50.0
        value = TechnicalIndicators.calculate_rsi(close, period).iloc[-1]
        return 50.0 if pd.isna(value) else float(value)

    @staticmethod
    def latest_adx(data: pd.DataFrame, period: int = 14) -> float:
        if len(data) < period + 1:
            return 0.0
        value = TechnicalIndicators.calculate_adx(data, period).iloc[-1]
        return 0.0 if pd.isna(value) else float(value)

    @staticmethod
    def latest_macd(close: pd.Series, fast: int = 12, slow: int = 26, signal: int = 9) -> Dict[str, float]:
        if len(close) < 2:
            return {'macd': 0.0, 'signal': 0.0, 'histogram': 0.0}
        macd = TechnicalIndicators.calculate_macd(close, fast, slow, signal)
        return {
            'macd': float(macd['MACD'].iloc[-1]),
            'signal': float(macd['Signal'].iloc[-1]),
            'histogram': float(macd['Histogram'].iloc[-1]),
        }
