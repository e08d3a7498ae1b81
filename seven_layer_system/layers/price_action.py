"""
LAYER 2: PRICE ACTION
Where is price relative to institutional supply/demand?

Runs on the 15-minute series: supply/demand zones, order blocks, fair
value gaps, swing structure, structure breaks and liquidity sweeps.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import pandas as pd
from loguru import logger

from seven_layer_system.config.trading_config import CONFIG, TradingConfig
from seven_layer_system.models import LayerResult


class ZoneKind(Enum):
    SUPPLY = "SUPPLY"
    DEMAND = "DEMAND"
    ORDER_BLOCK = "ORDER_BLOCK"
    FVG = "FVG"


class PriceLevel(Enum):
    AT_DEMAND = "AT_DEMAND"
    AT_SUPPLY = "AT_SUPPLY"
    IN_RANGE = "IN_RANGE"
    NO_ZONE = "NO_ZONE"


class MarketStructure(Enum):
    HIGHER_HIGHS = "HIGHER_HIGHS"
    LOWER_LOWS = "LOWER_LOWS"
    RANGING = "RANGING"


class Bias(Enum):
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"


@dataclass
class Zone:
    kind: ZoneKind
    high: float
    low: float
    strength: float      # 0-100
    times_tested: int = 0
    is_fresh: bool = True

    def contains(self, price: float, tolerance: float) -> bool:
        return self.low * (1 - tolerance) <= price <= self.high * (1 + tolerance)


@dataclass
class PriceActionResult(LayerResult):
    score: float
    price_level: PriceLevel
    demand_zones: List[Zone]
    supply_zones: List[Zone]
    order_blocks: List[Zone]
    fair_value_gaps: List[Zone]
    market_structure: MarketStructure
    structure_break: bool
    liquidity_sweep: bool
    trading_bias: Bias
    reason: str
    break_direction: Optional[Bias] = None
    sweep_direction: Optional[Bias] = None
    notes: List[str] = field(default_factory=list)


class PriceActionAnalyzer:
    """Layer 2: zones and structure on the 15-minute series"""

    def __init__(self, config: TradingConfig = CONFIG):
        self.config = config

    def analyze(self, current_price: float, df: pd.DataFrame) -> PriceActionResult:
        """
        Analyze price action around the current price

        Args:
            current_price: Current index level
            df: 15-minute OHLCV frame, oldest first

        Returns:
            PriceActionResult
        """
        notes = []
        if len(df) < self.config.STRUCTURE_BARS:
            notes.append(f"Only {len(df)} bars available; structure treated as ranging")

        demand_zones = self.identify_zones(df, ZoneKind.DEMAND)
        supply_zones = self.identify_zones(df, ZoneKind.SUPPLY)
        order_blocks = self.identify_order_blocks(df)
        fair_value_gaps = self.identify_fair_value_gaps(df)

        structure = self.analyze_market_structure(df)
        break_direction = self.detect_structure_break(df)
        sweep_direction = self.detect_liquidity_sweep(df)
        price_level = self.determine_price_level(current_price, demand_zones, supply_zones)

        bias = self._trading_bias(price_level, structure, break_direction, sweep_direction)
        score = self._score(price_level, demand_zones, supply_zones, structure,
                            break_direction is not None, sweep_direction is not None)

        result = PriceActionResult(
            score=score,
            price_level=price_level,
            demand_zones=demand_zones,
            supply_zones=supply_zones,
            order_blocks=order_blocks,
            fair_value_gaps=fair_value_gaps,
            market_structure=structure,
            structure_break=break_direction is not None,
            liquidity_sweep=sweep_direction is not None,
            trading_bias=bias,
            reason=self._explain(score, price_level, bias, break_direction),
            break_direction=break_direction,
            sweep_direction=sweep_direction,
            notes=notes,
        )
        logger.info(f"L2 Price Action: {price_level.value} | bias {bias.value} | score {score:.1f}")
        return result

    # ------------------------------------------------------------------
    # Zones
    # ------------------------------------------------------------------

    def identify_zones(self, df: pd.DataFrame, kind: ZoneKind) -> List[Zone]:
        """Demand: bullish candle closing above the prior high on a volume spike. Supply mirrors it."""
        opens = df['open'].to_numpy(dtype=float)
        highs = df['high'].to_numpy(dtype=float)
        lows = df['low'].to_numpy(dtype=float)
        closes = df['close'].to_numpy(dtype=float)
        volumes = df['volume'].to_numpy(dtype=float)

        zones = []
        for i in range(2, len(df) - 2):
            if kind == ZoneKind.DEMAND:
                engulfing = closes[i] > opens[i] and closes[i] > highs[i - 1]
            else:
                engulfing = closes[i] < opens[i] and closes[i] < lows[i - 1]
            has_volume = volumes[i] >= volumes[i - 1] * self.config.ZONE_VOLUME_MULTIPLIER

            if engulfing and has_volume:
                touches = self._count_touches(lows, highs, lows[i], highs[i], i)
                zones.append(Zone(
                    kind=kind,
                    high=float(highs[i]),
                    low=float(lows[i]),
                    strength=self._zone_strength(highs, lows, closes, volumes, i),
                    times_tested=touches,
                    is_fresh=touches == 0,
                ))

        zones.sort(key=lambda z: z.strength, reverse=True)
        return zones[:self.config.MAX_ZONES]

    def _zone_strength(self, highs, lows, closes, volumes, i: int) -> float:
        cfg = self.config
        start = max(0, i - cfg.ZONE_LOOKBACK)
        prior = slice(start, i)
        avg_volume = volumes[prior].mean()
        avg_range = (highs[prior] - lows[prior]).mean()

        strength = 50.0
        if volumes[i] > avg_volume * cfg.ZONE_VOLUME_MULTIPLIER:
            strength += 20
        if highs[i] - lows[i] > avg_range * cfg.ZONE_RANGE_MULTIPLIER:
            strength += 15
        forward = i + cfg.ZONE_FORWARD_BARS
        if forward < len(closes) and abs(closes[forward] - closes[i]) > avg_range * cfg.ZONE_MOVE_MULTIPLIER:
            strength += 15
        return min(100.0, strength)

    @staticmethod
    def _count_touches(lows, highs, zone_low: float, zone_high: float, start: int) -> int:
        later = slice(start + 1, len(lows))
        return int(((lows[later] <= zone_high) & (highs[later] >= zone_low)).sum())

    def identify_order_blocks(self, df: pd.DataFrame) -> List[Zone]:
        """Last opposite-colour candle before an impulsive candle at least twice its body"""
        opens = df['open'].to_numpy(dtype=float)
        highs = df['high'].to_numpy(dtype=float)
        lows = df['low'].to_numpy(dtype=float)
        closes = df['close'].to_numpy(dtype=float)
        multiplier = self.config.ORDER_BLOCK_BODY_MULTIPLIER

        blocks = []
        for i in range(3, len(df) - 1):
            prev_body = closes[i - 1] - opens[i - 1]
            body = closes[i] - opens[i]
            bullish_block = prev_body < 0 and body > 0 and body >= -prev_body * multiplier
            bearish_block = prev_body > 0 and body < 0 and -body >= prev_body * multiplier
            if bullish_block or bearish_block:
                blocks.append(Zone(
                    kind=ZoneKind.ORDER_BLOCK,
                    high=float(highs[i - 1]),
                    low=float(lows[i - 1]),
                    strength=self.config.ORDER_BLOCK_STRENGTH,
                ))
        return blocks[-self.config.MAX_ORDER_BLOCKS:]

    def identify_fair_value_gaps(self, df: pd.DataFrame) -> List[Zone]:
        opens = df['open'].to_numpy(dtype=float)
        highs = df['high'].to_numpy(dtype=float)
        lows = df['low'].to_numpy(dtype=float)
        closes = df['close'].to_numpy(dtype=float)

        gaps = []
        for i in range(1, len(df) - 1):
            if lows[i + 1] > highs[i - 1] and closes[i] > opens[i]:
                gaps.append(Zone(ZoneKind.FVG, high=float(lows[i + 1]), low=float(highs[i - 1]),
                                 strength=self.config.FVG_STRENGTH))
            if highs[i + 1] < lows[i - 1] and closes[i] < opens[i]:
                gaps.append(Zone(ZoneKind.FVG, high=float(lows[i - 1]), low=float(highs[i + 1]),
                                 strength=self.config.FVG_STRENGTH))
        return gaps[-self.config.MAX_FVGS:]

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    def analyze_market_structure(self, df: pd.DataFrame) -> MarketStructure:
        if len(df) < self.config.STRUCTURE_BARS:
            return MarketStructure.RANGING

        recent = df.iloc[-self.config.STRUCTURE_BARS:]
        recent_high = recent['high'].iloc[-5:].max()
        previous_high = recent['high'].iloc[:10].max()
        recent_low = recent['low'].iloc[-5:].min()
        previous_low = recent['low'].iloc[:10].min()

        if recent_high > previous_high and recent_low > previous_low:
            return MarketStructure.HIGHER_HIGHS
        if recent_high < previous_high and recent_low < previous_low:
            return MarketStructure.LOWER_LOWS
        return MarketStructure.RANGING

    @staticmethod
    def detect_structure_break(df: pd.DataFrame) -> Optional[Bias]:
        """Last close beyond the extremes of the first five of the last ten bars"""
        if len(df) < 10:
            return None
        window = df.iloc[-10:-5]
        close = df['close'].iloc[-1]
        if close > window['high'].max():
            return Bias.BULLISH
        if close < window['low'].min():
            return Bias.BEARISH
        return None

    @staticmethod
    def detect_liquidity_sweep(df: pd.DataFrame) -> Optional[Bias]:
        """Last bar takes out the previous bar's extreme and closes back the other way"""
        if len(df) < 5:
            return None
        current = df.iloc[-1]
        prev = df.iloc[-2]
        if current['low'] < prev['low'] and current['close'] > current['open'] and current['close'] > prev['close']:
            return Bias.BULLISH
        if current['high'] > prev['high'] and current['close'] < current['open'] and current['close'] < prev['close']:
            return Bias.BEARISH
        return None

    def determine_price_level(self, price: float, demand_zones: List[Zone],
                              supply_zones: List[Zone]) -> PriceLevel:
        tolerance = self.config.ZONE_TOLERANCE_PCT
        if any(zone.contains(price, tolerance) for zone in demand_zones):
            return PriceLevel.AT_DEMAND
        if any(zone.contains(price, tolerance) for zone in supply_zones):
            return PriceLevel.AT_SUPPLY

        demand_below = any(zone.high < price for zone in demand_zones)
        supply_above = any(zone.low > price for zone in supply_zones)
        if demand_below and supply_above:
            return PriceLevel.IN_RANGE
        return PriceLevel.NO_ZONE

    # ------------------------------------------------------------------
    # Bias and score
    # ------------------------------------------------------------------

    @staticmethod
    def _trading_bias(level: PriceLevel, structure: MarketStructure,
                      break_direction: Optional[Bias], sweep_direction: Optional[Bias]) -> Bias:
        points = {Bias.BULLISH: 0, Bias.BEARISH: 0}
        if level == PriceLevel.AT_DEMAND:
            points[Bias.BULLISH] += 2
        elif level == PriceLevel.AT_SUPPLY:
            points[Bias.BEARISH] += 2

        if structure == MarketStructure.HIGHER_HIGHS:
            points[Bias.BULLISH] += 2
        elif structure == MarketStructure.LOWER_LOWS:
            points[Bias.BEARISH] += 2

        for direction in (break_direction, sweep_direction):
            if direction is not None:
                points[direction] += 1

        if points[Bias.BULLISH] > points[Bias.BEARISH] + 1:
            return Bias.BULLISH
        if points[Bias.BEARISH] > points[Bias.BULLISH] + 1:
            return Bias.BEARISH
        return Bias.NEUTRAL

    @staticmethod
    def _score(level: PriceLevel, demand_zones: List[Zone], supply_zones: List[Zone],
               structure: MarketStructure, structure_break: bool, liquidity_sweep: bool) -> float:
        score = 0.0
        if level in (PriceLevel.AT_DEMAND, PriceLevel.AT_SUPPLY):
            score += 40
            zones = demand_zones if level == PriceLevel.AT_DEMAND else supply_zones
            if zones and zones[0].is_fresh:
                score += 20
        else:
            score += 10

        score += 5 if structure == MarketStructure.RANGING else 20
        if structure_break:
            score += 10
        if liquidity_sweep:
            score += 10
        return min(100.0, score)

    @staticmethod
    def _explain(score: float, level: PriceLevel, bias: Bias, break_direction: Optional[Bias]) -> str:
        reasons = [f"Price level: {level.value}", f"Trading bias: {bias.value}"]
        if break_direction is not None:
            reasons.append(f"{break_direction.value.capitalize()} structure break detected")
        if score >= 70:
            reasons.append("Strong price action setup")
        elif score >= 50:
            reasons.append("Moderate price action setup")
        else:
            reasons.append("Weak price action, wait for better setup")
        return ". ".join(reasons)
