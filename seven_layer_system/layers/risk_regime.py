"""
LAYER 6: RISK REGIME
Is this a safe moment to open a position at all?

Blocks trading around the open and close, in the lunch hour, near major
scheduled events, on circuit breakers, extreme VIX, thin volume and on
expiry day. Monday and Friday raise the risk level but stay tradable.
"""

from dataclasses import dataclass
from datetime import datetime, time
from enum import Enum
from typing import List, Optional

import pytz
from loguru import logger

from seven_layer_system.config.trading_config import CONFIG, TradingConfig
from seven_layer_system.models import EventSeverity, LayerResult, MarketEvent, RiskContext


class RiskLevel(Enum):
    VERY_LOW = "VERY_LOW"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    EXTREME = "EXTREME"


class DayRisk(Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


@dataclass
class TimeRestrictions:
    market_open: bool   # inside the opening blackout
    market_close: bool  # inside the closing blackout
    lunch_hour: bool
    allowed: bool


@dataclass
class EventRestrictions:
    major_event_near: bool
    allowed: bool
    event_type: Optional[str] = None
    minutes_to_event: Optional[float] = None


@dataclass
class MarketRestrictions:
    circuit_breaker: bool
    extreme_volatility: bool
    low_liquidity: bool
    allowed: bool


@dataclass
class DayRestrictions:
    is_expiry: bool
    is_monday: bool
    is_friday: bool
    risk_level: DayRisk
    allowed: bool


@dataclass
class RiskRegimeResult(LayerResult):
    score: float
    risk_level: RiskLevel
    trading_allowed: bool
    time_restrictions: TimeRestrictions
    event_restrictions: EventRestrictions
    market_restrictions: MarketRestrictions
    day_restrictions: DayRestrictions
    overall_restriction: str
    reason: str


RESTRICTION_DETAILS = {
    'CIRCUIT_BREAKER': "Circuit breaker hit, market is in extreme stress",
    'MAJOR_EVENT_NEAR': "Major event within 2 hours, avoid directional trades",
    'EXTREME_VOLATILITY': "VIX > 30, extreme volatility present",
    'EXPIRY_DAY': "Options expiry day, high pin risk and volatility",
    'MARKET_OPENING': "First 15 minutes, wait for volatility to settle",
    'MARKET_CLOSING': "Last 15 minutes, avoid new positions",
    'LUNCH_HOUR': "Lunch hour, thin liquidity",
    'LOW_LIQUIDITY': "Volume below half of average",
}


def align_timezone(value: datetime, reference: datetime, tz) -> datetime:
    """Express `value` with the same awareness as `reference` so the two can be subtracted"""
    if reference.tzinfo is not None and value.tzinfo is None:
        return tz.localize(value)
    if reference.tzinfo is None and value.tzinfo is not None:
        return value.astimezone(tz).replace(tzinfo=None)
    return value


class RiskRegimeFilter:
    """Layer 6: time, event, market and day-of-week filters"""

    def __init__(self, config: TradingConfig = CONFIG):
        self.config = config
        self.tz = pytz.timezone(config.TIMEZONE)

    def analyze(self, context: RiskContext, vix_level: float) -> RiskRegimeResult:
        now = context.current_time
        if now.tzinfo is not None:
            now = now.astimezone(self.tz)

        time_r = self.check_time(now, context.market_open_time, context.market_close_time)
        event_r = self.check_events(now, context.upcoming_events)
        market_r = self.check_market(context.circuit_breaker, vix_level,
                                     context.current_volume, context.avg_volume)
        day_r = self.check_day(context.is_expiry_day, now)

        allowed = time_r.allowed and event_r.allowed and market_r.allowed and day_r.allowed
        risk_level = self._risk_level(time_r, event_r, market_r, day_r)
        score = self._score(risk_level, allowed, time_r, event_r, market_r, day_r)
        restriction = self._main_restriction(time_r, event_r, market_r, day_r)

        result = RiskRegimeResult(
            score=score,
            risk_level=risk_level,
            trading_allowed=allowed,
            time_restrictions=time_r,
            event_restrictions=event_r,
            market_restrictions=market_r,
            day_restrictions=day_r,
            overall_restriction=restriction,
            reason=self._explain(score, risk_level, allowed, restriction),
        )
        logger.info(f"L6 Risk Regime: {risk_level.value} | allowed={allowed} | {restriction} | score {score:.1f}")
        return result

    def session_bounds(self, now: datetime):
        """Default session open/close on the trading date of `now`"""
        cfg = self.config
        open_at = datetime.combine(now.date(), time(cfg.MARKET_START_HOUR, cfg.MARKET_START_MINUTE))
        close_at = datetime.combine(now.date(), time(cfg.MARKET_END_HOUR, cfg.MARKET_END_MINUTE))
        if now.tzinfo is not None:
            open_at, close_at = self.tz.localize(open_at), self.tz.localize(close_at)
        return open_at, close_at

    def check_time(self, now: datetime, market_open: Optional[datetime] = None,
                   market_close: Optional[datetime] = None) -> TimeRestrictions:
        default_open, default_close = self.session_bounds(now)
        market_open = align_timezone(market_open, now, self.tz) if market_open else default_open
        market_close = align_timezone(market_close, now, self.tz) if market_close else default_close

        minutes_since_open = (now - market_open).total_seconds() / 60
        minutes_to_close = (market_close - now).total_seconds() / 60

        # pre-open reads as a negative distance and stays inside the blackout
        in_open = minutes_since_open <= self.config.OPEN_BLACKOUT_MINUTES
        in_close = minutes_to_close <= self.config.CLOSE_BLACKOUT_MINUTES
        lunch = now.hour == self.config.LUNCH_HOUR

        return TimeRestrictions(
            market_open=in_open,
            market_close=in_close,
            lunch_hour=lunch,
            allowed=not (in_open or in_close or lunch),
        )

    def check_events(self, now: datetime, events: List[MarketEvent]) -> EventRestrictions:
        cfg = self.config
        for event in events:
            event_time = align_timezone(event.event_time, now, self.tz)
            minutes = (event_time - now).total_seconds() / 60
            if (event.severity == EventSeverity.HIGH
                    and -cfg.EVENT_WINDOW_AFTER_MINUTES <= minutes <= cfg.EVENT_WINDOW_BEFORE_MINUTES):
                return EventRestrictions(
                    major_event_near=True,
                    allowed=False,
                    event_type=event.event_type.value,
                    minutes_to_event=minutes,
                )
        return EventRestrictions(major_event_near=False, allowed=True)

    def check_market(self, circuit_breaker: bool, vix_level: float,
                     current_volume: float, avg_volume: float) -> MarketRestrictions:
        extreme = vix_level > self.config.EXTREME_VIX
        low_liquidity = current_volume < avg_volume * self.config.LOW_LIQUIDITY_RATIO
        return MarketRestrictions(
            circuit_breaker=circuit_breaker,
            extreme_volatility=extreme,
            low_liquidity=low_liquidity,
            allowed=not (circuit_breaker or extreme or low_liquidity),
        )

    @staticmethod
    def check_day(is_expiry_day: bool, now: datetime) -> DayRestrictions:
        weekday = now.weekday()
        is_monday = weekday == 0   # weekend gap risk
        is_friday = weekday == 4   # rollover risk

        if is_expiry_day:
            risk, allowed = DayRisk.HIGH, False
        elif is_monday or is_friday:
            risk, allowed = DayRisk.MEDIUM, True
        else:
            risk, allowed = DayRisk.LOW, True

        return DayRestrictions(
            is_expiry=is_expiry_day,
            is_monday=is_monday,
            is_friday=is_friday,
            risk_level=risk,
            allowed=allowed,
        )

    @staticmethod
    def _risk_level(time_r: TimeRestrictions, event_r: EventRestrictions,
                    market_r: MarketRestrictions, day_r: DayRestrictions) -> RiskLevel:
        points = 0
        if not time_r.allowed:
            points += 2
        if event_r.major_event_near:
            points += 3
        if market_r.circuit_breaker:
            points += 4
        if market_r.extreme_volatility:
            points += 3
        if market_r.low_liquidity:
            points += 2
        if day_r.risk_level == DayRisk.HIGH:
            points += 3
        elif day_r.risk_level == DayRisk.MEDIUM:
            points += 1

        if points >= 6:
            return RiskLevel.EXTREME
        if points >= 4:
            return RiskLevel.HIGH
        if points >= 2:
            return RiskLevel.MEDIUM
        if points >= 1:
            return RiskLevel.LOW
        return RiskLevel.VERY_LOW

    @staticmethod
    def _score(risk_level: RiskLevel, allowed: bool, time_r: TimeRestrictions, event_r: EventRestrictions,
               market_r: MarketRestrictions, day_r: DayRestrictions) -> float:
        if not allowed:
            return {RiskLevel.EXTREME: 0.0, RiskLevel.HIGH: 20.0, RiskLevel.MEDIUM: 40.0}.get(risk_level, 50.0)

        score = 100.0
        if not time_r.allowed:
            score -= 20
        if not event_r.allowed:
            score -= 25
        if not market_r.allowed:
            score -= 30
        if not day_r.allowed:
            score -= 25
        score -= {RiskLevel.EXTREME: 50, RiskLevel.HIGH: 30, RiskLevel.MEDIUM: 15, RiskLevel.LOW: 5}.get(risk_level, 0)
        return max(0.0, score)

    @staticmethod
    def _main_restriction(time_r: TimeRestrictions, event_r: EventRestrictions,
                          market_r: MarketRestrictions, day_r: DayRestrictions) -> str:
        checks = [
            (market_r.circuit_breaker, 'CIRCUIT_BREAKER'),
            (event_r.major_event_near, 'MAJOR_EVENT_NEAR'),
            (market_r.extreme_volatility, 'EXTREME_VOLATILITY'),
            (day_r.is_expiry, 'EXPIRY_DAY'),
            (time_r.market_open, 'MARKET_OPENING'),
            (time_r.market_close, 'MARKET_CLOSING'),
            (time_r.lunch_hour, 'LUNCH_HOUR'),
            (market_r.low_liquidity, 'LOW_LIQUIDITY'),
            (day_r.is_monday, 'MONDAY_GAP_RISK'),
            (day_r.is_friday, 'FRIDAY_ROLLOVER_RISK'),
        ]
        for hit, name in checks:
            if hit:
                return name
        return 'NONE'

    @staticmethod
    def _explain(score: float, risk_level: RiskLevel, allowed: bool, restriction: str) -> str:
        reasons = [f"Risk level: {risk_level.value}"]
        if not allowed:
            reasons.append(f"Trading NOT allowed: {restriction}")
            if restriction in RESTRICTION_DETAILS:
                reasons.append(RESTRICTION_DETAILS[restriction])
        else:
            reasons.append("Trading allowed")
            if score >= 80:
                reasons.append("Low risk environment, favorable for trading")
            elif score >= 60:
                reasons.append("Moderate risk, trade with caution")
            else:
                reasons.append("Elevated risk, reduce position size")
        return ". ".join(reasons)
