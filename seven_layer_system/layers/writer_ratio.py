"""
LAYER 5: WRITER RATIO GATE
Are option writers (institutions) positioned with this trade?

This layer is a hard veto. A BUY_CALL needs put writers to outnumber call
writers by at least 2.5x (a BUY_PUT the mirror image); below that the trade
is rejected regardless of every other layer.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from loguru import logger

from seven_layer_system.config.trading_config import CONFIG, TradingConfig
from seven_layer_system.models import LayerResult, OptionChainSnapshot, OptionStrikeData, SignalType


class InstitutionalFlow(Enum):
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"


class WriterDirection(Enum):
    ALIGNED = "ALIGNED"
    CONFLICTING = "CONFLICTING"


@dataclass
class OIAnalysis:
    """Chain-wide open interest totals"""
    total_call_oi: float
    total_put_oi: float
    call_oi_change: float
    put_oi_change: float


@dataclass
class WriterRatioResult(LayerResult):
    score: float
    writer_ratio: float
    writer_ratio_passed: bool   # must be True for the trade to proceed
    call_writers: float
    put_writers: float
    institutional_flow: InstitutionalFlow
    pcr: float
    max_pain: float
    writer_direction: WriterDirection
    oi_analysis: OIAnalysis
    reason: str
    warning: Optional[str] = None


def compute_writer_ratio(call_writers: float, put_writers: float, signal_type: SignalType,
                         degenerate_ratio: float = CONFIG.DEGENERATE_WRITER_RATIO) -> float:
    """
    Writers on the opposite side divided by writers on our side

    A zero denominator reads as `degenerate_ratio` when the numerator is
    positive and 0 otherwise.
    """
    if signal_type == SignalType.BUY_CALL:
        numerator, denominator = put_writers, call_writers
    else:
        numerator, denominator = call_writers, put_writers

    if denominator == 0:
        return degenerate_ratio if numerator > 0 else 0.0
    return numerator / denominator


class WriterRatioGate:
    """Layer 5: institutional writer positioning, mandatory veto"""

    def __init__(self, config: TradingConfig = CONFIG):
        self.config = config

    def analyze(self, chain: OptionChainSnapshot, signal_type: SignalType) -> WriterRatioResult:
        """
        Evaluate writer positioning on the option chain

        Args:
            chain: Option chain snapshot (validated upstream)
            signal_type: BUY_CALL or BUY_PUT

        Returns:
            WriterRatioResult; writer_ratio_passed=False means the trade must be rejected
        """
        cfg = self.config
        oi = self.oi_analysis(chain.strikes)
        call_writers, put_writers = self.estimate_writers(chain.strikes, chain.atm_strike)

        ratio = compute_writer_ratio(call_writers, put_writers, signal_type, cfg.DEGENERATE_WRITER_RATIO)
        passed = ratio >= cfg.MIN_WRITER_RATIO

        flow = self._institutional_flow(call_writers, put_writers)
        pcr = oi.total_put_oi / oi.total_call_oi if oi.total_call_oi > 0 else 0.0
        max_pain = self.max_pain(chain.strikes)
        direction = self._writer_direction(signal_type, flow, passed)
        score = self._score(ratio, passed, direction, pcr)

        warning = None
        if not passed:
            warning = self._critical_warning(ratio, signal_type, call_writers, put_writers)
            logger.warning(warning)

        result = WriterRatioResult(
            score=score,
            writer_ratio=ratio,
            writer_ratio_passed=passed,
            call_writers=call_writers,
            put_writers=put_writers,
            institutional_flow=flow,
            pcr=pcr,
            max_pain=max_pain,
            writer_direction=direction,
            oi_analysis=oi,
            reason=self._explain(ratio, passed, flow, signal_type),
            warning=warning,
        )
        logger.info(f"L5 Writer Ratio: {ratio:.2f}x | {'PASSED' if passed else 'FAILED'} | score {score:.1f}")
        return result

    @staticmethod
    def oi_analysis(strikes: List[OptionStrikeData]) -> OIAnalysis:
        return OIAnalysis(
            total_call_oi=sum(s.call_oi for s in strikes),
            total_put_oi=sum(s.put_oi for s in strikes),
            call_oi_change=sum(s.call_oi_change for s in strikes),
            put_oi_change=sum(s.put_oi_change for s in strikes),
        )

    @staticmethod
    def estimate_writers(strikes: List[OptionStrikeData], atm_strike: float) -> Tuple[float, float]:
        """Writers = OI at strikes where fresh positions are being added on the writing side"""
        call_writers = sum(s.call_oi for s in strikes if s.strike >= atm_strike and s.call_oi_change > 0)
        put_writers = sum(s.put_oi for s in strikes if s.strike <= atm_strike and s.put_oi_change > 0)
        return float(call_writers), float(put_writers)

    @staticmethod
    def max_pain(strikes: List[OptionStrikeData]) -> float:
        """Strike at which option buyers in aggregate lose the most"""
        if not strikes:
            return 0.0
        best_strike = strikes[0].strike
        min_pain = float('inf')
        for target in strikes:
            pain = 0.0
            for row in strikes:
                if row.strike < target.strike:
                    pain += (target.strike - row.strike) * row.call_oi
                elif row.strike > target.strike:
                    pain += (row.strike - target.strike) * row.put_oi
            if pain < min_pain:
                min_pain = pain
                best_strike = target.strike
        return float(best_strike)

    @staticmethod
    def _institutional_flow(call_writers: float, put_writers: float) -> InstitutionalFlow:
        ratio = put_writers / (call_writers or 1)
        if ratio >= 2:
            return InstitutionalFlow.BULLISH   # heavy put writing
        if ratio <= 0.5:
            return InstitutionalFlow.BEARISH   # heavy call writing
        return InstitutionalFlow.NEUTRAL

    @staticmethod
    def _writer_direction(signal_type: SignalType, flow: InstitutionalFlow, passed: bool) -> WriterDirection:
        if not passed:
            return WriterDirection.CONFLICTING
        if signal_type == SignalType.BUY_CALL and flow == InstitutionalFlow.BULLISH:
            return WriterDirection.ALIGNED
        if signal_type == SignalType.BUY_PUT and flow == InstitutionalFlow.BEARISH:
            return WriterDirection.ALIGNED
        return WriterDirection.CONFLICTING

    def _score(self, ratio: float, passed: bool, direction: WriterDirection, pcr: float) -> float:
        if not passed:
            return min(40.0, ratio * 16)  # failing grade, always below 50

        score = 50.0 if ratio >= self.config.IDEAL_WRITER_RATIO else 40.0
        score += 30 if direction == WriterDirection.ALIGNED else 5
        if pcr > 1.2:
            score += 20
        elif pcr > 0.8:
            score += 10
        else:
            score += 5
        return min(100.0, score)

    def _critical_warning(self, ratio: float, signal_type: SignalType,
                          call_writers: float, put_writers: float) -> str:
        if signal_type == SignalType.BUY_CALL:
            favoured, favoured_count, opposing, opposing_count = 'PUT', put_writers, 'CALL', call_writers
        else:
            favoured, favoured_count, opposing, opposing_count = 'CALL', call_writers, 'PUT', put_writers
        return (
            f"CRITICAL: Writer ratio FAILED ({ratio:.2f}x, need {self.config.MIN_WRITER_RATIO}x minimum). "
            f"{favoured} writers ({favoured_count:.0f}) are NOT sufficiently higher than "
            f"{opposing} writers ({opposing_count:.0f}). "
            f"TRADE REJECTED. Institutional positioning is against this trade."
        )

    def _explain(self, ratio: float, passed: bool, flow: InstitutionalFlow, signal_type: SignalType) -> str:
        reasons = []
        if passed:
            reasons.append(f"Writer ratio PASSED: {ratio:.2f}x")
            if ratio >= self.config.IDEAL_WRITER_RATIO:
                reasons.append("Ideal institutional positioning")
        else:
            reasons.append(f"Writer ratio FAILED: {ratio:.2f}x (minimum {self.config.MIN_WRITER_RATIO}x)")
        reasons.append(f"Institutional flow: {flow.value} for {signal_type.value}")
        return ". ".join(reasons)
