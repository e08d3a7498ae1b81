"""
ORCHESTRATOR: 7-Layer Signal Engine Coordinator
Runs the seven layers for one candidate option trade and records the decision.

Data Flow:
1. Layers 1-4: regime, price action, timeframe alignment, volatility (independent)
2. Layer 5: writer ratio gate - a failure halts here with REJECT
3. Layer 6: risk regime (time, events, market, day)
4. Layer 7: portfolio sizing for the proposed trade
5. Weighted overall score -> EXECUTE / WAIT / REJECT, one ledger row per call
"""

import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, List, Optional

import pandas as pd
from loguru import logger

from seven_layer_system.config.settings import load_settings
from seven_layer_system.config.trading_config import CONFIG, TradingConfig
from seven_layer_system.exceptions import SignalEngineError
from seven_layer_system.layers.market_regime import MarketRegimeAnalyzer, MarketRegimeResult
from seven_layer_system.layers.multi_timeframe import MultiTimeframeAligner, MultiTimeframeResult
from seven_layer_system.layers.portfolio import PortfolioResult, PortfolioSizer, ProposedTrade
from seven_layer_system.layers.price_action import PriceActionAnalyzer, PriceActionResult
from seven_layer_system.layers.risk_regime import RiskRegimeFilter, RiskRegimeResult
from seven_layer_system.layers.volatility import VolatilityAnalyzer, VolatilityResult
from seven_layer_system.layers.writer_ratio import WriterRatioGate, WriterRatioResult
from seven_layer_system.models import (
    ExecutionDetails,
    LayerResult,
    Recommendation,
    SignalOutput,
    SignalRequest,
    SignalStatus,
    SignalType,
    TradingSignal,
    bars_to_frame,
    to_serializable,
)
from seven_layer_system.pipeline import Halt, writer_ratio_stage
from seven_layer_system.storage.signal_store import SignalStore, SQLiteSignalStore

PORTFOLIO_LIMITS = "PORTFOLIO_LIMITS"
WEAK_SIGNAL = "WEAK_SIGNAL"
LOW_OVERALL_SCORE = "LOW_OVERALL_SCORE"


@dataclass
class SignalAnalysis(LayerResult):
    """All layer results for one evaluation; L6/L7 are None when the writer gate halts"""
    layer1: MarketRegimeResult
    layer2: PriceActionResult
    layer3: MultiTimeframeResult
    layer4: VolatilityResult
    layer5: WriterRatioResult
    layer6: Optional[RiskRegimeResult] = None
    layer7: Optional[PortfolioResult] = None

    def scores(self) -> Dict[str, Optional[float]]:
        return {
            f'layer{i}': (getattr(self, f'layer{i}').score if getattr(self, f'layer{i}') is not None else None)
            for i in range(1, 8)
        }


@dataclass
class MarketFrames:
    historical: pd.DataFrame
    one_hour: pd.DataFrame
    fifteen_min: pd.DataFrame
    five_min: pd.DataFrame


class SignalOrchestrator:
    """
    Main orchestrator that coordinates all 7 layers
    Layer 5 is a hard veto; every invocation writes exactly one ledger row
    """

    def __init__(self, store: Optional[SignalStore] = None, config: TradingConfig = CONFIG,
                 parallel_layers: bool = False):
        """
        Initialize the 7-layer engine

        Args:
            store: Signal ledger (defaults to SQLite at SIGNAL_DB_PATH)
            config: Layer thresholds
            parallel_layers: Evaluate layers 1-4 on a thread pool
        """
        self.config = config
        self.parallel_layers = parallel_layers
        self.store = store if store is not None else SQLiteSignalStore(load_settings().db_path)

        self.layer1 = MarketRegimeAnalyzer(config)
        self.layer2 = PriceActionAnalyzer(config)
        self.layer3 = MultiTimeframeAligner(config)
        self.layer4 = VolatilityAnalyzer(config)
        self.layer5 = WriterRatioGate(config)
        self.layer6 = RiskRegimeFilter(config)
        self.layer7 = PortfolioSizer(config)

        logger.info(f"✓ Signal orchestrator initialized | parallel layers: {parallel_layers}")

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def generate_signal(self, request: SignalRequest) -> SignalOutput:
        """
        Evaluate one candidate trade through all seven layers

        Raises:
            InputValidationError: malformed request (nothing persisted)
            UpstreamDataError: inconsistent collaborator data (nothing persisted)
            PersistenceError: decision computed but not recorded
        """
        try:
            request.validate()
            frames = self._prepare_frames(request)
            request.option_chain.validate()
            atm_iv = request.option_chain.atm_implied_volatility()
        except SignalEngineError as e:
            logger.error(f"Signal request rejected before analysis: {e}")
            raise

        logger.info(f"🎯 Generating signal: {request.symbol} {request.strike:g} "
                    f"{request.option_type.value} ({request.signal_type.value})")

        layer1, layer2, layer3, layer4 = self._run_independent_layers(request, frames, atm_iv)
        layer5 = self.layer5.analyze(request.option_chain, request.signal_type)

        outcome = writer_ratio_stage(layer5)
        if isinstance(outcome, Halt):
            logger.info("⛔ TRADE REJECTED - writer ratio gate not met")
            analysis = SignalAnalysis(layer1, layer2, layer3, layer4, layer5)
            return self._record(
                request, analysis,
                overall_score=0,
                recommendation=Recommendation.REJECT,
                rejection_reason=outcome.reason,
                status_reason=f"{outcome.reason}: {outcome.warning}",
                warning=outcome.warning,
            )

        layer6 = self.layer6.analyze(request.risk_data, request.market_data.vix_level)
        if not layer6.trading_allowed:
            logger.info(f"⚠️ Layer 6: trading not recommended ({layer6.overall_restriction})")

        trade = self.build_proposed_trade(request, [layer1, layer2, layer3, layer4, layer5, layer6])
        layer7 = self.layer7.analyze(request.portfolio, trade, request.risk_per_trade,
                                     request.max_open_positions)

        analysis = SignalAnalysis(layer1, layer2, layer3, layer4, layer5, layer6, layer7)
        overall = self.calculate_overall_score(analysis)
        recommendation = self.generate_recommendation(
            overall, layer5.writer_ratio_passed, layer6.trading_allowed, layer7.position_allowed
        )
        logger.info(f"📊 Overall score: {overall}/100 -> {recommendation.value}")

        if recommendation == Recommendation.EXECUTE:
            return self._record(
                request, analysis,
                overall_score=overall,
                recommendation=recommendation,
                status_reason=f"All layers passed. Overall score: {overall}/100",
                trade=trade,
            )

        reason, detail = self._rejection_reason(recommendation, overall, layer6, layer7)
        return self._record(
            request, analysis,
            overall_score=overall,
            recommendation=recommendation,
            rejection_reason=reason,
            status_reason=f"{reason}: {detail}",
            warning=layer7.warning if reason == PORTFOLIO_LIMITS else None,
        )

    def _prepare_frames(self, request: SignalRequest) -> MarketFrames:
        md = request.market_data
        return MarketFrames(
            historical=bars_to_frame(md.historical, 'market_data.historical'),
            one_hour=bars_to_frame(md.one_hour, 'market_data.one_hour'),
            fifteen_min=bars_to_frame(md.fifteen_min, 'market_data.fifteen_min'),
            five_min=bars_to_frame(md.five_min, 'market_data.five_min'),
        )

    def _run_independent_layers(self, request: SignalRequest, frames: MarketFrames, atm_iv: float):
        md = request.market_data
        tasks = [
            lambda: self.layer1.analyze(md.spot_price, md.vix_level, frames.historical),
            lambda: self.layer2.analyze(md.spot_price, frames.fifteen_min),
            lambda: self.layer3.analyze(frames.one_hour, frames.fifteen_min, frames.five_min),
            lambda: self.layer4.analyze(md.vix_level, md.vix_history, atm_iv, frames.historical),
        ]
        if not self.parallel_layers:
            return [task() for task in tasks]

        with ThreadPoolExecutor(max_workers=len(tasks)) as pool:
            futures = [pool.submit(task) for task in tasks]
            return [f.result() for f in futures]

    def build_proposed_trade(self, request: SignalRequest, upstream: List) -> ProposedTrade:
        """Entry at the requested price (or spot) with fixed-percentage stop and target"""
        cfg = self.config
        entry = request.entry_price if request.entry_price is not None else request.market_data.spot_price
        stop_pct = request.stop_loss_pct if request.stop_loss_pct is not None else cfg.DEFAULT_STOP_LOSS_PCT
        target_pct = request.target_pct if request.target_pct is not None else cfg.DEFAULT_TARGET_PCT

        if request.signal_type == SignalType.BUY_CALL:
            stop_loss, target = entry * (1 - stop_pct), entry * (1 + target_pct)
        else:
            stop_loss, target = entry * (1 + stop_pct), entry * (1 - target_pct)

        return ProposedTrade(
            symbol=request.symbol,
            entry_price=entry,
            stop_loss=stop_loss,
            target=target,
            signal_strength=sum(r.score for r in upstream) / len(upstream),
        )

    def calculate_overall_score(self, analysis: SignalAnalysis) -> int:
        """Weighted mean of the seven layer scores (writer ratio counts double), rounded half up"""
        scores = analysis.scores()
        weights = self.config.LAYER_WEIGHTS
        weighted = sum((scores[name] or 0.0) * weight for name, weight in weights.items())
        return int(math.floor(weighted / self.config.total_weight + 0.5))

    def generate_recommendation(self, overall_score: float, writer_ratio_passed: bool,
                                trading_allowed: bool, position_allowed: bool) -> Recommendation:
        if not writer_ratio_passed:
            return Recommendation.REJECT
        if not trading_allowed:
            return Recommendation.WAIT
        if not position_allowed:
            return Recommendation.REJECT
        if overall_score >= self.config.EXECUTE_THRESHOLD:
            return Recommendation.EXECUTE
        if overall_score >= self.config.WAIT_THRESHOLD:
            return Recommendation.WAIT
        return Recommendation.REJECT

    @staticmethod
    def _rejection_reason(recommendation: Recommendation, overall: int,
                          layer6: RiskRegimeResult, layer7: PortfolioResult):
        if not layer6.trading_allowed:
            return layer6.overall_restriction, layer6.reason
        if not layer7.position_allowed:
            return PORTFOLIO_LIMITS, layer7.warning
        if recommendation == Recommendation.WAIT:
            return WEAK_SIGNAL, f"overall score {overall}/100 below execution threshold"
        return LOW_OVERALL_SCORE, f"overall score {overall}/100"

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _record(self, request: SignalRequest, analysis: SignalAnalysis, overall_score: int,
                recommendation: Recommendation, status_reason: str,
                rejection_reason: Optional[str] = None, warning: Optional[str] = None,
                trade: Optional[ProposedTrade] = None) -> SignalOutput:
        executing = recommendation == Recommendation.EXECUTE
        layer7 = analysis.layer7
        scores = analysis.scores()

        draft = TradingSignal(
            symbol=request.symbol,
            strike=request.strike,
            expiry=request.expiry,
            option_type=request.option_type.value,
            signal_type=request.signal_type.value,
            entry_price=trade.entry_price if executing else None,
            stop_loss=trade.stop_loss if executing else None,
            target=trade.target if executing else None,
            quantity=layer7.position_size_recommended if executing else 0,
            layer1_score=scores['layer1'],
            layer2_score=scores['layer2'],
            layer3_score=scores['layer3'],
            layer4_score=scores['layer4'],
            layer5_score=scores['layer5'],
            layer6_score=scores['layer6'],
            layer7_score=scores['layer7'],
            writer_ratio=analysis.layer5.writer_ratio,
            writer_ratio_passed=analysis.layer5.writer_ratio_passed,
            call_writers=analysis.layer5.call_writers,
            put_writers=analysis.layer5.put_writers,
            vix_level=request.market_data.vix_level,
            market_regime=analysis.layer1.regime_type.value,
            overall_score=overall_score,
            recommendation=recommendation.value,
            status=(SignalStatus.APPROVED if executing else SignalStatus.REJECTED).value,
            status_reason=status_reason,
            analysis=to_serializable(analysis),
        )
        stored = self.store.append(draft)

        execution = None
        if executing:
            execution = ExecutionDetails(
                entry_price=trade.entry_price,
                stop_loss=trade.stop_loss,
                target=trade.target,
                quantity=layer7.position_size_recommended,
                capital_to_allocate=layer7.capital_to_allocate,
                risk_amount=layer7.risk_amount,
            )
            logger.info(f"✅ Signal #{stored.id} APPROVED: qty {execution.quantity} @ {execution.entry_price:.2f}")
        else:
            logger.info(f"Signal #{stored.id} {recommendation.value}: {rejection_reason}")

        return SignalOutput(
            success=executing,
            signal=stored,
            analysis=analysis,
            overall_score=overall_score,
            recommendation=recommendation,
            rejection_reason=rejection_reason,
            warning=warning,
            execution_details=execution,
        )

    # ------------------------------------------------------------------
    # Ledger reads
    # ------------------------------------------------------------------

    def get_signal(self, signal_id: int) -> Optional[TradingSignal]:
        return self.store.get(signal_id)

    def list_signals(self, symbol: Optional[str] = None, status: Optional[str] = None,
                     limit: int = 50, offset: int = 0) -> List[TradingSignal]:
        return self.store.list_signals(symbol=symbol, status=status, limit=limit, offset=offset)

    def count_signals(self, symbol: Optional[str] = None, status: Optional[str] = None) -> int:
        return self.store.count(symbol=symbol, status=status)
