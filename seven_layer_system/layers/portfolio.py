"""
LAYER 7: PORTFOLIO & POSITION SIZING
How much capital, if any, should this trade get?

Quarter-Kelly sizing bounded by per-trade risk, a 10% portfolio risk cap,
the open-position limit and the capital actually available.
"""

import math
from dataclasses import dataclass
from typing import Optional

from loguru import logger

from seven_layer_system.config.trading_config import CONFIG, TradingConfig
from seven_layer_system.models import LayerResult, PortfolioState, TradingHistory


@dataclass
class ProposedTrade:
    symbol: str
    entry_price: float
    stop_loss: float
    target: float
    signal_strength: float  # mean of the upstream layer scores


@dataclass
class KellyResult:
    kelly_fraction: float       # clamped to [0, 0.25]
    kelly_position_size: float  # fraction actually applied (quarter-Kelly)


@dataclass
class PortfolioRisk:
    current_risk: float    # % of capital in open positions
    projected_risk: float  # current + this trade's risk budget
    max_risk_allowed: float
    within_limits: bool


@dataclass
class Diversification:
    current_positions: int
    max_positions: int
    within_limits: bool


@dataclass
class CapitalAllocation:
    total: float
    allocated: float
    available: float
    percent_allocated: float


@dataclass
class PositionSizing:
    quantity: int
    capital_to_allocate: float
    risk_amount: float


@dataclass
class PortfolioResult(LayerResult):
    score: float
    position_allowed: bool
    position_size_recommended: int
    capital_to_allocate: float
    risk_amount: float
    kelly_fraction: float
    kelly_position_size: float
    portfolio_risk: PortfolioRisk
    diversification: Diversification
    capital_allocation: CapitalAllocation
    reason: str
    warning: Optional[str] = None


class PortfolioSizer:
    """Layer 7: risk budget and position size"""

    def __init__(self, config: TradingConfig = CONFIG):
        self.config = config

    def analyze(self, portfolio: PortfolioState, trade: ProposedTrade,
                risk_per_trade: float, max_open_positions: int) -> PortfolioResult:
        """
        Size the proposed trade against the portfolio

        Args:
            portfolio: Capital, open positions and trade history
            trade: Entry/stop/target for the candidate trade
            risk_per_trade: Percent of capital risked per trade
            max_open_positions: Concurrent position limit

        Returns:
            PortfolioResult; quantity is 0 whenever the position is not allowed
        """
        history = portfolio.trading_history
        kelly = self.kelly_criterion(history)
        risk = self.portfolio_risk(portfolio, risk_per_trade)
        diversification = Diversification(
            current_positions=len(portfolio.open_positions),
            max_positions=max_open_positions,
            within_limits=len(portfolio.open_positions) < max_open_positions,
        )
        allocation = self.capital_allocation(portfolio)

        allowed, blockers = self._position_allowed(risk, diversification, kelly, history)
        sizing = self.position_size(portfolio, trade, risk_per_trade, kelly, allowed)
        score = self._score(allowed, kelly, risk, diversification, allocation, history)

        warning = None
        if not allowed:
            warning = f"Position NOT allowed: {', '.join(blockers)}"
            logger.warning(warning)

        result = PortfolioResult(
            score=score,
            position_allowed=allowed,
            position_size_recommended=sizing.quantity,
            capital_to_allocate=sizing.capital_to_allocate,
            risk_amount=sizing.risk_amount,
            kelly_fraction=kelly.kelly_fraction,
            kelly_position_size=kelly.kelly_position_size,
            portfolio_risk=risk,
            diversification=diversification,
            capital_allocation=allocation,
            reason=self._explain(allowed, risk, diversification, kelly, blockers),
            warning=warning,
        )
        logger.info(f"L7 Portfolio: allowed={allowed} | qty {sizing.quantity} | score {score:.1f}")
        return result

    def kelly_criterion(self, history: TradingHistory) -> KellyResult:
        """
        Kelly % = (Win% x W/L - Loss%) / W/L, clamped to [0, 0.25]

        Fewer than 20 trades (or no recorded losses) falls back to a flat 2%,
        still applied at quarter-Kelly.
        """
        cfg = self.config
        if history.total_trades < cfg.MIN_KELLY_TRADES or history.avg_loss == 0:
            return KellyResult(cfg.DEFAULT_KELLY_FRACTION, cfg.DEFAULT_KELLY_FRACTION * cfg.KELLY_MULTIPLIER)

        win_rate = history.win_rate
        win_loss = abs(history.avg_win / history.avg_loss)
        if win_loss == 0:
            return KellyResult(0.0, 0.0)

        fraction = (win_rate * win_loss - (1 - win_rate)) / win_loss
        fraction = max(0.0, min(cfg.KELLY_CAP, fraction))
        return KellyResult(fraction, fraction * cfg.KELLY_MULTIPLIER)

    def portfolio_risk(self, portfolio: PortfolioState, risk_per_trade: float) -> PortfolioRisk:
        open_capital = sum(p.capital_allocated for p in portfolio.open_positions)
        current = open_capital / portfolio.total_capital * 100
        projected = current + risk_per_trade
        return PortfolioRisk(
            current_risk=current,
            projected_risk=projected,
            max_risk_allowed=self.config.MAX_PORTFOLIO_RISK_PCT,
            within_limits=projected <= self.config.MAX_PORTFOLIO_RISK_PCT,
        )

    @staticmethod
    def capital_allocation(portfolio: PortfolioState) -> CapitalAllocation:
        allocated = sum(p.capital_allocated for p in portfolio.open_positions)
        return CapitalAllocation(
            total=portfolio.total_capital,
            allocated=allocated,
            available=portfolio.available_capital,
            percent_allocated=allocated / portfolio.total_capital * 100,
        )

    def _position_allowed(self, risk: PortfolioRisk, diversification: Diversification,
                          kelly: KellyResult, history: TradingHistory):
        cfg = self.config
        blockers = []
        if not risk.within_limits:
            blockers.append(f"Portfolio risk too high ({risk.projected_risk:.1f}% > {risk.max_risk_allowed}%)")
        if not diversification.within_limits:
            blockers.append(
                f"Max positions reached ({diversification.current_positions}/{diversification.max_positions})"
            )
        if kelly.kelly_fraction <= 0:
            blockers.append("Negative Kelly Criterion (no statistical edge)")
        if history.total_trades >= cfg.MIN_KELLY_TRADES:
            if history.win_rate < cfg.MIN_WIN_RATE:
                blockers.append(f"Win rate {history.win_rate:.0%} below {cfg.MIN_WIN_RATE:.0%}")
            if history.profit_factor < cfg.MIN_PROFIT_FACTOR:
                blockers.append(f"Profit factor {history.profit_factor:.2f} below {cfg.MIN_PROFIT_FACTOR}")
        return not blockers, blockers

    def position_size(self, portfolio: PortfolioState, trade: ProposedTrade, risk_per_trade: float,
                      kelly: KellyResult, allowed: bool) -> PositionSizing:
        """Smallest of the risk-based, Kelly-based and capital-based quantities"""
        if not allowed:
            return PositionSizing(quantity=0, capital_to_allocate=0.0, risk_amount=0.0)

        entry = trade.entry_price
        risk_amount = portfolio.total_capital * risk_per_trade / 100
        available = max(0.0, portfolio.available_capital)

        candidates = [math.floor(available / entry)]
        stop_distance = abs(entry - trade.stop_loss)
        if stop_distance > 0:
            candidates.append(math.floor(risk_amount / stop_distance))
        if kelly.kelly_fraction > 0:
            candidates.append(math.floor(portfolio.total_capital * kelly.kelly_position_size / entry))

        quantity = max(0, min(candidates))
        while quantity > 0 and quantity * entry > available:
            quantity -= 1

        return PositionSizing(
            quantity=quantity,
            capital_to_allocate=quantity * entry,
            risk_amount=risk_amount,
        )

    def _score(self, allowed: bool, kelly: KellyResult, risk: PortfolioRisk, diversification: Diversification,
               allocation: CapitalAllocation, history: TradingHistory) -> float:
        if not allowed:
            return 0.0

        score = 100.0
        if risk.projected_risk > 8:
            score -= 20
        elif risk.projected_risk > 6:
            score -= 10

        ratio = diversification.current_positions / diversification.max_positions
        if ratio > 0.8:
            score -= 15
        elif ratio > 0.6:
            score -= 5

        if allocation.percent_allocated > 80:
            score -= 15
        elif allocation.percent_allocated > 60:
            score -= 5

        if kelly.kelly_fraction > 0.15:
            score += 10
        elif kelly.kelly_fraction > 0.10:
            score += 5
        elif kelly.kelly_fraction < 0.05:
            score -= 10

        if history.total_trades >= self.config.MIN_KELLY_TRADES:
            if history.profit_factor > 2.0:
                score += 10
            elif history.profit_factor > 1.5:
                score += 5

        return max(0.0, min(100.0, score))

    @staticmethod
    def _explain(allowed: bool, risk: PortfolioRisk, diversification: Diversification,
                 kelly: KellyResult, blockers) -> str:
        if not allowed:
            return ". ".join(["Position NOT allowed"] + list(blockers))
        return ". ".join([
            "Position allowed",
            f"Portfolio risk: {risk.projected_risk:.1f}% (limit: {risk.max_risk_allowed}%)",
            f"Open positions: {diversification.current_positions}/{diversification.max_positions}",
            f"Kelly fraction: {kelly.kelly_fraction:.1%}",
        ])
