import math

import pytest

from seven_layer_system.layers.portfolio import PortfolioSizer, ProposedTrade
from seven_layer_system.models import OpenPosition, PortfolioState, TradingHistory


@pytest.fixture
def sizer():
    return PortfolioSizer()


def _trade(entry=100.0, stop_pct=0.02):
    return ProposedTrade('NIFTY', entry, entry * (1 - stop_pct), entry * 1.05, signal_strength=70.0)


def _portfolio(total=100_000.0, available=None, positions=(), history=None):
    return PortfolioState(
        total_capital=total,
        available_capital=total if available is None else available,
        open_positions=list(positions),
        trading_history=history or TradingHistory(),
    )


def test_cold_start_uses_default_kelly(sizer):
    history = TradingHistory(total_trades=5, winning_trades=3, losing_trades=2, avg_win=500, avg_loss=-300)
    result = sizer.analyze(_portfolio(history=history), _trade(), 2.0, 5)

    assert result.kelly_fraction == pytest.approx(0.02)
    assert result.kelly_position_size == pytest.approx(0.005)
    assert result.position_allowed
    # kelly: 100000 x 0.02 x 0.25 / 100 = 5
    assert result.position_size_recommended == 5
    # 100 - 10 for a Kelly fraction under 5%
    assert result.score == pytest.approx(90.0)


def test_kelly_clamped_to_quarter(sizer):
    history = TradingHistory(total_trades=100, winning_trades=90, losing_trades=10,
                             avg_win=1000, avg_loss=-100, profit_factor=90.0)
    kelly = sizer.kelly_criterion(history)
    assert kelly.kelly_fraction == pytest.approx(0.25)
    assert kelly.kelly_position_size == pytest.approx(0.0625)


def test_negative_edge_clamps_to_zero_and_blocks(sizer):
    history = TradingHistory(total_trades=40, winning_trades=12, losing_trades=28,
                             avg_win=100, avg_loss=-200, profit_factor=0.2)
    result = sizer.analyze(_portfolio(history=history), _trade(), 2.0, 5)

    assert result.kelly_fraction == 0.0
    assert not result.position_allowed
    assert result.position_size_recommended == 0
    assert result.score == 0.0
    assert result.warning.startswith("Position NOT allowed")
    assert "Win rate" in result.warning


def test_portfolio_risk_limit_blocks(sizer):
    portfolio = _portfolio(total=100_000, positions=[OpenPosition('BANKNIFTY', 9_000)])
    result = sizer.analyze(portfolio, _trade(), 2.0, 5)

    assert result.portfolio_risk.projected_risk == pytest.approx(11.0)
    assert not result.position_allowed
    assert result.position_size_recommended == 0
    assert "Portfolio risk too high" in result.warning


def test_max_positions_blocks(sizer):
    positions = [OpenPosition(f'P{i}', 100) for i in range(3)]
    result = sizer.analyze(_portfolio(positions=positions), _trade(), 2.0, 3)
    assert not result.diversification.within_limits
    assert not result.position_allowed


def test_quantity_is_smallest_candidate(sizer):
    # risk: 2000 / 2 = 1000, kelly: 100000 * 0.005 / 100 = 5, capital: 1000
    result = sizer.analyze(_portfolio(), _trade(entry=100.0), 2.0, 5)
    assert result.position_size_recommended == 5
    assert result.capital_to_allocate == pytest.approx(500.0)
    assert result.risk_amount == pytest.approx(2000.0)


def test_quantity_never_exceeds_available_capital(sizer):
    for available in (0.0, 50.0, 999.0, 1234.5):
        result = sizer.analyze(_portfolio(available=available), _trade(entry=100.0), 2.0, 5)
        assert result.position_size_recommended * 100.0 <= available
        assert result.position_size_recommended == min(5, math.floor(available / 100.0))


def test_zero_stop_distance_skips_risk_candidate(sizer):
    trade = ProposedTrade('NIFTY', 100.0, 100.0, 105.0, signal_strength=70.0)
    result = sizer.analyze(_portfolio(), trade, 2.0, 5)
    assert result.position_size_recommended == 5


def test_strong_history_is_rewarded(sizer):
    history = TradingHistory(total_trades=50, winning_trades=30, losing_trades=20,
                             avg_win=300, avg_loss=-100, profit_factor=4.5)
    result = sizer.analyze(_portfolio(history=history), _trade(), 2.0, 5)

    assert result.kelly_fraction == pytest.approx(0.25)
    assert result.position_allowed
    assert result.score == 100.0


def test_cold_start_size_is_quarter_kelly(sizer):
    portfolio = _portfolio(total=1_000_000.0, available=500_000.0,
                           history=TradingHistory(total_trades=5, winning_trades=3, losing_trades=2,
                                                  avg_win=500, avg_loss=-300))
    result = sizer.analyze(portfolio, _trade(entry=100.0), 2.0, 5)

    # risk: 20000 / 2 = 10000, capital: 5000, kelly: 1000000 x 0.005 / 100 = 50
    assert result.position_size_recommended == 50
    assert result.capital_to_allocate == pytest.approx(5000.0)


def test_no_recorded_losses_falls_back_to_quarter_default(sizer):
    history = TradingHistory(total_trades=30, winning_trades=30, losing_trades=0, avg_win=200, avg_loss=0)
    kelly = sizer.kelly_criterion(history)
    assert kelly.kelly_fraction == pytest.approx(0.02)
    assert kelly.kelly_position_size == pytest.approx(0.005)
