"""
End-to-end decisions through the seven layers.

Scenarios run against the in-memory ledger; persistence-specific checks
live in test_signal_store.py.
"""

from datetime import timedelta

import numpy as np
import pytest

from seven_layer_system.exceptions import InputValidationError, PersistenceError, UpstreamDataError
from seven_layer_system.layers.multi_timeframe import Alignment, EntrySignal
from seven_layer_system.models import OHLCBar, Recommendation, SignalRequest, SignalStatus
from seven_layer_system.orchestrator import PORTFOLIO_LIMITS, SignalOrchestrator
from seven_layer_system.pipeline import WRITER_RATIO_FAILED
from seven_layer_system.storage import InMemorySignalStore

from tests.builders import TRADE_TIME, bars_payload, chain_payload, make_request, request_payload


class FailingStore(InMemorySignalStore):
    def append(self, signal):
        raise PersistenceError("disk full")


def _comparable(output):
    payload = output.signal.to_dict()
    payload.pop('id')
    payload.pop('created_at')
    return payload


# ----------------------------------------------------------------------
# Scenarios
# ----------------------------------------------------------------------

def test_ideal_bullish_setup_executes(orchestrator, memory_store):
    output = orchestrator.generate_signal(make_request())

    assert output.recommendation == Recommendation.EXECUTE
    assert output.success
    assert output.overall_score >= 70
    assert output.analysis.layer5.writer_ratio == pytest.approx(4.0)
    assert output.analysis.layer1.regime_type.value == 'TRENDING_BULLISH'

    signal = output.signal
    assert signal.id == 1
    assert signal.status == SignalStatus.APPROVED.value
    assert signal.entry_price == pytest.approx(24590.0)
    assert signal.stop_loss == pytest.approx(24590.0 * 0.98)
    assert signal.target == pytest.approx(24590.0 * 1.05)
    # Kelly candidate: 10,000,000 x 2% x 0.25 / 24,590
    assert signal.quantity == 2

    details = output.execution_details
    assert details.quantity == 2
    assert details.capital_to_allocate == pytest.approx(2 * 24590.0)
    assert details.risk_amount == pytest.approx(200_000.0)
    assert memory_store.count() == 1


def test_bearish_setup_executes_put_with_inverted_levels(orchestrator):
    request = make_request(signal_type='BUY_PUT', step=-10.0,
                           chain=chain_payload(call_writers=400, put_writers=100))
    output = orchestrator.generate_signal(request)

    assert output.recommendation == Recommendation.EXECUTE
    entry = output.signal.entry_price
    assert output.signal.stop_loss > entry > output.signal.target


def test_writer_ratio_failure_rejects_and_skips_later_layers(orchestrator, memory_store):
    request = make_request(chain=chain_payload(call_writers=100, put_writers=240))
    output = orchestrator.generate_signal(request)

    assert output.recommendation == Recommendation.REJECT
    assert not output.success
    assert output.rejection_reason == WRITER_RATIO_FAILED
    assert output.overall_score == 0
    assert output.warning.startswith("CRITICAL: Writer ratio FAILED")
    assert output.analysis.layer6 is None
    assert output.analysis.layer7 is None
    assert output.execution_details is None

    signal = output.signal
    assert signal.status == SignalStatus.REJECTED.value
    assert signal.quantity == 0
    assert signal.entry_price is None
    assert signal.layer6_score is None and signal.layer7_score is None
    assert signal.status_reason.startswith(WRITER_RATIO_FAILED)
    assert memory_store.count() == 1


def test_expiry_day_waits(orchestrator):
    output = orchestrator.generate_signal(make_request(risk_data={'is_expiry_day': True}))

    assert output.recommendation == Recommendation.WAIT
    assert output.rejection_reason == 'EXPIRY_DAY'
    assert output.signal.status == SignalStatus.REJECTED.value
    assert output.signal.quantity == 0
    assert output.overall_score > 0


def test_cold_start_kelly_default(orchestrator):
    history = {'total_trades': 5, 'winning_trades': 3, 'losing_trades': 2, 'avg_win': 500, 'avg_loss': -300}
    output = orchestrator.generate_signal(make_request(portfolio={'trading_history': history}))
    layer7 = output.analysis.layer7
    assert layer7.kelly_fraction == pytest.approx(0.02)
    assert layer7.kelly_position_size == pytest.approx(0.005)
    # 10,000,000 x 0.005 / 24,590
    assert layer7.position_size_recommended == 2
    assert output.signal.quantity == 2


def test_portfolio_risk_over_limit_rejects(orchestrator):
    positions = [{'symbol': 'BANKNIFTY', 'capital_allocated': 900_000}]
    output = orchestrator.generate_signal(make_request(portfolio={'open_positions': positions}))

    assert output.recommendation == Recommendation.REJECT
    assert output.rejection_reason == PORTFOLIO_LIMITS
    assert output.warning.startswith("Position NOT allowed")
    assert output.analysis.layer7.portfolio_risk.projected_risk == pytest.approx(11.0)
    assert output.signal.quantity == 0


def test_perfect_alignment_gives_buy(orchestrator):
    output = orchestrator.generate_signal(make_request())
    assert output.analysis.layer3.alignment == Alignment.PERFECT
    assert output.analysis.layer3.entry_signal == EntrySignal.BUY


def test_entry_and_exit_overrides(orchestrator):
    request = make_request(entry_price=120.0, stop_loss_pct=0.1, target_pct=0.3)
    output = orchestrator.generate_signal(request)

    assert output.recommendation == Recommendation.EXECUTE
    assert output.signal.entry_price == pytest.approx(120.0)
    assert output.signal.stop_loss == pytest.approx(108.0)
    assert output.signal.target == pytest.approx(156.0)


# ----------------------------------------------------------------------
# Properties
# ----------------------------------------------------------------------

@pytest.mark.parametrize("call_writers,put_writers", [(100, 0), (100, 100), (100, 249), (0, 0), (500, 1000)])
def test_failed_writer_gate_never_executes(orchestrator, call_writers, put_writers):
    request = make_request(chain=chain_payload(call_writers=call_writers, put_writers=put_writers))
    output = orchestrator.generate_signal(request)

    assert not output.analysis.layer5.writer_ratio_passed
    assert output.recommendation == Recommendation.REJECT
    assert output.signal.quantity == 0


def test_same_request_same_decision(memory_store):
    first = SignalOrchestrator(store=memory_store).generate_signal(make_request())
    second = SignalOrchestrator(store=memory_store).generate_signal(make_request())
    assert _comparable(first) == _comparable(second)
    assert second.signal.id == first.signal.id + 1


def test_parallel_layers_match_sequential(memory_store):
    sequential = SignalOrchestrator(store=memory_store).generate_signal(make_request())
    parallel = SignalOrchestrator(store=memory_store, parallel_layers=True).generate_signal(make_request())
    assert _comparable(sequential) == _comparable(parallel)


def test_scores_bounded_on_noisy_market(orchestrator):
    rng = np.random.default_rng(42)
    payload = request_payload()
    for key, interval in (('historical', timedelta(days=1)), ('one_hour', timedelta(hours=1)),
                          ('fifteen_min', timedelta(minutes=15)), ('five_min', timedelta(minutes=5))):
        close = 24000 + np.cumsum(rng.normal(0, 30, 120))
        bars = []
        for i, c in enumerate(close):
            spread = abs(rng.normal(15, 5)) + 1
            open_ = c + rng.normal(0, 8)
            bars.append(OHLCBar(
                timestamp=TRADE_TIME - interval * (120 - i),
                open=float(open_),
                high=float(max(open_, c) + spread),
                low=float(min(open_, c) - spread),
                close=float(c),
                volume=float(rng.integers(500, 5000)),
            ))
        payload['market_data'][key] = bars_payload(bars)

    output = orchestrator.generate_signal(SignalRequest.from_dict(payload))

    for score in output.analysis.scores().values():
        assert score is None or 0 <= score <= 100
    assert 0 <= output.overall_score <= 100


def test_empty_bar_series_still_decides(orchestrator, memory_store):
    payload = request_payload()
    for key in ('historical', 'one_hour', 'fifteen_min', 'five_min'):
        payload['market_data'][key] = []
    payload['market_data']['vix_history'] = []

    output = orchestrator.generate_signal(SignalRequest.from_dict(payload))

    assert output.recommendation in (Recommendation.WAIT, Recommendation.REJECT)
    for score in output.analysis.scores().values():
        assert 0 <= score <= 100
    assert memory_store.count() == 1


# ----------------------------------------------------------------------
# Errors
# ----------------------------------------------------------------------

def test_mismatched_option_type_is_rejected_before_analysis(orchestrator, memory_store):
    request = make_request(option_type='PE')
    with pytest.raises(InputValidationError) as exc:
        orchestrator.generate_signal(request)
    assert exc.value.field == 'option_type'
    assert memory_store.count() == 0


@pytest.mark.parametrize("override,field", [
    ({'risk_per_trade': 0}, 'risk_per_trade'),
    ({'risk_per_trade': 150}, 'risk_per_trade'),
    ({'max_open_positions': 0}, 'max_open_positions'),
    ({'stop_loss_pct': 1.5}, 'stop_loss_pct'),
    ({'entry_price': -5}, 'entry_price'),
])
def test_invalid_numeric_fields(orchestrator, memory_store, override, field):
    with pytest.raises(InputValidationError) as exc:
        orchestrator.generate_signal(make_request(**override))
    assert exc.value.field == field
    assert memory_store.count() == 0


def test_target_strike_missing_from_chain(orchestrator, memory_store):
    request = make_request(chain=chain_payload(target=25000))
    with pytest.raises(UpstreamDataError) as exc:
        orchestrator.generate_signal(request)
    assert exc.value.field == 'target_strike'
    assert memory_store.count() == 0


def test_missing_atm_iv_is_upstream_error(orchestrator, memory_store):
    chain = chain_payload()
    chain['strikes'][1]['implied_vol'] = None
    with pytest.raises(UpstreamDataError):
        orchestrator.generate_signal(make_request(chain=chain))
    assert memory_store.count() == 0


def test_inverted_bar_is_upstream_error(orchestrator, memory_store):
    payload = request_payload()
    payload['market_data']['fifteen_min'][5]['high'] = 1.0
    with pytest.raises(UpstreamDataError) as exc:
        orchestrator.generate_signal(SignalRequest.from_dict(payload))
    assert exc.value.collaborator == 'market_data.fifteen_min'
    assert memory_store.count() == 0


def test_store_failure_surfaces_as_persistence_error():
    orchestrator = SignalOrchestrator(store=FailingStore())
    with pytest.raises(PersistenceError):
        orchestrator.generate_signal(make_request())


def test_ledger_reads(orchestrator):
    orchestrator.generate_signal(make_request())
    orchestrator.generate_signal(make_request(chain=chain_payload(put_writers=100)))

    assert orchestrator.count_signals() == 2
    assert orchestrator.count_signals(status='APPROVED') == 1
    newest = orchestrator.list_signals(limit=1)[0]
    assert newest.id == 2
    assert newest.recommendation == 'REJECT'
    assert orchestrator.get_signal(1).status == 'APPROVED'
    assert orchestrator.get_signal(99) is None
