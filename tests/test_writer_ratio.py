import pytest

from seven_layer_system.layers.writer_ratio import (
    InstitutionalFlow,
    WriterDirection,
    WriterRatioGate,
    compute_writer_ratio,
)
from seven_layer_system.models import OptionStrikeData, SignalType
from seven_layer_system.pipeline import WRITER_RATIO_FAILED, Continue, Halt, writer_ratio_stage

from tests.builders import make_chain


@pytest.fixture
def gate():
    return WriterRatioGate()


def test_writer_estimation_uses_fresh_writing_only():
    chain = make_chain(call_writers=100, put_writers=400)
    assert WriterRatioGate.estimate_writers(chain.strikes, chain.atm_strike) == (100.0, 400.0)


@pytest.mark.parametrize("call_w,put_w,signal_type,expected", [
    (100, 300, SignalType.BUY_CALL, 3.0),
    (300, 100, SignalType.BUY_PUT, 3.0),
    (0, 50, SignalType.BUY_CALL, 999.0),
    (0, 0, SignalType.BUY_CALL, 0.0),
    (50, 0, SignalType.BUY_PUT, 999.0),
])
def test_compute_writer_ratio(call_w, put_w, signal_type, expected):
    assert compute_writer_ratio(call_w, put_w, signal_type) == pytest.approx(expected)


def test_ideal_bullish_positioning_scores_100(gate):
    result = gate.analyze(make_chain(call_writers=100, put_writers=400), SignalType.BUY_CALL)

    assert result.writer_ratio == pytest.approx(4.0)
    assert result.writer_ratio_passed
    assert result.institutional_flow == InstitutionalFlow.BULLISH
    assert result.writer_direction == WriterDirection.ALIGNED
    assert result.pcr == pytest.approx(850 / 680)
    assert result.score == pytest.approx(100.0)
    assert result.warning is None


def test_threshold_is_inclusive(gate):
    result = gate.analyze(make_chain(call_writers=100, put_writers=250), SignalType.BUY_CALL)
    assert result.writer_ratio == pytest.approx(2.5)
    assert result.writer_ratio_passed


def test_just_below_threshold_fails_with_warning(gate):
    result = gate.analyze(make_chain(call_writers=100, put_writers=240), SignalType.BUY_CALL)

    assert not result.writer_ratio_passed
    assert result.writer_direction == WriterDirection.CONFLICTING
    assert result.score == pytest.approx(38.4)
    assert result.score < 50
    assert result.warning.startswith("CRITICAL: Writer ratio FAILED")


def test_buy_put_mirrors_buy_call(gate):
    result = gate.analyze(make_chain(call_writers=400, put_writers=100), SignalType.BUY_PUT)
    assert result.writer_ratio == pytest.approx(4.0)
    assert result.writer_ratio_passed
    assert result.institutional_flow == InstitutionalFlow.BEARISH
    assert result.writer_direction == WriterDirection.ALIGNED


def test_more_put_writers_never_lowers_call_ratio(gate):
    ratios = [
        gate.analyze(make_chain(call_writers=100, put_writers=p), SignalType.BUY_CALL).writer_ratio
        for p in (0, 50, 120, 249, 250, 400, 1000)
    ]
    assert ratios == sorted(ratios)


def test_max_pain():
    strikes = [
        OptionStrikeData(strike=100, call_oi=10, put_oi=50),
        OptionStrikeData(strike=110, call_oi=30, put_oi=30),
        OptionStrikeData(strike=120, call_oi=50, put_oi=10),
    ]
    assert WriterRatioGate.max_pain(strikes) == 110.0
    assert WriterRatioGate.max_pain([]) == 0.0


def test_pcr_zero_without_call_oi(gate):
    chain = make_chain(call_writers=0, put_writers=400)
    for row in chain.strikes:
        row.call_oi = 0
    result = gate.analyze(chain, SignalType.BUY_CALL)
    assert result.pcr == 0.0
    assert result.writer_ratio == 999.0


def test_stage_outcomes(gate):
    passed = gate.analyze(make_chain(call_writers=100, put_writers=400), SignalType.BUY_CALL)
    failed = gate.analyze(make_chain(call_writers=100, put_writers=100), SignalType.BUY_CALL)

    assert isinstance(writer_ratio_stage(passed), Continue)
    halt = writer_ratio_stage(failed)
    assert isinstance(halt, Halt)
    assert halt.reason == WRITER_RATIO_FAILED
    assert halt.warning == failed.warning
