import math
from datetime import date, datetime

import numpy as np
import pandas as pd
import pytest

from seven_layer_system.config.trading_config import CONFIG
from seven_layer_system.exceptions import InputValidationError, UpstreamDataError
from seven_layer_system.models import (
    OHLCBar,
    OptionType,
    SignalRequest,
    SignalType,
    bars_to_frame,
    to_serializable,
)

from tests.builders import make_chain, request_payload


def test_from_dict_builds_typed_request():
    request = SignalRequest.from_dict(request_payload())

    assert request.signal_type == SignalType.BUY_CALL
    assert request.option_type == OptionType.CE
    assert request.expiry == date(2025, 1, 30)
    assert isinstance(request.market_data.historical[0], OHLCBar)
    assert request.risk_data.current_time == datetime(2025, 1, 15, 10, 30)
    assert request.portfolio.trading_history.total_trades == 0
    request.validate()


@pytest.mark.parametrize("key", ['symbol', 'market_data', 'option_chain', 'portfolio'])
def test_from_dict_requires_top_level_fields(key):
    payload = request_payload()
    del payload[key]
    with pytest.raises(InputValidationError) as exc:
        SignalRequest.from_dict(payload)
    assert exc.value.field == key


def test_unknown_signal_type_is_rejected():
    with pytest.raises(InputValidationError) as exc:
        SignalRequest.from_dict(request_payload(signal_type='SELL_CALL'))
    assert exc.value.field == 'signal_type'


def test_unparseable_timestamp_is_rejected():
    payload = request_payload(risk_data={'current_time': 'not a time'})
    with pytest.raises(InputValidationError) as exc:
        SignalRequest.from_dict(payload)
    assert exc.value.field == 'risk_data.current_time'


@pytest.mark.parametrize("mutate,field", [
    (lambda r: setattr(r, 'symbol', '  '), 'symbol'),
    (lambda r: setattr(r, 'strike', 0), 'strike'),
    (lambda r: setattr(r.market_data, 'spot_price', float('nan')), 'market_data.spot_price'),
    (lambda r: setattr(r.market_data, 'vix_level', -1.0), 'market_data.vix_level'),
    (lambda r: setattr(r.portfolio, 'total_capital', 0.0), 'portfolio.total_capital'),
    (lambda r: setattr(r.portfolio.trading_history, 'winning_trades', 3), 'portfolio.trading_history'),
    (lambda r: setattr(r, 'signal_type', 'SELL'), 'signal_type'),
])
def test_validate_names_offending_field(mutate, field):
    request = SignalRequest.from_dict(request_payload())
    mutate(request)
    with pytest.raises(InputValidationError) as exc:
        request.validate()
    assert exc.value.field == field


def test_bars_to_frame_normalises_columns_and_order():
    raw = pd.DataFrame({
        'Timestamp': pd.to_datetime(['2025-01-02', '2025-01-01']),
        'Open': [101.0, 100.0],
        'High': [102.0, 101.0],
        'Low': [100.5, 99.0],
        'Close': [101.5, 100.5],
    })
    df = bars_to_frame(raw)
    assert list(df.columns) == ['open', 'high', 'low', 'close', 'volume']
    assert df['close'].tolist() == [100.5, 101.5]
    assert (df['volume'] == 0).all()


@pytest.mark.parametrize("bar,field", [
    ({'timestamp': '2025-01-01', 'open': 100, 'high': 99, 'low': 101, 'close': 100}, 'high'),
    ({'timestamp': '2025-01-01', 'open': 100, 'high': 101, 'low': 0, 'close': 100}, 'close'),
    ({'timestamp': '2025-01-01', 'open': 100, 'high': 101, 'low': 99, 'close': math.inf}, 'close'),
    ({'timestamp': '2025-01-01', 'open': 100, 'high': 101, 'low': 99, 'close': 100, 'volume': -1}, 'volume'),
    ({'timestamp': '2025-01-01', 'open': 100, 'high': 101, 'low': 99}, 'close'),
])
def test_bars_to_frame_rejects_bad_bars(bar, field):
    with pytest.raises(UpstreamDataError) as exc:
        bars_to_frame([bar], 'market_data.historical')
    assert exc.value.field == field
    assert exc.value.collaborator == 'market_data.historical'


def test_chain_validation():
    chain = make_chain()
    chain.validate()
    assert chain.atm_implied_volatility() == 11.0

    chain.strikes[0].put_oi = -1
    with pytest.raises(UpstreamDataError) as exc:
        chain.validate()
    assert exc.value.field == 'open_interest'

    empty = make_chain()
    empty.strikes = []
    with pytest.raises(UpstreamDataError):
        empty.validate()


def test_to_serializable_handles_numpy_and_non_finite():
    payload = to_serializable({
        'a': np.float64(1.5),
        'b': np.int64(3),
        'c': np.bool_(True),
        'd': float('nan'),
        'e': SignalType.BUY_PUT,
        'f': date(2025, 1, 30),
    })
    assert payload == {'a': 1.5, 'b': 3, 'c': True, 'd': None, 'e': 'BUY_PUT', 'f': '2025-01-30'}


@pytest.mark.parametrize("value", ['abc', None, [1, 2]])
def test_bar_with_non_numeric_price_is_rejected(value):
    bar = {'timestamp': '2025-01-01', 'open': value, 'high': 101, 'low': 99, 'close': 100}
    with pytest.raises(InputValidationError) as exc:
        OHLCBar.from_dict(bar, 'market_data.fifteen_min')
    assert exc.value.field == 'market_data.fifteen_min.open'


def test_bar_missing_price_names_series():
    payload = request_payload()
    del payload['market_data']['one_hour'][3]['close']
    with pytest.raises(InputValidationError) as exc:
        SignalRequest.from_dict(payload)
    assert exc.value.field == 'market_data.one_hour.close'


@pytest.mark.parametrize("mutate,field", [
    (lambda p: p['market_data'].update(vix_history=[12.0, 'high']), 'market_data.vix_history'),
    (lambda p: p['market_data'].update(historical='not bars'), 'market_data.historical'),
    (lambda p: p['option_chain']['strikes'][0].update(put_oi='lots'), 'option_chain.strikes.put_oi'),
    (lambda p: p['option_chain']['strikes'][0].pop('strike'), 'option_chain.strikes.strike'),
    (lambda p: p['risk_data'].update(current_volume='n/a'), 'risk_data.current_volume'),
    (lambda p: p['risk_data'].update(upcoming_events=['RBI']), 'risk_data.upcoming_events'),
    (lambda p: p['portfolio'].update(open_positions=[{'symbol': 'X', 'capital_allocated': {}}]),
     'portfolio.open_positions.capital_allocated'),
    (lambda p: p['portfolio'].update(trading_history={'total_trades': 2.5}), 'portfolio.trading_history.total_trades'),
    (lambda p: p['portfolio'].update(trading_history={'avg_win': 'big'}), 'portfolio.trading_history.avg_win'),
    (lambda p: p.update(portfolio=[1, 2]), 'portfolio'),
    (lambda p: p.update(max_open_positions='five'), 'max_open_positions'),
    (lambda p: p.update(risk_per_trade='2%'), 'risk_per_trade'),
])
def test_malformed_payload_raises_validation_error(mutate, field):
    payload = request_payload()
    mutate(payload)
    with pytest.raises(InputValidationError) as exc:
        SignalRequest.from_dict(payload)
    assert exc.value.field == field


def test_request_defaults_come_from_config():
    payload = request_payload()
    payload.pop('risk_per_trade', None)
    payload.pop('max_open_positions', None)
    request = SignalRequest.from_dict(payload)

    assert request.risk_per_trade == CONFIG.DEFAULT_RISK_PER_TRADE_PCT
    assert request.max_open_positions == CONFIG.DEFAULT_MAX_OPEN_POSITIONS
