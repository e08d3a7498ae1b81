import json

import pytest

from seven_layer_system.cli import main

from tests.builders import chain_payload, request_payload


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "ledger.db")


def _write_request(tmp_path, payload, name="request.json"):
    path = tmp_path / name
    path.write_text(json.dumps(payload), encoding="utf-8")
    return str(path)


def test_evaluate_prints_decision(tmp_path, db_path, capsys):
    request_file = _write_request(tmp_path, request_payload())

    assert main(['--db', db_path, '--log-level', 'ERROR', 'evaluate', '--request', request_file]) == 0

    summary = json.loads(capsys.readouterr().out)
    assert summary['signal_id'] == 1
    assert summary['recommendation'] == 'EXECUTE'
    assert summary['execution']['quantity'] == 2
    assert set(summary['layer_scores']) == {f'layer{i}' for i in range(1, 8)}


def test_list_and_show(tmp_path, db_path, capsys):
    rejected = request_payload(chain=chain_payload(put_writers=100))
    main(['--db', db_path, '--log-level', 'ERROR', 'evaluate', '--request', _write_request(tmp_path, rejected)])
    capsys.readouterr()

    assert main(['--db', db_path, '--log-level', 'ERROR', 'list', '--symbol', 'NIFTY']) == 0
    listing = capsys.readouterr().out
    assert 'REJECT' in listing

    assert main(['--db', db_path, '--log-level', 'ERROR', 'show', '1']) == 0
    shown = json.loads(capsys.readouterr().out)
    assert shown['status_reason'].startswith('WRITER_RATIO_FAILED')
    assert shown['layer6_score'] is None


def test_empty_ledger_listing(db_path, capsys):
    assert main(['--db', db_path, '--log-level', 'ERROR', 'list']) == 0
    assert "No signals recorded" in capsys.readouterr().out


def test_show_unknown_signal(db_path, capsys):
    assert main(['--db', db_path, '--log-level', 'ERROR', 'show', '7']) == 1
    assert "not found" in capsys.readouterr().err


def test_invalid_request_exits_with_error(tmp_path, db_path, capsys):
    request_file = _write_request(tmp_path, request_payload(option_type='PE'))

    assert main(['--db', db_path, '--log-level', 'ERROR', 'evaluate', '--request', request_file]) == 2
    assert "option_type" in capsys.readouterr().err


def test_missing_request_file_is_reported(tmp_path, db_path, capsys):
    missing = str(tmp_path / "nope.json")
    assert main(['--db', db_path, '--log-level', 'ERROR', 'evaluate', '--request', missing]) == 2
    err = capsys.readouterr().err
    assert "nope.json" in err
    assert "request" in err


def test_malformed_request_file_is_reported(tmp_path, db_path, capsys):
    path = tmp_path / "bad.json"
    path.write_text("{bad", encoding="utf-8")

    assert main(['--db', db_path, '--log-level', 'ERROR', 'evaluate', '--request', str(path)]) == 2
    assert "not valid JSON" in capsys.readouterr().err


def test_non_numeric_bar_in_request_file(tmp_path, db_path, capsys):
    payload = request_payload()
    payload['market_data']['five_min'][0]['open'] = 'abc'

    assert main(['--db', db_path, '--log-level', 'ERROR', 'evaluate',
                 '--request', _write_request(tmp_path, payload)]) == 2
    assert "market_data.five_min.open" in capsys.readouterr().err
