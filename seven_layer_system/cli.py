"""
Command-line entry for the 7-layer signal engine
================================================
Evaluates a JSON signal request and reads back the signal ledger.

Usage:
  python -m seven_layer_system evaluate --request request.json [--db data/trading_signals.db]
  python -m seven_layer_system list [--symbol NIFTY] [--limit 20]
  python -m seven_layer_system show 42
"""

import argparse
import json
import sys
from typing import List, Optional

from loguru import logger

from seven_layer_system.config.settings import configure_logging, load_settings
from seven_layer_system.exceptions import InputValidationError, SignalEngineError
from seven_layer_system.models import SignalRequest
from seven_layer_system.orchestrator import SignalOrchestrator
from seven_layer_system.storage.signal_store import SQLiteSignalStore


def build_parser() -> argparse.ArgumentParser:
    settings = load_settings()
    parser = argparse.ArgumentParser(description='7-layer options signal engine')
    parser.add_argument('--db', type=str, default=settings.db_path,
                        help=f'SQLite signal ledger (default: {settings.db_path})')
    parser.add_argument('--log-level', type=str, default=settings.log_level,
                        help='Log level (default: SIGNAL_LOG_LEVEL or INFO)')

    sub = parser.add_subparsers(dest='command', required=True)

    evaluate = sub.add_parser('evaluate', help='Evaluate a signal request')
    evaluate.add_argument('--request', type=str, required=True, help='Path to request JSON')
    evaluate.add_argument('--parallel', action='store_true', default=settings.parallel_layers,
                          help='Evaluate layers 1-4 concurrently')

    listing = sub.add_parser('list', help='List recent signals')
    listing.add_argument('--symbol', type=str, default=None)
    listing.add_argument('--limit', type=int, default=20)

    show = sub.add_parser('show', help='Show one signal with its full analysis')
    show.add_argument('signal_id', type=int)

    return parser


def _read_request(path: str) -> SignalRequest:
    try:
        with open(path, 'r', encoding='utf-8') as fh:
            payload = json.load(fh)
    except OSError as e:
        raise InputValidationError('request', f"cannot read {path}: {e.strerror or e}") from e
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InputValidationError('request', f"{path} is not valid JSON: {e}") from e
    return SignalRequest.from_dict(payload)


def _evaluate(args, store: SQLiteSignalStore) -> int:
    request = _read_request(args.request)
    orchestrator = SignalOrchestrator(store=store, parallel_layers=args.parallel)
    output = orchestrator.generate_signal(request)

    summary = {
        'signal_id': output.signal.id,
        'recommendation': output.recommendation.value,
        'overall_score': output.overall_score,
        'status': output.signal.status,
        'status_reason': output.signal.status_reason,
        'layer_scores': output.analysis.scores(),
    }
    if output.execution_details is not None:
        summary['execution'] = output.to_dict()['execution_details']
    print(json.dumps(summary, indent=2))
    return 0


def _list(args, store: SQLiteSignalStore) -> int:
    df = store.signals_frame(symbol=args.symbol, limit=args.limit)
    if df.empty:
        print("No signals recorded")
    else:
        print(df.to_string(index=False))
    return 0


def _show(args, store: SQLiteSignalStore) -> int:
    signal = store.get(args.signal_id)
    if signal is None:
        print(f"Signal {args.signal_id} not found", file=sys.stderr)
        return 1
    print(json.dumps(signal.to_dict(), indent=2))
    return 0


COMMANDS = {'evaluate': _evaluate, 'list': _list, 'show': _show}


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    try:
        store = SQLiteSignalStore(args.db)
        return COMMANDS[args.command](args, store)
    except SignalEngineError as e:
        logger.error(str(e))
        print(f"error: {e}", file=sys.stderr)
        return 2


if __name__ == '__main__':
    sys.exit(main())
