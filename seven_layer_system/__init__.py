"""
7-Layer Options Signal Engine

Decides EXECUTE / WAIT / REJECT for a single index option trade and sizes
approved trades. Every decision is written to an append-only ledger.
"""

from .exceptions import SignalEngineError, InputValidationError, UpstreamDataError, PersistenceError
from .models import (
    OHLCBar,
    OptionStrikeData,
    OptionChainSnapshot,
    MarketData,
    MarketEvent,
    RiskContext,
    OpenPosition,
    TradingHistory,
    PortfolioState,
    SignalRequest,
    TradingSignal,
    SignalOutput,
    SignalType,
    OptionType,
    Recommendation,
    SignalStatus,
)
from .orchestrator import SignalOrchestrator, SignalAnalysis
from .storage import SignalStore, SQLiteSignalStore, InMemorySignalStore

__version__ = "0.1.0"

__all__ = [
    'SignalEngineError', 'InputValidationError', 'UpstreamDataError', 'PersistenceError',
    'OHLCBar', 'OptionStrikeData', 'OptionChainSnapshot', 'MarketData', 'MarketEvent',
    'RiskContext', 'OpenPosition', 'TradingHistory', 'PortfolioState',
    'SignalRequest', 'TradingSignal', 'SignalOutput',
    'SignalType', 'OptionType', 'Recommendation', 'SignalStatus',
    'SignalOrchestrator', 'SignalAnalysis',
    'SignalStore', 'SQLiteSignalStore', 'InMemorySignalStore',
]
