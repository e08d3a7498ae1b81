"""
SIGNAL STORE
Append-only ledger of every decision the orchestrator makes.

One row per evaluation (approved or rejected), with the per-layer scores
and the full analysis payload as JSON. Rows are never updated or deleted;
the SQLite schema enforces this with triggers.
"""

import copy
import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import pandas as pd
import pytz
from loguru import logger

from seven_layer_system.config.settings import DEFAULT_DB_PATH
from seven_layer_system.exceptions import PersistenceError
from seven_layer_system.models import TradingSignal, parse_date, parse_datetime

IST = pytz.timezone('Asia/Kolkata')

SIGNAL_COLUMNS = [
    'symbol', 'strike', 'expiry', 'option_type', 'signal_type',
    'entry_price', 'stop_loss', 'target', 'quantity',
    'layer1_score', 'layer2_score', 'layer3_score', 'layer4_score',
    'layer5_score', 'layer6_score', 'layer7_score',
    'writer_ratio', 'writer_ratio_passed', 'call_writers', 'put_writers',
    'vix_level', 'market_regime', 'overall_score', 'recommendation',
    'status', 'status_reason', 'analysis', 'created_at',
]


class SignalStore(ABC):
    """Append-only signal ledger (no update or delete operations)"""

    @abstractmethod
    def append(self, signal: TradingSignal) -> TradingSignal:
        """Persist a new signal and return it with `id` and `created_at` assigned"""

    @abstractmethod
    def get(self, signal_id: int) -> Optional[TradingSignal]:
        """Fetch one signal by id"""

    @abstractmethod
    def list_signals(self, symbol: Optional[str] = None, status: Optional[str] = None,
                     limit: int = 50, offset: int = 0) -> List[TradingSignal]:
        """Newest first"""

    @abstractmethod
    def count(self, symbol: Optional[str] = None, status: Optional[str] = None) -> int:
        """Number of stored signals matching the filters"""


class InMemorySignalStore(SignalStore):
    """Process-local ledger, used by tests and dry runs"""

    def __init__(self):
        self._rows: List[TradingSignal] = []
        self._lock = threading.Lock()

    def append(self, signal: TradingSignal) -> TradingSignal:
        with self._lock:
            stored = replace(
                signal,
                id=len(self._rows) + 1,
                created_at=datetime.now(IST),
                analysis=copy.deepcopy(signal.analysis),
            )
            self._rows.append(stored)
        return copy.deepcopy(stored)

    def get(self, signal_id: int) -> Optional[TradingSignal]:
        with self._lock:
            for row in self._rows:
                if row.id == signal_id:
                    return copy.deepcopy(row)
        return None

    def _filtered(self, symbol: Optional[str], status: Optional[str]) -> List[TradingSignal]:
        return [
            row for row in self._rows
            if (symbol is None or row.symbol == symbol) and (status is None or row.status == status)
        ]

    def list_signals(self, symbol: Optional[str] = None, status: Optional[str] = None,
                     limit: int = 50, offset: int = 0) -> List[TradingSignal]:
        with self._lock:
            rows = list(reversed(self._filtered(symbol, status)))
        return [copy.deepcopy(r) for r in rows[offset:offset + limit]]

    def count(self, symbol: Optional[str] = None, status: Optional[str] = None) -> int:
        with self._lock:
            return len(self._filtered(symbol, status))


class SQLiteSignalStore(SignalStore):
    """
    SQLite-backed ledger.

    Table: trading_signals (one row per evaluation), guarded by
    BEFORE UPDATE / BEFORE DELETE triggers that abort.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """
        Initialize the store, creating the schema if needed.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._initialize_database()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _initialize_database(self):
        """Create table, indexes and append-only triggers if they don't exist"""
        try:
            conn = self._connect()
            try:
                conn.executescript("""
                CREATE TABLE IF NOT EXISTS trading_signals (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    symbol TEXT NOT NULL,
                    strike REAL NOT NULL,
                    expiry TEXT NOT NULL,
                    option_type TEXT NOT NULL,
                    signal_type TEXT NOT NULL,

                    -- EXECUTION (only on approved signals)
                    entry_price REAL,
                    stop_loss REAL,
                    target REAL,
                    quantity INTEGER NOT NULL DEFAULT 0,

                    -- LAYER SCORES (L6/L7 are NULL when the writer gate halts)
                    layer1_score REAL NOT NULL,
                    layer2_score REAL NOT NULL,
                    layer3_score REAL NOT NULL,
                    layer4_score REAL NOT NULL,
                    layer5_score REAL NOT NULL,
                    layer6_score REAL,
                    layer7_score REAL,

                    -- WRITER GATE
                    writer_ratio REAL NOT NULL,
                    writer_ratio_passed INTEGER NOT NULL,
                    call_writers REAL NOT NULL,
                    put_writers REAL NOT NULL,

                    -- CONTEXT
                    vix_level REAL NOT NULL,
                    market_regime TEXT NOT NULL,

                    -- DECISION
                    overall_score INTEGER NOT NULL,
                    recommendation TEXT NOT NULL,   -- EXECUTE, WAIT, REJECT
                    status TEXT NOT NULL,           -- APPROVED, REJECTED
                    status_reason TEXT NOT NULL,
                    analysis TEXT NOT NULL,         -- JSON payload of all layer results

                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_signals_symbol ON trading_signals(symbol, created_at);
                CREATE INDEX IF NOT EXISTS idx_signals_status ON trading_signals(status);

                CREATE TRIGGER IF NOT EXISTS trading_signals_no_update
                BEFORE UPDATE ON trading_signals
                BEGIN
                    SELECT RAISE(ABORT, 'trading_signals is append-only');
                END;

                CREATE TRIGGER IF NOT EXISTS trading_signals_no_delete
                BEFORE DELETE ON trading_signals
                BEGIN
                    SELECT RAISE(ABORT, 'trading_signals is append-only');
                END;
                """)
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.error(f"Failed to initialise signal store at {self.db_path}: {e}")
            raise PersistenceError(f"Could not initialise signal store: {e}", e) from e

    def append(self, signal: TradingSignal) -> TradingSignal:
        created_at = datetime.now(IST)
        analysis_json = json.dumps(signal.analysis)
        values = (
            signal.symbol,
            signal.strike,
            signal.expiry.isoformat(),
            signal.option_type,
            signal.signal_type,
            signal.entry_price,
            signal.stop_loss,
            signal.target,
            signal.quantity,
            signal.layer1_score,
            signal.layer2_score,
            signal.layer3_score,
            signal.layer4_score,
            signal.layer5_score,
            signal.layer6_score,
            signal.layer7_score,
            signal.writer_ratio,
            int(signal.writer_ratio_passed),
            signal.call_writers,
            signal.put_writers,
            signal.vix_level,
            signal.market_regime,
            signal.overall_score,
            signal.recommendation,
            signal.status,
            signal.status_reason,
            analysis_json,
            created_at.isoformat(),
        )
        placeholders = ", ".join("?" for _ in SIGNAL_COLUMNS)

        try:
            conn = self._connect()
            try:
                cursor = conn.cursor()
                cursor.execute(
                    f"INSERT INTO trading_signals ({', '.join(SIGNAL_COLUMNS)}) VALUES ({placeholders})",
                    values,
                )
                conn.commit()
                signal_id = cursor.lastrowid
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.error(f"Failed to store signal for {signal.symbol} {signal.strike}: {e}")
            raise PersistenceError(f"Could not persist trading signal: {e}", e) from e

        logger.debug(f"Stored signal #{signal_id} ({signal.status})")
        return replace(signal, id=signal_id, created_at=created_at, analysis=json.loads(analysis_json))

    def get(self, signal_id: int) -> Optional[TradingSignal]:
        rows = self._query("SELECT * FROM trading_signals WHERE id = ?", (signal_id,))
        return self._row_to_signal(rows[0]) if rows else None

    @staticmethod
    def _where(symbol: Optional[str], status: Optional[str]):
        clauses, params = [], []
        if symbol is not None:
            clauses.append("symbol = ?")
            params.append(symbol)
        if status is not None:
            clauses.append("status = ?")
            params.append(status)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

    def list_signals(self, symbol: Optional[str] = None, status: Optional[str] = None,
                     limit: int = 50, offset: int = 0) -> List[TradingSignal]:
        where, params = self._where(symbol, status)
        rows = self._query(
            f"SELECT * FROM trading_signals{where} ORDER BY id DESC LIMIT ? OFFSET ?",
            (*params, limit, offset),
        )
        return [self._row_to_signal(r) for r in rows]

    def count(self, symbol: Optional[str] = None, status: Optional[str] = None) -> int:
        where, params = self._where(symbol, status)
        rows = self._query(f"SELECT COUNT(*) AS n FROM trading_signals{where}", tuple(params))
        return int(rows[0]['n'])

    def signals_frame(self, symbol: Optional[str] = None, limit: int = 50) -> pd.DataFrame:
        """Tabular summary of recent signals for reporting"""
        where, params = self._where(symbol, None)
        query = f"""
        SELECT id, created_at, symbol, strike, option_type, overall_score,
               recommendation, status, status_reason, writer_ratio, quantity
        FROM trading_signals{where}
        ORDER BY id DESC
        LIMIT ?
        """
        try:
            conn = sqlite3.connect(self.db_path)
            try:
                return pd.read_sql_query(query, conn, params=(*params, limit))
            finally:
                conn.close()
        except (sqlite3.Error, pd.errors.DatabaseError) as e:
            logger.error(f"Failed to read signal summary: {e}")
            raise PersistenceError(f"Could not read signals: {e}", e) from e

    def _query(self, sql: str, params: tuple) -> List[sqlite3.Row]:
        try:
            conn = self._connect()
            try:
                return conn.execute(sql, params).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.error(f"Signal store query failed: {e}")
            raise PersistenceError(f"Could not read signals: {e}", e) from e

    @staticmethod
    def _row_to_signal(row: sqlite3.Row) -> TradingSignal:
        return TradingSignal(
            id=row['id'],
            symbol=row['symbol'],
            strike=row['strike'],
            expiry=parse_date(row['expiry'], 'expiry'),
            option_type=row['option_type'],
            signal_type=row['signal_type'],
            entry_price=row['entry_price'],
            stop_loss=row['stop_loss'],
            target=row['target'],
            quantity=row['quantity'],
            layer1_score=row['layer1_score'],
            layer2_score=row['layer2_score'],
            layer3_score=row['layer3_score'],
            layer4_score=row['layer4_score'],
            layer5_score=row['layer5_score'],
            layer6_score=row['layer6_score'],
            layer7_score=row['layer7_score'],
            writer_ratio=row['writer_ratio'],
            writer_ratio_passed=bool(row['writer_ratio_passed']),
            call_writers=row['call_writers'],
            put_writers=row['put_writers'],
            vix_level=row['vix_level'],
            market_regime=row['market_regime'],
            overall_score=row['overall_score'],
            recommendation=row['recommendation'],
            status=row['status'],
            status_reason=row['status_reason'],
            analysis=json.loads(row['analysis']),
            created_at=parse_datetime(row['created_at'], 'created_at'),
        )
