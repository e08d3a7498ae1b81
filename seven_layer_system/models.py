"""
DATA MODEL
Request contracts, collaborator payloads and the persisted signal record.

Collaborator data (bars, option chain, calendar, portfolio) arrives here
already fetched; nothing in this module performs I/O.
"""

import math
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from seven_layer_system.config.trading_config import CONFIG
from seven_layer_system.exceptions import InputValidationError, UpstreamDataError

OHLC_COLUMNS = ['open', 'high', 'low', 'close', 'volume']
PRICE_COLUMNS = ['open', 'high', 'low', 'close']


class SignalType(Enum):
    BUY_CALL = "BUY_CALL"
    BUY_PUT = "BUY_PUT"


class OptionType(Enum):
    CE = "CE"
    PE = "PE"


class Recommendation(Enum):
    EXECUTE = "EXECUTE"
    WAIT = "WAIT"
    REJECT = "REJECT"


class SignalStatus(Enum):
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class EventSeverity(Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class EventType(Enum):
    EARNINGS = "EARNINGS"
    ECONOMIC_DATA = "ECONOMIC_DATA"
    RBI_POLICY = "RBI_POLICY"
    FII_DII_DATA = "FII_DII_DATA"
    OTHER = "OTHER"


def to_serializable(value: Any) -> Any:
    """Convert dataclasses, enums, timestamps and numpy scalars into JSON-safe values"""
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_serializable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, dict):
        return {str(k): to_serializable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_serializable(v) for v in value]
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, np.bool_):
        return bool(value)
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, (float, np.floating)):
        value = float(value)
        return value if math.isfinite(value) else None
    return value


class LayerResult:
    """Mixin giving every layer result a JSON-ready dict form"""

    def to_dict(self) -> Dict[str, Any]:
        return to_serializable(self)


# ============================================================
# Market data
# ============================================================

@dataclass(frozen=True)
class OHLCBar:
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    @classmethod
    def from_dict(cls, payload: Dict, source: str = 'market_data') -> 'OHLCBar':
        payload = _mapping(payload, source)
        return cls(
            timestamp=parse_datetime(payload.get('timestamp'), f"{source}.timestamp"),
            open=_number(payload, 'open', f"{source}.open"),
            high=_number(payload, 'high', f"{source}.high"),
            low=_number(payload, 'low', f"{source}.low"),
            close=_number(payload, 'close', f"{source}.close"),
            volume=_number_or(payload, 'volume', f"{source}.volume"),
        )


def bars_to_frame(bars: Any, source: str = "market_data") -> pd.DataFrame:
    """
    Normalise a bar series into a lowercase OHLCV DataFrame

    Accepts a list of OHLCBar, a list of dicts or a DataFrame. Bars are
    ordered by timestamp when one is present.

    Raises:
        UpstreamDataError: missing price columns, non-finite or
            non-positive prices, or a bar with high < low
    """
    if bars is None:
        return pd.DataFrame(columns=OHLC_COLUMNS, dtype=float)

    if isinstance(bars, pd.DataFrame):
        df = bars.copy()
        df.columns = [str(c).lower() for c in df.columns]
    else:
        rows = []
        for bar in bars:
            if isinstance(bar, OHLCBar):
                rows.append({f.name: getattr(bar, f.name) for f in fields(bar)})
            else:
                rows.append({str(k).lower(): v for k, v in dict(bar).items()})
        df = pd.DataFrame(rows)

    if df.empty:
        return pd.DataFrame(columns=OHLC_COLUMNS, dtype=float)

    for col in PRICE_COLUMNS:
        if col not in df.columns:
            raise UpstreamDataError(source, col, "bar series is missing a price column")
    if 'volume' not in df.columns:
        df['volume'] = 0.0

    if 'timestamp' in df.columns:
        df['timestamp'] = pd.to_datetime(df['timestamp'])
        df = df.set_index('timestamp').sort_index()

    df = df[OHLC_COLUMNS].apply(pd.to_numeric, errors='coerce').astype(float)
    df['volume'] = df['volume'].fillna(0.0)

    prices = df[PRICE_COLUMNS].to_numpy()
    if not np.isfinite(prices).all():
        raise UpstreamDataError(source, 'close', "bar series contains non-finite prices")
    if (prices <= 0).any():
        raise UpstreamDataError(source, 'close', "bar series contains non-positive prices")
    if (df['high'] < df['low']).any():
        raise UpstreamDataError(source, 'high', "bar with high below low")
    if (df['volume'] < 0).any():
        raise UpstreamDataError(source, 'volume', "bar with negative volume")

    return df


@dataclass
class MarketData:
    spot_price: float
    vix_level: float
    vix_history: List[float] = field(default_factory=list)
    historical: Any = None      # daily bars
    one_hour: Any = None
    fifteen_min: Any = None
    five_min: Any = None

    @classmethod
    def from_dict(cls, payload: Dict) -> 'MarketData':
        def bars(key: str) -> List[OHLCBar]:
            source = f"market_data.{key}"
            return [OHLCBar.from_dict(b, source) for b in _items(payload, key, source)]

        return cls(
            spot_price=_number(payload, 'spot_price', 'market_data.spot_price'),
            vix_level=_number(payload, 'vix_level', 'market_data.vix_level'),
            vix_history=[
                _to_float(v, 'market_data.vix_history')
                for v in _items(payload, 'vix_history', 'market_data.vix_history')
            ],
            historical=bars('historical'),
            one_hour=bars('one_hour'),
            fifteen_min=bars('fifteen_min'),
            five_min=bars('five_min'),
        )


# ============================================================
# Option chain
# ============================================================

@dataclass
class OptionStrikeData:
    strike: float
    call_oi: float = 0.0
    put_oi: float = 0.0
    call_oi_change: float = 0.0
    put_oi_change: float = 0.0
    call_volume: float = 0.0
    put_volume: float = 0.0
    call_ltp: float = 0.0
    put_ltp: float = 0.0
    implied_vol: Optional[float] = None

    @classmethod
    def from_dict(cls, payload: Dict) -> 'OptionStrikeData':
        payload = _mapping(payload, 'option_chain.strikes')
        values = {
            f.name: _number(payload, f.name, f"option_chain.strikes.{f.name}")
            for f in fields(cls) if f.name == 'strike' or payload.get(f.name) is not None
        }
        return cls(**values)


@dataclass
class OptionChainSnapshot:
    strikes: List[OptionStrikeData]
    atm_strike: float
    target_strike: float
    expiry: Optional[date] = None

    def find_strike(self, strike: float) -> Optional[OptionStrikeData]:
        for row in self.strikes:
            if math.isclose(row.strike, strike):
                return row
        return None

    def validate(self) -> None:
        """
        Check the chain is internally consistent

        Raises:
            UpstreamDataError: empty chain, negative open interest,
                non-finite values, ATM or target strike absent
        """
        if not self.strikes:
            raise UpstreamDataError('option_chain', 'strikes', "option chain is empty")

        for row in self.strikes:
            values = [row.strike, row.call_oi, row.put_oi, row.call_oi_change, row.put_oi_change,
                      row.call_volume, row.put_volume, row.call_ltp, row.put_ltp]
            if not all(math.isfinite(v) for v in values):
                raise UpstreamDataError('option_chain', 'strikes', f"non-finite value at strike {row.strike}")
            if row.call_oi < 0 or row.put_oi < 0:
                raise UpstreamDataError('option_chain', 'open_interest', f"negative OI at strike {row.strike}")

        if self.find_strike(self.atm_strike) is None:
            raise UpstreamDataError('option_chain', 'atm_strike', f"ATM strike {self.atm_strike} not in chain")
        if self.find_strike(self.target_strike) is None:
            raise UpstreamDataError('option_chain', 'target_strike', f"target strike {self.target_strike} not in chain")

    def atm_implied_volatility(self) -> float:
        """ATM implied volatility; the chain must carry a positive value for it"""
        row = self.find_strike(self.atm_strike)
        if row is None:
            raise UpstreamDataError('option_chain', 'atm_strike', f"ATM strike {self.atm_strike} not in chain")
        if row.implied_vol is None or not math.isfinite(row.implied_vol) or row.implied_vol <= 0:
            raise UpstreamDataError('option_chain', 'implied_vol', f"no usable implied volatility at ATM strike {row.strike}")
        return float(row.implied_vol)

    @classmethod
    def from_dict(cls, payload: Dict) -> 'OptionChainSnapshot':
        expiry = payload.get('expiry')
        return cls(
            strikes=[OptionStrikeData.from_dict(s) for s in _items(payload, 'strikes', 'option_chain.strikes')],
            atm_strike=_number(payload, 'atm_strike', 'option_chain.atm_strike'),
            target_strike=_number(payload, 'target_strike', 'option_chain.target_strike'),
            expiry=parse_date(expiry, 'option_chain.expiry') if expiry else None,
        )


# ============================================================
# Risk context (calendar, events, liquidity)
# ============================================================

@dataclass
class MarketEvent:
    event_type: EventType
    event_time: datetime
    severity: EventSeverity
    description: str = ""

    @classmethod
    def from_dict(cls, payload: Dict) -> 'MarketEvent':
        payload = _mapping(payload, 'risk_data.upcoming_events')
        return cls(
            event_type=_enum(EventType, payload.get('event_type', 'OTHER'), 'risk_data.upcoming_events.event_type'),
            event_time=parse_datetime(payload.get('event_time'), 'risk_data.upcoming_events.event_time'),
            severity=_enum(EventSeverity, payload.get('severity'), 'risk_data.upcoming_events.severity'),
            description=payload.get('description', ''),
        )


@dataclass
class RiskContext:
    current_time: datetime
    is_expiry_day: bool = False
    upcoming_events: List[MarketEvent] = field(default_factory=list)
    current_volume: float = 0.0
    avg_volume: float = 0.0
    circuit_breaker: bool = False
    market_open_time: Optional[datetime] = None
    market_close_time: Optional[datetime] = None

    @classmethod
    def from_dict(cls, payload: Dict) -> 'RiskContext':
        open_time = payload.get('market_open_time')
        close_time = payload.get('market_close_time')
        return cls(
            current_time=parse_datetime(payload.get('current_time'), 'risk_data.current_time'),
            is_expiry_day=bool(payload.get('is_expiry_day', False)),
            upcoming_events=[
                MarketEvent.from_dict(e)
                for e in _items(payload, 'upcoming_events', 'risk_data.upcoming_events')
            ],
            current_volume=_number_or(payload, 'current_volume', 'risk_data.current_volume'),
            avg_volume=_number_or(payload, 'avg_volume', 'risk_data.avg_volume'),
            circuit_breaker=bool(payload.get('circuit_breaker', False)),
            market_open_time=parse_datetime(open_time, 'risk_data.market_open_time') if open_time else None,
            market_close_time=parse_datetime(close_time, 'risk_data.market_close_time') if close_time else None,
        )


# ============================================================
# Portfolio
# ============================================================

@dataclass
class OpenPosition:
    symbol: str
    capital_allocated: float
    unrealized_pnl: float = 0.0


@dataclass
class TradingHistory:
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    avg_win: float = 0.0
    avg_loss: float = 0.0
    profit_factor: float = 0.0

    @property
    def win_rate(self) -> float:
        return self.winning_trades / self.total_trades if self.total_trades > 0 else 0.0


@dataclass
class PortfolioState:
    total_capital: float
    available_capital: float
    open_positions: List[OpenPosition] = field(default_factory=list)
    trading_history: TradingHistory = field(default_factory=TradingHistory)

    @classmethod
    def from_dict(cls, payload: Dict) -> 'PortfolioState':
        history = _mapping(payload.get('trading_history') or {}, 'portfolio.trading_history')
        positions = [
            _mapping(p, 'portfolio.open_positions')
            for p in _items(payload, 'open_positions', 'portfolio.open_positions')
        ]
        return cls(
            total_capital=_number(payload, 'total_capital', 'portfolio.total_capital'),
            available_capital=_number(payload, 'available_capital', 'portfolio.available_capital'),
            open_positions=[
                OpenPosition(
                    symbol=p.get('symbol', ''),
                    capital_allocated=_number_or(p, 'capital_allocated', 'portfolio.open_positions.capital_allocated'),
                    unrealized_pnl=_number_or(p, 'unrealized_pnl', 'portfolio.open_positions.unrealized_pnl'),
                )
                for p in positions
            ],
            trading_history=TradingHistory(
                total_trades=_integer(history, 'total_trades', 'portfolio.trading_history.total_trades'),
                winning_trades=_integer(history, 'winning_trades', 'portfolio.trading_history.winning_trades'),
                losing_trades=_integer(history, 'losing_trades', 'portfolio.trading_history.losing_trades'),
                avg_win=_number_or(history, 'avg_win', 'portfolio.trading_history.avg_win'),
                avg_loss=_number_or(history, 'avg_loss', 'portfolio.trading_history.avg_loss'),
                profit_factor=_number_or(history, 'profit_factor', 'portfolio.trading_history.profit_factor'),
            ),
        )


# ============================================================
# Request
# ============================================================

@dataclass
class SignalRequest:
    symbol: str
    strike: float
    expiry: date
    option_type: OptionType
    signal_type: SignalType
    market_data: MarketData
    option_chain: OptionChainSnapshot
    risk_data: RiskContext
    portfolio: PortfolioState
    risk_per_trade: float = CONFIG.DEFAULT_RISK_PER_TRADE_PCT
    max_open_positions: int = CONFIG.DEFAULT_MAX_OPEN_POSITIONS
    entry_price: Optional[float] = None
    stop_loss_pct: Optional[float] = None
    target_pct: Optional[float] = None

    def __post_init__(self):
        # accept plain strings for the enum fields; validate() rejects anything unknown
        if isinstance(self.option_type, str) and self.option_type in OptionType.__members__:
            self.option_type = OptionType(self.option_type)
        if isinstance(self.signal_type, str) and self.signal_type in SignalType.__members__:
            self.signal_type = SignalType(self.signal_type)

    def validate(self) -> None:
        """
        Fail fast on missing or malformed fields

        Raises:
            InputValidationError: naming the first offending field
        """
        if not isinstance(self.symbol, str) or not self.symbol.strip():
            raise InputValidationError('symbol', "symbol is required")
        _require_positive(self.strike, 'strike')
        if not isinstance(self.expiry, date):
            raise InputValidationError('expiry', "expiry must be a date")
        if not isinstance(self.option_type, OptionType):
            raise InputValidationError('option_type', f"expected CE or PE, got {self.option_type!r}")
        if not isinstance(self.signal_type, SignalType):
            raise InputValidationError('signal_type', f"expected BUY_CALL or BUY_PUT, got {self.signal_type!r}")

        expected = OptionType.CE if self.signal_type == SignalType.BUY_CALL else OptionType.PE
        if self.option_type != expected:
            raise InputValidationError(
                'option_type', f"{self.signal_type.value} requires {expected.value}, got {self.option_type.value}"
            )

        if not isinstance(self.market_data, MarketData):
            raise InputValidationError('market_data', "market data is required")
        _require_positive(self.market_data.spot_price, 'market_data.spot_price')
        _require_non_negative(self.market_data.vix_level, 'market_data.vix_level')
        for value in self.market_data.vix_history:
            _require_non_negative(value, 'market_data.vix_history')

        if not isinstance(self.option_chain, OptionChainSnapshot):
            raise InputValidationError('option_chain', "option chain is required")
        if not isinstance(self.risk_data, RiskContext):
            raise InputValidationError('risk_data', "risk context is required")
        if not isinstance(self.risk_data.current_time, datetime):
            raise InputValidationError('risk_data.current_time', "current time must be a datetime")

        if not isinstance(self.portfolio, PortfolioState):
            raise InputValidationError('portfolio', "portfolio state is required")
        _require_positive(self.portfolio.total_capital, 'portfolio.total_capital')
        _require_finite(self.portfolio.available_capital, 'portfolio.available_capital')
        history = self.portfolio.trading_history
        if history.total_trades < 0 or history.winning_trades < 0 or history.losing_trades < 0:
            raise InputValidationError('portfolio.trading_history', "trade counts must be non-negative")
        if history.winning_trades > history.total_trades:
            raise InputValidationError('portfolio.trading_history', "winning trades exceed total trades")

        _require_finite(self.risk_per_trade, 'risk_per_trade')
        if not 0 < self.risk_per_trade <= 100:
            raise InputValidationError('risk_per_trade', "risk per trade must be within (0, 100]")
        if not isinstance(self.max_open_positions, int) or self.max_open_positions < 1:
            raise InputValidationError('max_open_positions', "at least one open position must be allowed")

        if self.entry_price is not None:
            _require_positive(self.entry_price, 'entry_price')
        for name in ('stop_loss_pct', 'target_pct'):
            value = getattr(self, name)
            if value is not None:
                _require_finite(value, name)
                if not 0 < value < 1:
                    raise InputValidationError(name, "must be a fraction between 0 and 1")

    @classmethod
    def from_dict(cls, payload: Dict) -> 'SignalRequest':
        """Build a request from its JSON form (snake_case keys)"""
        if not isinstance(payload, dict):
            raise InputValidationError('request', "request payload must be an object")
        for key in ('symbol', 'strike', 'expiry', 'option_type', 'signal_type',
                    'market_data', 'option_chain', 'risk_data', 'portfolio'):
            if payload.get(key) is None:
                raise InputValidationError(key, "field is required")

        return cls(
            symbol=str(payload['symbol']),
            strike=_number(payload, 'strike', 'strike'),
            expiry=parse_date(payload['expiry'], 'expiry'),
            option_type=_enum(OptionType, payload['option_type'], 'option_type'),
            signal_type=_enum(SignalType, payload['signal_type'], 'signal_type'),
            market_data=MarketData.from_dict(_mapping(payload['market_data'], 'market_data')),
            option_chain=OptionChainSnapshot.from_dict(_mapping(payload['option_chain'], 'option_chain')),
            risk_data=RiskContext.from_dict(_mapping(payload['risk_data'], 'risk_data')),
            portfolio=PortfolioState.from_dict(_mapping(payload['portfolio'], 'portfolio')),
            risk_per_trade=_number_or(payload, 'risk_per_trade', 'risk_per_trade',
                                      CONFIG.DEFAULT_RISK_PER_TRADE_PCT),
            max_open_positions=_integer(payload, 'max_open_positions', 'max_open_positions',
                                        CONFIG.DEFAULT_MAX_OPEN_POSITIONS),
            entry_price=_optional_number(payload, 'entry_price'),
            stop_loss_pct=_optional_number(payload, 'stop_loss_pct'),
            target_pct=_optional_number(payload, 'target_pct'),
        )


# ============================================================
# Outputs
# ============================================================

@dataclass(frozen=True)
class TradingSignal:
    """
    One row of the append-only signal ledger

    Frozen at the attribute level only: `analysis` is a plain dict. Stores
    hand out copies, so editing a returned row never reaches the ledger.
    """

    symbol: str
    strike: float
    expiry: date
    option_type: str
    signal_type: str
    entry_price: Optional[float]
    stop_loss: Optional[float]
    target: Optional[float]
    quantity: int
    layer1_score: float
    layer2_score: float
    layer3_score: float
    layer4_score: float
    layer5_score: float
    layer6_score: Optional[float]
    layer7_score: Optional[float]
    writer_ratio: float
    writer_ratio_passed: bool
    call_writers: float
    put_writers: float
    vix_level: float
    market_regime: str
    overall_score: int
    recommendation: str
    status: str
    status_reason: str
    analysis: Dict[str, Any]
    id: Optional[int] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return to_serializable(self)


@dataclass
class ExecutionDetails:
    entry_price: float
    stop_loss: float
    target: float
    quantity: int
    capital_to_allocate: float
    risk_amount: float


@dataclass
class SignalOutput:
    success: bool
    signal: TradingSignal
    analysis: Any
    overall_score: int
    recommendation: Recommendation
    rejection_reason: Optional[str] = None
    warning: Optional[str] = None
    execution_details: Optional[ExecutionDetails] = None

    def to_dict(self) -> Dict[str, Any]:
        return to_serializable(self)


# ============================================================
# Parsing helpers
# ============================================================

def parse_datetime(value: Any, field_name: str) -> datetime:
    if isinstance(value, datetime):
        return value
    if value is None or value == '':
        raise InputValidationError(field_name, "timestamp is required")
    try:
        return pd.Timestamp(value).to_pydatetime()
    except (ValueError, TypeError) as e:
        raise InputValidationError(field_name, f"unparseable timestamp {value!r}") from e


def parse_date(value: Any, field_name: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return parse_datetime(value, field_name).date()


def _enum(enum_cls, value: Any, field_name: str):
    try:
        return enum_cls(value)
    except ValueError as e:
        allowed = ", ".join(m.value for m in enum_cls)
        raise InputValidationError(field_name, f"expected one of {allowed}, got {value!r}") from e


def _mapping(value: Any, field_name: str) -> Dict:
    if not isinstance(value, dict):
        raise InputValidationError(field_name, f"expected an object, got {type(value).__name__}")
    return value


def _items(payload: Dict, key: str, field_name: str) -> List:
    value = payload.get(key)
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise InputValidationError(field_name, f"expected a list, got {type(value).__name__}")
    return list(value)


def _to_float(value: Any, field_name: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise InputValidationError(field_name, f"not a number: {value!r}") from e


def _number(payload: Dict, key: str, field_name: str) -> float:
    if payload.get(key) is None:
        raise InputValidationError(field_name, "field is required")
    return _to_float(payload[key], field_name)


def _number_or(payload: Dict, key: str, field_name: str, default: float = 0.0) -> float:
    if payload.get(key) is None:
        return default
    return _to_float(payload[key], field_name)


def _integer(payload: Dict, key: str, field_name: str, default: int = 0) -> int:
    value = _number_or(payload, key, field_name, default)
    if not math.isfinite(value) or value != int(value):
        raise InputValidationError(field_name, f"expected a whole number, got {payload.get(key)!r}")
    return int(value)


def _optional_number(payload: Dict, key: str) -> Optional[float]:
    if payload.get(key) is None:
        return None
    return _number(payload, key, key)


def _require_finite(value: Any, field_name: str) -> None:
    if not isinstance(value, (int, float)) or isinstance(value, bool) or not math.isfinite(value):
        raise InputValidationError(field_name, f"expected a finite number, got {value!r}")


def _require_positive(value: Any, field_name: str) -> None:
    _require_finite(value, field_name)
    if value <= 0:
        raise InputValidationError(field_name, "must be positive")


def _require_non_negative(value: Any, field_name: str) -> None:
    _require_finite(value, field_name)
    if value < 0:
        raise InputValidationError(field_name, "must not be negative")
