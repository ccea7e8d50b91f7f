from __future__ import annotations

"""Dataclasses and enums shared by the lifecycle engine."""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class Direction(str, Enum):
    LONG = "long"
    SHORT = "short"

    @property
    def sign(self) -> int:
        return 1 if self is Direction.LONG else -1


class MarketKind(str, Enum):
    SPOT = "spot"
    FUTURES = "futures"


class SetupState(str, Enum):
    WATCHING = "watching"
    TRIGGERED = "triggered"
    DEEP_EXTREME = "deep_extreme"
    REVERSING = "reversing"
    PLAYED_OUT = "played_out"


OPENABLE_STATES = frozenset({SetupState.TRIGGERED, SetupState.DEEP_EXTREME})


class PositionStatus(str, Enum):
    OPEN = "open"
    PARTIAL_TP1 = "partial_tp1"
    CLOSED = "closed"


class ExitReason(str, Enum):
    TAKE_PROFIT = "take_profit"
    STOP_LOSS = "stop_loss"
    TRAILING_STOP = "trailing_stop"
    BREAKEVEN = "breakeven"
    INSURANCE_BE = "insurance_be"
    LIQUIDATION = "liquidation"
    PLAYED_OUT = "played_out"
    END_OF_DATA = "end_of_data"


class Volatility(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    EXTREME = "extreme"


class MarketBias(str, Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


class SkipReason(str, Enum):
    INVALID_SETUP_STATE = "invalid_setup_state"
    MARKET_FILTERED = "market_filtered"
    DUPLICATE_POSITION = "duplicate_position"
    MAX_POSITIONS_REACHED = "max_positions_reached"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    BELOW_MINIMUM_SIZE = "below_minimum_size"


PositionKey = tuple[str, Direction, MarketKind]


def position_key(symbol: str, direction: Direction, market_kind: MarketKind) -> PositionKey:
    return (symbol.upper(), Direction(direction), MarketKind(market_kind))


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True, frozen=True)
class Setup:
    """Immutable snapshot emitted by an external setup detector."""

    symbol: str
    direction: Direction
    state: SetupState
    current_price: float
    current_rsi: Optional[float] = None
    timeframe: str = "5m"
    market_kind: MarketKind = MarketKind.FUTURES
    structural_stop_price: Optional[float] = None
    structural_target_price: Optional[float] = None
    timestamp: Optional[datetime] = None

    @property
    def key(self) -> PositionKey:
        return position_key(self.symbol, self.direction, self.market_kind)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Setup":
        def _opt_float(key: str) -> Optional[float]:
            value = payload.get(key)
            if value is None or value == "":
                return None
            return float(value)

        timestamp = payload.get("timestamp")
        return cls(
            symbol=str(payload["symbol"]).upper(),
            direction=Direction(str(payload["direction"]).lower()),
            state=SetupState(str(payload["state"]).lower()),
            current_price=float(payload["current_price"]),
            current_rsi=_opt_float("current_rsi"),
            timeframe=str(payload.get("timeframe", "5m")),
            market_kind=MarketKind(str(payload.get("market_kind", MarketKind.FUTURES.value)).lower()),
            structural_stop_price=_opt_float("structural_stop_price"),
            structural_target_price=_opt_float("structural_target_price"),
            timestamp=datetime.fromisoformat(timestamp) if timestamp else None,
        )


@dataclass(slots=True)
class Position:
    """One simulated leveraged trade, open or closed."""

    id: str
    symbol: str
    direction: Direction
    market_kind: MarketKind
    timeframe: str
    entry_price: float
    effective_entry_price: float
    entry_time: datetime
    entry_costs: float
    margin_used: float
    notional_size: float
    leverage: float
    stop_loss_price: float
    initial_stop_loss_price: float
    take_profit_price: float = 0.0
    partial_take_profit_price: float = 0.0
    trail_level: int = 0
    high_water_mark_roe: float = 0.0
    breakeven_locked: bool = False
    reserved_margin: float = 0.0
    original_margin_used: float = 0.0
    original_notional_size: float = 0.0
    insurance_taken: bool = False
    insurance_taken_at: Optional[datetime] = None
    insurance_locked_pnl: float = 0.0
    partial_taken: bool = False
    partial_taken_at: Optional[datetime] = None
    partial_realized_pnl: float = 0.0
    current_price: float = 0.0
    unrealized_pnl: float = 0.0
    unrealized_pnl_percent: float = 0.0
    last_update_at: Optional[datetime] = None
    status: PositionStatus = PositionStatus.OPEN
    exit_price: Optional[float] = None
    exit_time: Optional[datetime] = None
    exit_reason: Optional[ExitReason] = None
    exit_costs: float = 0.0
    funding_paid: float = 0.0
    realized_pnl: Optional[float] = None
    realized_pnl_percent: Optional[float] = None

    @property
    def key(self) -> PositionKey:
        return position_key(self.symbol, self.direction, self.market_kind)

    @property
    def is_closed(self) -> bool:
        return self.status is PositionStatus.CLOSED

    @property
    def is_split(self) -> bool:
        return self.insurance_taken or self.partial_taken

    @property
    def locked_pnl(self) -> float:
        """PnL already booked by insurance or partial take-profit splits."""
        return self.insurance_locked_pnl + self.partial_realized_pnl

    def to_dict(self) -> dict[str, Any]:
        def _ts(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value is not None else None

        return {
            "id": self.id,
            "symbol": self.symbol,
            "direction": self.direction.value,
            "market_kind": self.market_kind.value,
            "timeframe": self.timeframe,
            "entry_price": self.entry_price,
            "effective_entry_price": self.effective_entry_price,
            "entry_time": _ts(self.entry_time),
            "entry_costs": self.entry_costs,
            "margin_used": self.margin_used,
            "notional_size": self.notional_size,
            "leverage": self.leverage,
            "stop_loss_price": self.stop_loss_price,
            "initial_stop_loss_price": self.initial_stop_loss_price,
            "take_profit_price": self.take_profit_price,
            "partial_take_profit_price": self.partial_take_profit_price,
            "trail_level": self.trail_level,
            "high_water_mark_roe": self.high_water_mark_roe,
            "breakeven_locked": self.breakeven_locked,
            "reserved_margin": self.reserved_margin,
            "original_margin_used": self.original_margin_used,
            "original_notional_size": self.original_notional_size,
            "insurance_taken": self.insurance_taken,
            "insurance_taken_at": _ts(self.insurance_taken_at),
            "insurance_locked_pnl": self.insurance_locked_pnl,
            "partial_taken": self.partial_taken,
            "partial_taken_at": _ts(self.partial_taken_at),
            "partial_realized_pnl": self.partial_realized_pnl,
            "current_price": self.current_price,
            "unrealized_pnl": self.unrealized_pnl,
            "unrealized_pnl_percent": self.unrealized_pnl_percent,
            "last_update_at": _ts(self.last_update_at),
            "status": self.status.value,
            "exit_price": self.exit_price,
            "exit_time": _ts(self.exit_time),
            "exit_reason": self.exit_reason.value if self.exit_reason else None,
            "exit_costs": self.exit_costs,
            "funding_paid": self.funding_paid,
            "realized_pnl": self.realized_pnl,
            "realized_pnl_percent": self.realized_pnl_percent,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Position":
        def _dt(value: Any) -> Optional[datetime]:
            if value is None or value == "":
                return None
            if isinstance(value, datetime):
                return value
            return datetime.fromisoformat(str(value))

        def _opt_float(value: Any) -> Optional[float]:
            return float(value) if value is not None else None

        exit_reason = payload.get("exit_reason")
        entry_time = _dt(payload.get("entry_time")) or utc_now()
        return cls(
            id=str(payload["id"]),
            symbol=str(payload["symbol"]).upper(),
            direction=Direction(payload["direction"]),
            market_kind=MarketKind(payload.get("market_kind", MarketKind.FUTURES.value)),
            timeframe=str(payload.get("timeframe", "5m")),
            entry_price=float(payload["entry_price"]),
            effective_entry_price=float(
                payload.get("effective_entry_price", payload["entry_price"])
            ),
            entry_time=entry_time,
            entry_costs=float(payload.get("entry_costs", 0.0) or 0.0),
            margin_used=float(payload["margin_used"]),
            notional_size=float(payload["notional_size"]),
            leverage=float(payload["leverage"]),
            stop_loss_price=float(payload["stop_loss_price"]),
            initial_stop_loss_price=float(
                payload.get("initial_stop_loss_price", payload["stop_loss_price"])
            ),
            take_profit_price=float(payload.get("take_profit_price", 0.0) or 0.0),
            partial_take_profit_price=float(payload.get("partial_take_profit_price", 0.0) or 0.0),
            trail_level=int(payload.get("trail_level", 0) or 0),
            high_water_mark_roe=float(payload.get("high_water_mark_roe", 0.0) or 0.0),
            breakeven_locked=bool(payload.get("breakeven_locked", False)),
            reserved_margin=float(payload.get("reserved_margin", payload["margin_used"])),
            original_margin_used=float(payload.get("original_margin_used", payload["margin_used"])),
            original_notional_size=float(
                payload.get("original_notional_size", payload["notional_size"])
            ),
            insurance_taken=bool(payload.get("insurance_taken", False)),
            insurance_taken_at=_dt(payload.get("insurance_taken_at")),
            insurance_locked_pnl=float(payload.get("insurance_locked_pnl", 0.0) or 0.0),
            partial_taken=bool(payload.get("partial_taken", False)),
            partial_taken_at=_dt(payload.get("partial_taken_at")),
            partial_realized_pnl=float(payload.get("partial_realized_pnl", 0.0) or 0.0),
            current_price=float(payload.get("current_price", payload["entry_price"])),
            unrealized_pnl=float(payload.get("unrealized_pnl", 0.0) or 0.0),
            unrealized_pnl_percent=float(payload.get("unrealized_pnl_percent", 0.0) or 0.0),
            last_update_at=_dt(payload.get("last_update_at")),
            status=PositionStatus(payload.get("status", PositionStatus.OPEN.value)),
            exit_price=_opt_float(payload.get("exit_price")),
            exit_time=_dt(payload.get("exit_time")),
            exit_reason=ExitReason(exit_reason) if exit_reason else None,
            exit_costs=float(payload.get("exit_costs", 0.0) or 0.0),
            funding_paid=float(payload.get("funding_paid", 0.0) or 0.0),
            realized_pnl=_opt_float(payload.get("realized_pnl")),
            realized_pnl_percent=_opt_float(payload.get("realized_pnl_percent")),
        )


@dataclass(slots=True)
class OpenDecision:
    """Outcome of an open attempt: either a position or a skip reason."""

    position: Optional[Position] = None
    skip_reason: Optional[SkipReason] = None
    detail: str = ""

    @property
    def opened(self) -> bool:
        return self.position is not None


@dataclass(slots=True, frozen=True)
class RecentClose:
    timestamp: datetime
    is_win: bool


__all__ = [
    "Direction",
    "ExitReason",
    "MarketBias",
    "MarketKind",
    "OPENABLE_STATES",
    "OpenDecision",
    "Position",
    "PositionKey",
    "PositionStatus",
    "RecentClose",
    "Setup",
    "SetupState",
    "SkipReason",
    "Volatility",
    "position_key",
    "utc_now",
]
