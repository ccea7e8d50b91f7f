"""Position lifecycle engine: costs, sizing, policy, book and simulator."""

from .book import DuplicatePositionError, PositionBook
from .costs import (
    ExecutionCostModel,
    FillCost,
    TradeCosts,
    determine_market_bias,
    determine_volatility,
)
from .models import (
    Direction,
    ExitReason,
    MarketBias,
    MarketKind,
    OpenDecision,
    Position,
    PositionStatus,
    RecentClose,
    Setup,
    SetupState,
    SkipReason,
    Volatility,
)
from .scheduler import TickScheduler, TickSummary
from .simulator import LifecycleSimulator
from .sinks import CompositeSink, JsonlTradeSink, NullSink, PersistenceSink
from .sizing import (
    PercentTargetResolver,
    RoeTargetResolver,
    StructuralTargetResolver,
    TargetResolver,
    compute_size,
    compute_stop_and_target,
)
from .statistics import TradingStatistics, compute_statistics

__all__ = [
    "CompositeSink",
    "Direction",
    "DuplicatePositionError",
    "ExecutionCostModel",
    "ExitReason",
    "FillCost",
    "JsonlTradeSink",
    "LifecycleSimulator",
    "MarketBias",
    "MarketKind",
    "NullSink",
    "OpenDecision",
    "PercentTargetResolver",
    "PersistenceSink",
    "Position",
    "PositionBook",
    "PositionStatus",
    "RecentClose",
    "RoeTargetResolver",
    "Setup",
    "SetupState",
    "SkipReason",
    "StructuralTargetResolver",
    "TargetResolver",
    "TickScheduler",
    "TickSummary",
    "TradeCosts",
    "TradingStatistics",
    "Volatility",
    "compute_size",
    "compute_statistics",
    "compute_stop_and_target",
    "determine_market_bias",
    "determine_volatility",
]
