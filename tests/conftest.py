from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable

import pytest

from levsim.config import ExecutionCostsConfig, RiskConfig, SlippageConfig
from levsim.engine import (
    Direction,
    ExecutionCostModel,
    LifecycleSimulator,
    MarketKind,
    Position,
    Setup,
    SetupState,
)

T0 = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)


def minutes(value: float) -> datetime:
    return T0 + timedelta(minutes=value)


class RecordingSink:
    def __init__(self) -> None:
        self.opened: list[tuple[Position, Setup]] = []
        self.closed: list[Position] = []

    def on_position_opened(self, position: Position, setup: Setup) -> None:
        self.opened.append((position, setup))

    def on_position_closed(self, position: Position) -> None:
        self.closed.append(position)


class ExplodingSink:
    def on_position_opened(self, position: Position, setup: Setup) -> None:
        raise RuntimeError("disk full")

    def on_position_closed(self, position: Position) -> None:
        raise RuntimeError("disk full")


def make_setup(
    symbol: str = "BTCUSDT",
    direction: Direction = Direction.LONG,
    price: float = 100.0,
    state: SetupState = SetupState.TRIGGERED,
    **kwargs,
) -> Setup:
    kwargs.setdefault("current_rsi", 30.0)
    return Setup(
        symbol=symbol,
        direction=direction,
        state=state,
        current_price=price,
        **kwargs,
    )


def make_position(
    direction: Direction = Direction.LONG,
    entry: float = 100.0,
    margin: float = 20.0,
    leverage: float = 10.0,
    stop: float | None = None,
    **kwargs,
) -> Position:
    if stop is None:
        stop = entry * (1 - Direction(direction).sign * 0.08)
    return Position(
        id=kwargs.pop("id", "BTCUSDT-5m-long-futures-0-1"),
        symbol=kwargs.pop("symbol", "BTCUSDT"),
        direction=Direction(direction),
        market_kind=MarketKind.FUTURES,
        timeframe="5m",
        entry_price=entry,
        effective_entry_price=entry,
        entry_time=T0,
        entry_costs=0.0,
        margin_used=margin,
        notional_size=margin * leverage,
        leverage=leverage,
        stop_loss_price=stop,
        initial_stop_loss_price=stop,
        reserved_margin=margin,
        original_margin_used=margin,
        original_notional_size=margin * leverage,
        current_price=entry,
        last_update_at=T0,
        **kwargs,
    )


@pytest.fixture
def frictionless_costs() -> ExecutionCostsConfig:
    """Default fees with every slippage source zeroed."""
    return ExecutionCostsConfig(
        slippage=SlippageConfig(base_bps=0.0, size_impact_factor=0.0, min_bps=0.0, max_bps=20.0),
    )


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def make_simulator(frictionless_costs, recording_sink) -> Callable[..., LifecycleSimulator]:
    def _factory(
        *,
        initial_balance: float = 1000.0,
        costs: ExecutionCostsConfig | None = None,
        sink=None,
        **risk_overrides,
    ) -> LifecycleSimulator:
        risk_overrides.setdefault("position_size_percent", 2.0)
        risk_overrides.setdefault("leverage", 10.0)
        return LifecycleSimulator(
            RiskConfig(**risk_overrides),
            ExecutionCostModel(costs or frictionless_costs),
            sink if sink is not None else recording_sink,
            initial_balance=initial_balance,
            bot_id="test",
        )

    return _factory
