from __future__ import annotations

"""Stop management rules applied to an open position on every price sample.

ROE here is leveraged return on margin in plain percent. Conversions between
ROE and price always use the quoted entry price, never the slipped fill.
"""

import logging
import threading
from collections import deque
from datetime import datetime, timedelta
from typing import Iterable, Optional

from levsim.config.risk_config import InsuranceConfig, RiskConfig

from .models import Direction, Position, PositionStatus, RecentClose

logger = logging.getLogger("levsim.engine.policy")

_RECENT_CLOSES_LIMIT = 500


def price_change_percent(entry_price: float, price: float, direction: Direction) -> float:
    if entry_price <= 0:
        return 0.0
    return (price - entry_price) * 100.0 / entry_price * Direction(direction).sign


def price_to_roe(entry_price: float, price: float, direction: Direction, leverage: float) -> float:
    return price_change_percent(entry_price, price, direction) * leverage


def roe_to_price(entry_price: float, direction: Direction, roe_percent: float, leverage: float) -> float:
    return entry_price * (1 + Direction(direction).sign * roe_percent / 100.0 / leverage)


def is_more_favorable(candidate: float, current: float, direction: Direction) -> bool:
    if Direction(direction) is Direction.LONG:
        return candidate > current
    return candidate < current


def stop_crossed(price: float, stop_price: float, direction: Direction) -> bool:
    if stop_price <= 0:
        return False
    if Direction(direction) is Direction.LONG:
        return price <= stop_price
    return price >= stop_price


def target_crossed(price: float, target_price: float, direction: Direction) -> bool:
    if target_price <= 0:
        return False
    if Direction(direction) is Direction.LONG:
        return price >= target_price
    return price <= target_price


def liquidation_price(position: Position, config: RiskConfig) -> float:
    distance = position.entry_price / position.leverage * config.liquidation_margin_fraction
    return position.entry_price - Direction(position.direction).sign * distance


def liquidation_crossed(position: Position, price: float, config: RiskConfig) -> bool:
    level = liquidation_price(position, config)
    if Direction(position.direction) is Direction.LONG:
        return price <= level
    return price >= level


def resolve_trail_step(high_water_mark_roe: float, config: RiskConfig) -> float:
    """Trail step for the current peak ROE; tiers are checked highest first."""
    if config.use_profit_tiers:
        for tier in config.profit_tiers:
            if tier.min_roe_percent <= high_water_mark_roe:
                return tier.trail_step_percent
    return config.trail_step_percent


def update_high_water_mark(position: Position, roe_percent: float) -> float:
    if roe_percent > position.high_water_mark_roe:
        position.high_water_mark_roe = roe_percent
    return position.high_water_mark_roe


def _move_stop(position: Position, candidate: float) -> bool:
    if not is_more_favorable(candidate, position.stop_loss_price, position.direction):
        return False
    position.stop_loss_price = candidate
    return True


def apply_breakeven_lock(position: Position, config: RiskConfig) -> bool:
    """Pull the stop to entry once ROE reaches the breakeven trigger."""
    trigger = config.breakeven_trigger_percent
    if trigger is None or position.breakeven_locked:
        return False
    if position.unrealized_pnl_percent < trigger:
        return False
    position.breakeven_locked = True
    moved = _move_stop(position, position.entry_price)
    logger.info(
        "Breakeven lock on %s %s at ROE %.2f%% (stop %.8f)",
        position.symbol,
        position.direction.value,
        position.unrealized_pnl_percent,
        position.stop_loss_price,
    )
    return moved


def apply_trail_activation(position: Position, config: RiskConfig) -> bool:
    if position.trail_level != 0:
        return False
    if position.unrealized_pnl_percent < config.trail_trigger_percent:
        return False
    position.trail_level = 1
    step = resolve_trail_step(position.high_water_mark_roe, config)
    lock_roe = config.trail_trigger_percent - step
    candidate = roe_to_price(position.entry_price, position.direction, lock_roe, position.leverage)
    _move_stop(position, candidate)
    logger.info(
        "Trailing armed on %s %s at ROE %.2f%% step %.2f%% stop %.8f",
        position.symbol,
        position.direction.value,
        position.unrealized_pnl_percent,
        step,
        position.stop_loss_price,
    )
    return True


def apply_trail_maintenance(position: Position, config: RiskConfig) -> bool:
    if position.trail_level < 1:
        return False
    step = resolve_trail_step(position.high_water_mark_roe, config)
    lock_roe = position.high_water_mark_roe - step
    if lock_roe <= 0:
        return False
    candidate = roe_to_price(position.entry_price, position.direction, lock_roe, position.leverage)
    if not _move_stop(position, candidate):
        return False
    position.trail_level += 1
    logger.debug(
        "Trail moved on %s to %.8f (peak ROE %.2f%%, lock %.2f%%)",
        position.symbol,
        candidate,
        position.high_water_mark_roe,
        lock_roe,
    )
    return True


def _mark_split(position: Position) -> None:
    if not position.is_split:
        position.original_margin_used = position.margin_used
        position.original_notional_size = position.notional_size


def should_take_insurance(position: Position, insurance: InsuranceConfig, stressed: bool) -> bool:
    return (
        insurance.enabled
        and not position.insurance_taken
        and position.unrealized_pnl_percent >= insurance.threshold_percent
        and stressed
    )


def apply_insurance(position: Position, insurance: InsuranceConfig, now: datetime) -> float:
    """Close half the position at the threshold ROE and move the rest to breakeven."""
    _mark_split(position)
    half_notional = position.notional_size / 2.0
    locked = half_notional * insurance.threshold_percent / 100.0
    position.margin_used /= 2.0
    position.notional_size = half_notional
    position.insurance_locked_pnl = locked
    position.insurance_taken = True
    position.insurance_taken_at = now
    _move_stop(position, position.entry_price)
    logger.info(
        "Insurance taken on %s %s: locked %.4f, remaining notional %.2f",
        position.symbol,
        position.direction.value,
        locked,
        position.notional_size,
    )
    return locked


def should_take_partial(position: Position, price: float) -> bool:
    return (
        not position.partial_taken
        and position.partial_take_profit_price > 0
        and target_crossed(price, position.partial_take_profit_price, position.direction)
    )


def apply_partial_take_profit(
    position: Position,
    price: float,
    fee_rate: float,
    config: RiskConfig,
    now: datetime,
) -> float:
    """Book ``partial_close_fraction`` of the position at ``price``."""
    _mark_split(position)
    fraction = config.partial_close_fraction
    closed_notional = position.notional_size * fraction
    change = price_change_percent(position.entry_price, price, position.direction) / 100.0
    realized = closed_notional * change - closed_notional * fee_rate * 2
    position.partial_realized_pnl += realized
    position.margin_used *= 1 - fraction
    position.notional_size -= closed_notional
    position.partial_taken = True
    position.partial_taken_at = now
    position.status = PositionStatus.PARTIAL_TP1
    position.breakeven_locked = True
    _move_stop(position, position.entry_price)
    logger.info(
        "First target hit on %s %s at %.8f: booked %.4f, remaining notional %.2f",
        position.symbol,
        position.direction.value,
        price,
        realized,
        position.notional_size,
    )
    return realized


class StressMonitor:
    """Rolling win rate of recent closes, evaluated on the simulator clock."""

    def __init__(self, config: InsuranceConfig) -> None:
        self._config = config
        self._closes: deque[RecentClose] = deque(maxlen=_RECENT_CLOSES_LIMIT)
        self._lock = threading.Lock()

    def record(self, timestamp: datetime, is_win: bool) -> None:
        with self._lock:
            self._closes.append(RecentClose(timestamp=timestamp, is_win=is_win))

    def bootstrap(self, records: Iterable[RecentClose]) -> None:
        ordered = sorted(records, key=lambda item: item.timestamp)
        with self._lock:
            self._closes.clear()
            self._closes.extend(ordered)

    def clear(self) -> None:
        with self._lock:
            self._closes.clear()

    def snapshot(self) -> list[RecentClose]:
        with self._lock:
            return list(self._closes)

    def win_rate(self, now: datetime) -> Optional[float]:
        """Win rate in percent, or ``None`` when too few closes are in the window."""
        cutoff = now - timedelta(hours=self._config.window_hours)
        with self._lock:
            window = [item for item in self._closes if cutoff <= item.timestamp <= now]
        if self._config.lookback_trades is not None:
            window = window[-self._config.lookback_trades:]
        if len(window) < self._config.min_sample:
            return None
        wins = sum(1 for item in window if item.is_win)
        return wins / len(window) * 100.0

    def is_stressed(self, now: datetime) -> bool:
        rate = self.win_rate(now)
        return rate is not None and rate < self._config.stress_win_rate_threshold


__all__ = [
    "StressMonitor",
    "apply_breakeven_lock",
    "apply_insurance",
    "apply_partial_take_profit",
    "apply_trail_activation",
    "apply_trail_maintenance",
    "is_more_favorable",
    "liquidation_crossed",
    "liquidation_price",
    "price_change_percent",
    "price_to_roe",
    "resolve_trail_step",
    "roe_to_price",
    "should_take_insurance",
    "should_take_partial",
    "stop_crossed",
    "target_crossed",
    "update_high_water_mark",
]
