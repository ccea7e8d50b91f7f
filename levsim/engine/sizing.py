from __future__ import annotations

"""Position sizing and stop/target resolution for new entries."""

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from levsim.config.risk_config import RiskConfig

from .models import Direction, Setup, SkipReason

logger = logging.getLogger("levsim.engine.sizing")


@dataclass(slots=True)
class SizeDecision:
    margin: float
    notional: float
    skip_reason: Optional[SkipReason] = None
    detail: str = ""

    @property
    def accepted(self) -> bool:
        return self.skip_reason is None


@dataclass(slots=True)
class StopAndTarget:
    stop_loss: float
    take_profit: float
    partial_take_profit: float = 0.0


def compute_size(available_balance: float, config: RiskConfig) -> SizeDecision:
    """Size a new entry from the balance not already committed as margin."""
    available = max(0.0, available_balance)
    margin = available * (config.position_size_percent / 100.0)
    notional = margin * config.leverage
    if margin < config.minimum_position_size:
        return SizeDecision(
            margin=margin,
            notional=notional,
            skip_reason=SkipReason.BELOW_MINIMUM_SIZE,
            detail=(
                f"margin {margin:.2f} below minimum {config.minimum_position_size:.2f} "
                f"(available {available:.2f})"
            ),
        )
    if margin > available:
        return SizeDecision(
            margin=margin,
            notional=notional,
            skip_reason=SkipReason.INSUFFICIENT_BALANCE,
            detail=f"margin {margin:.2f} exceeds available {available:.2f}",
        )
    return SizeDecision(margin=margin, notional=notional)


def _offset(price: float, direction: Direction, percent: float) -> float:
    """Move ``price`` by ``percent`` in the direction's favour (negative = against)."""
    return price * (1 + Direction(direction).sign * percent / 100.0)


def compute_stop_and_target(
    entry_price: float,
    direction: Direction,
    config: RiskConfig,
    structural_stop_price: Optional[float] = None,
) -> StopAndTarget:
    stop_loss = _offset(entry_price, direction, -config.stop_loss_percent)
    if structural_stop_price is not None and entry_price > 0:
        distance_pct = abs(structural_stop_price - entry_price) / entry_price * 100.0
        if config.structural_stop_min_percent <= distance_pct <= config.structural_stop_max_percent:
            stop_loss = structural_stop_price
        else:
            logger.debug(
                "Structural stop %.8f is %.2f%% from entry %.8f; using %.2f%% fallback",
                structural_stop_price,
                distance_pct,
                entry_price,
                config.stop_loss_percent,
            )
    take_profit = 0.0
    if config.take_profit_percent > 0:
        take_profit = _offset(entry_price, direction, config.take_profit_percent)
    partial = 0.0
    if config.partial_take_profit_percent > 0:
        partial = _offset(entry_price, direction, config.partial_take_profit_percent)
    return StopAndTarget(stop_loss=stop_loss, take_profit=take_profit, partial_take_profit=partial)


class TargetResolver(Protocol):
    def resolve(
        self,
        entry_price: float,
        direction: Direction,
        config: RiskConfig,
        setup: Setup,
    ) -> StopAndTarget:
        ...


class PercentTargetResolver:
    """Fixed price-percent stop and targets, preferring a sane structural stop."""

    def resolve(
        self,
        entry_price: float,
        direction: Direction,
        config: RiskConfig,
        setup: Setup,
    ) -> StopAndTarget:
        return compute_stop_and_target(
            entry_price,
            direction,
            config,
            structural_stop_price=setup.structural_stop_price,
        )


class RoeTargetResolver:
    """Stop and targets given as ROE percents, converted through leverage."""

    def resolve(
        self,
        entry_price: float,
        direction: Direction,
        config: RiskConfig,
        setup: Setup,
    ) -> StopAndTarget:
        leverage = config.leverage
        stop_loss = _offset(entry_price, direction, -config.stop_loss_percent / leverage)
        take_profit = 0.0
        if config.take_profit_percent > 0:
            take_profit = _offset(entry_price, direction, config.take_profit_percent / leverage)
        partial = 0.0
        if config.partial_take_profit_percent > 0:
            partial = _offset(entry_price, direction, config.partial_take_profit_percent / leverage)
        return StopAndTarget(stop_loss=stop_loss, take_profit=take_profit, partial_take_profit=partial)


class StructuralTargetResolver:
    """Use detector-supplied levels (e.g. fib targets) with percent fallbacks."""

    def __init__(self, fallback: Optional[TargetResolver] = None) -> None:
        self._fallback = fallback or PercentTargetResolver()

    def resolve(
        self,
        entry_price: float,
        direction: Direction,
        config: RiskConfig,
        setup: Setup,
    ) -> StopAndTarget:
        levels = self._fallback.resolve(entry_price, direction, config, setup)
        target = setup.structural_target_price
        if target is not None and target > 0:
            favourable = (target - entry_price) * Direction(direction).sign > 0
            if favourable:
                levels.take_profit = target
            else:
                logger.debug(
                    "Ignoring structural target %.8f on the losing side of entry %.8f for %s",
                    target,
                    entry_price,
                    setup.symbol,
                )
        return levels


def build_target_resolver(config: RiskConfig) -> TargetResolver:
    if config.stop_mode == "roe":
        return RoeTargetResolver()
    return PercentTargetResolver()


__all__ = [
    "PercentTargetResolver",
    "RoeTargetResolver",
    "SizeDecision",
    "StopAndTarget",
    "StructuralTargetResolver",
    "TargetResolver",
    "build_target_resolver",
    "compute_size",
    "compute_stop_and_target",
]
