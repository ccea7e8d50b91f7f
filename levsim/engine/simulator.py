from __future__ import annotations

"""Leveraged position lifecycle simulator.

One instance owns a balance, a position book and a stress monitor. Every
mutation (open, price sample, close) runs under a single re-entrant lock so
updates for a key never interleave and balance adjustments stay atomic.
"""

import itertools
import logging
import math
import threading
from copy import deepcopy
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional

from levsim.config.paths import ConfigError
from levsim.config.risk_config import RiskConfig, default_risk_config
from levsim.exchange.feed import PriceFeed

from .book import PositionBook
from .costs import ExecutionCostModel, determine_volatility
from .models import (
    OPENABLE_STATES,
    Direction,
    ExitReason,
    MarketBias,
    MarketKind,
    OpenDecision,
    Position,
    PositionKey,
    PositionStatus,
    RecentClose,
    Setup,
    SetupState,
    SkipReason,
    Volatility,
    utc_now,
)
from .policy import (
    StressMonitor,
    apply_breakeven_lock,
    apply_insurance,
    apply_partial_take_profit,
    apply_trail_activation,
    apply_trail_maintenance,
    liquidation_crossed,
    liquidation_price,
    price_change_percent,
    price_to_roe,
    should_take_insurance,
    should_take_partial,
    stop_crossed,
    target_crossed,
    update_high_water_mark,
)
from .sinks import NullSink, PersistenceSink
from .sizing import TargetResolver, build_target_resolver, compute_size
from .statistics import TradingStatistics, compute_statistics

logger = logging.getLogger("levsim.engine.simulator")

_HARSH_EXIT_REASONS = frozenset(
    {
        ExitReason.STOP_LOSS,
        ExitReason.TAKE_PROFIT,
        ExitReason.TRAILING_STOP,
        ExitReason.BREAKEVEN,
        ExitReason.INSURANCE_BE,
    }
)
_SAVED_LEDGER_LIMIT = 100


def _at_price(a: float, b: float) -> bool:
    return math.isclose(a, b, rel_tol=1e-12, abs_tol=1e-12)


def _next_sequence(position_ids: Iterable[str]) -> int:
    highest = 0
    for position_id in position_ids:
        suffix = position_id.rsplit("-", 1)[-1]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return highest + 1


class LifecycleSimulator:
    """Open, update and close simulated margin positions for one bot."""

    def __init__(
        self,
        risk_config: Optional[RiskConfig] = None,
        cost_model: Optional[ExecutionCostModel] = None,
        sink: Optional[PersistenceSink] = None,
        target_resolver: Optional[TargetResolver] = None,
        *,
        initial_balance: float = 2000.0,
        bot_id: str = "default",
        market_bias: MarketBias = MarketBias.NEUTRAL,
    ) -> None:
        self._config = risk_config or default_risk_config()
        self._config.validate()
        self._costs = cost_model or ExecutionCostModel()
        self._costs.config.validate()
        if initial_balance < 0:
            raise ConfigError(f"initial_balance must not be negative, got {initial_balance}")
        self._sink: PersistenceSink = sink or NullSink()
        self._resolver = target_resolver or build_target_resolver(self._config)
        self._bot_id = bot_id
        self._initial_balance = float(initial_balance)
        self._balance = float(initial_balance)
        self._market_bias = MarketBias(market_bias)
        self._book = PositionBook()
        self._stress = StressMonitor(self._config.insurance)
        self._sequence = itertools.count(1)
        self._lock = threading.RLock()

    @property
    def bot_id(self) -> str:
        return self._bot_id

    @property
    def risk_config(self) -> RiskConfig:
        return self._config

    @property
    def cost_model(self) -> ExecutionCostModel:
        return self._costs

    @property
    def market_bias(self) -> MarketBias:
        return self._market_bias

    def set_market_bias(self, bias: MarketBias) -> None:
        with self._lock:
            self._market_bias = MarketBias(bias)

    # ------------------------------------------------------------------
    # Opening
    # ------------------------------------------------------------------

    def open_position(
        self,
        setup: Setup,
        *,
        now: Optional[datetime] = None,
        volatility: Optional[Volatility] = None,
    ) -> OpenDecision:
        now = now or utc_now()
        config = self._config
        with self._lock:
            if setup.state not in OPENABLE_STATES:
                return self._skip(setup, SkipReason.INVALID_SETUP_STATE, f"state {setup.state.value}")
            if setup.current_price <= 0:
                return self._skip(
                    setup, SkipReason.INVALID_SETUP_STATE, f"non-positive price {setup.current_price}"
                )
            if config.require_futures and setup.market_kind is not MarketKind.FUTURES:
                return self._skip(setup, SkipReason.MARKET_FILTERED, f"market {setup.market_kind.value}")
            if setup.key in self._book:
                return self._skip(setup, SkipReason.DUPLICATE_POSITION, "position already open")
            if len(self._book) >= config.max_open_positions:
                return self._skip(
                    setup,
                    SkipReason.MAX_POSITIONS_REACHED,
                    f"{config.max_open_positions} positions open",
                )
            size = compute_size(self._balance, config)
            if not size.accepted:
                return self._skip(setup, size.skip_reason, size.detail)

            direction = Direction(setup.direction)
            entry_price = setup.current_price
            vol = Volatility(volatility) if volatility else determine_volatility(setup.current_rsi)
            fill = self._costs.entry_costs(entry_price, size.notional, direction, vol)
            levels = self._resolver.resolve(entry_price, direction, config, setup)
            position = Position(
                id=self._next_id(setup, now),
                symbol=setup.symbol.upper(),
                direction=direction,
                market_kind=MarketKind(setup.market_kind),
                timeframe=setup.timeframe,
                entry_price=entry_price,
                effective_entry_price=fill.effective_price,
                entry_time=now,
                entry_costs=fill.total,
                margin_used=size.margin,
                notional_size=size.notional,
                leverage=config.leverage,
                stop_loss_price=levels.stop_loss,
                initial_stop_loss_price=levels.stop_loss,
                take_profit_price=levels.take_profit,
                partial_take_profit_price=levels.partial_take_profit,
                reserved_margin=size.margin,
                original_margin_used=size.margin,
                original_notional_size=size.notional,
                current_price=entry_price,
                last_update_at=now,
            )
            self._book.insert(position)
            self._balance -= size.margin
            logger.info(
                "Opened %s %s @ %.8f (fill %.8f) margin %.2f notional %.2f stop %.8f tp %.8f vol=%s",
                position.symbol,
                direction.value,
                entry_price,
                fill.effective_price,
                size.margin,
                size.notional,
                levels.stop_loss,
                levels.take_profit,
                vol.value,
            )
            snapshot = deepcopy(position)
            self._notify_opened(deepcopy(position), setup)
        return OpenDecision(position=snapshot)

    def _skip(self, setup: Setup, reason: SkipReason, detail: str) -> OpenDecision:
        logger.debug(
            "Skipped %s %s: %s (%s)",
            setup.symbol,
            Direction(setup.direction).value,
            reason.value,
            detail,
        )
        return OpenDecision(skip_reason=reason, detail=detail)

    def _next_id(self, setup: Setup, now: datetime) -> str:
        millis = int(now.timestamp() * 1000)
        return "-".join(
            (
                setup.symbol.upper(),
                setup.timeframe,
                Direction(setup.direction).value,
                MarketKind(setup.market_kind).value,
                str(millis),
                str(next(self._sequence)),
            )
        )

    # ------------------------------------------------------------------
    # Updating
    # ------------------------------------------------------------------

    def update_position(self, setup: Setup, *, now: Optional[datetime] = None) -> Optional[Position]:
        """Apply a detector update; a ``played_out`` state closes at its price.

        Returns a copy of the position after the update, or ``None`` when no
        open position exists for the setup's key.
        """
        now = now or utc_now()
        with self._lock:
            position = self._book.get(setup.key)
            if position is None:
                logger.debug("No open position for %s; update ignored", setup.key)
                return None
            played_out = setup.state is SetupState.PLAYED_OUT
            closed = self._apply_sample(position, setup.current_price, now, played_out=played_out)
            return closed if closed is not None else deepcopy(position)

    def update_price(
        self,
        symbol: str,
        price: float,
        *,
        now: Optional[datetime] = None,
    ) -> list[Position]:
        """Apply one price to every open position on ``symbol``; returns closes."""
        return self.tick({symbol: price}, now=now)

    def tick(self, price_map: Mapping[str, float], now: Optional[datetime] = None) -> list[Position]:
        """Apply a batch of prices sequentially; symbols missing from the map are untouched."""
        now = now or utc_now()
        prices = {symbol.upper(): price for symbol, price in price_map.items() if price is not None}
        closed: list[Position] = []
        with self._lock:
            for key in self._book.keys():
                price = prices.get(key[0])
                if price is None:
                    continue
                position = self._book.get(key)
                if position is None:
                    continue
                result = self._apply_sample(position, price, now)
                if result is not None:
                    closed.append(result)
        return closed

    def tick_from_feed(self, feed: PriceFeed, now: Optional[datetime] = None) -> list[Position]:
        """Fetch prices for open symbols from ``feed`` then apply them."""
        symbols = self._book.symbols()
        if not symbols:
            return []
        prices = feed.get_prices(symbols)
        return self.tick(prices, now=now)

    def _apply_sample(
        self,
        position: Position,
        price: float,
        now: datetime,
        *,
        played_out: bool = False,
    ) -> Optional[Position]:
        if position.is_closed:
            return None
        if price is None or price <= 0:
            logger.debug("Ignoring non-positive price %s for %s", price, position.symbol)
            return None
        if position.last_update_at is not None and now < position.last_update_at:
            logger.debug(
                "Ignoring stale sample for %s at %s (last %s)",
                position.symbol,
                now.isoformat(),
                position.last_update_at.isoformat(),
            )
            return None

        config = self._config
        position.current_price = price
        position.last_update_at = now
        change = price_change_percent(position.entry_price, price, position.direction)
        position.unrealized_pnl = position.notional_size * change / 100.0
        position.unrealized_pnl_percent = price_to_roe(
            position.entry_price, price, position.direction, position.leverage
        )
        update_high_water_mark(position, position.unrealized_pnl_percent)

        apply_breakeven_lock(position, config)
        if should_take_insurance(position, config.insurance, True) and self._stress.is_stressed(now):
            apply_insurance(position, config.insurance, now)
        apply_trail_activation(position, config)
        apply_trail_maintenance(position, config)

        reason = self._exit_reason(position, price, played_out)
        if reason is not None:
            return self._close(position, price, reason, now)
        if should_take_partial(position, price):
            apply_partial_take_profit(position, price, self._costs.taker_fee_rate, config, now)
        return None

    def _exit_reason(self, position: Position, price: float, played_out: bool) -> Optional[ExitReason]:
        if liquidation_crossed(position, price, self._config):
            return ExitReason.LIQUIDATION
        if stop_crossed(price, position.stop_loss_price, position.direction):
            at_entry = _at_price(position.stop_loss_price, position.entry_price)
            if position.insurance_taken and at_entry:
                return ExitReason.INSURANCE_BE
            if position.trail_level >= 1:
                return ExitReason.TRAILING_STOP
            if position.breakeven_locked and at_entry:
                return ExitReason.BREAKEVEN
            return ExitReason.STOP_LOSS
        if target_crossed(price, position.take_profit_price, position.direction):
            return ExitReason.TAKE_PROFIT
        if played_out:
            return ExitReason.PLAYED_OUT
        return None

    # ------------------------------------------------------------------
    # Closing
    # ------------------------------------------------------------------

    def _close(self, position: Position, price: float, reason: ExitReason, now: datetime) -> Optional[Position]:
        if position.is_closed:
            return None
        if not self._book.can_close(position):
            logger.warning("Refusing close for %s: id already in the ledger", position.id)
            return None
        base_margin = position.original_margin_used if position.is_split else position.margin_used
        if reason is ExitReason.LIQUIDATION:
            exit_price = liquidation_price(position, self._config)
            funding_paid = 0.0
            exit_costs = 0.0
            realized = position.locked_pnl - position.margin_used if position.is_split else -position.margin_used
        else:
            hold_ms = max(0.0, (now - position.entry_time).total_seconds() * 1000.0)
            funding_paid = self._costs.funding(
                position.notional_size, position.direction, hold_ms, self._market_bias
            )
            fill = self._costs.exit_costs(
                price,
                position.notional_size,
                position.direction,
                Volatility.NORMAL,
                harsh=reason in _HARSH_EXIT_REASONS,
            )
            exit_price = fill.effective_price
            exit_costs = fill.total
            gross = position.notional_size * price_change_percent(
                position.effective_entry_price, exit_price, position.direction
            ) / 100.0
            fees = position.notional_size * self._costs.taker_fee_rate * 2
            realized = gross - fees - funding_paid
            if position.is_split:
                realized += position.locked_pnl
        if reason is ExitReason.LIQUIDATION and not position.is_split:
            realized_percent = -100.0
        else:
            realized_percent = realized / base_margin * 100.0 if base_margin else 0.0

        position.status = PositionStatus.CLOSED
        position.current_price = price
        position.exit_price = exit_price
        position.exit_time = now
        position.exit_reason = reason
        position.exit_costs = exit_costs
        position.funding_paid = funding_paid
        position.realized_pnl = realized
        position.realized_pnl_percent = realized_percent
        position.unrealized_pnl = 0.0
        position.unrealized_pnl_percent = 0.0
        if not self._book.close(position):
            return None
        self._balance += position.reserved_margin + realized
        self._stress.record(now, realized > 0)
        logger.info(
            "Closed %s %s: %s @ %.8f pnl %.4f (%.2f%%) balance %.2f",
            position.symbol,
            position.direction.value,
            reason.value,
            exit_price,
            realized,
            realized_percent,
            self._balance,
        )
        snapshot = deepcopy(position)
        self._notify_closed(deepcopy(position))
        return snapshot

    def close_position(
        self,
        key: PositionKey,
        reason: ExitReason = ExitReason.END_OF_DATA,
        *,
        price: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> Optional[Position]:
        now = now or utc_now()
        with self._lock:
            position = self._book.get(key)
            if position is None:
                return None
            exit_at = price if price and price > 0 else position.current_price or position.entry_price
            return self._close(position, exit_at, ExitReason(reason), now)

    def close_all(
        self,
        reason: ExitReason = ExitReason.END_OF_DATA,
        *,
        now: Optional[datetime] = None,
    ) -> list[Position]:
        """Close every open position at its last known price."""
        now = now or utc_now()
        closed: list[Position] = []
        with self._lock:
            for key in self._book.keys():
                result = self.close_position(key, reason, now=now)
                if result is not None:
                    closed.append(result)
        return closed

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_open_positions(self) -> list[Position]:
        return self._book.open_positions()

    def get_closed_positions(self, limit: Optional[int] = 50) -> list[Position]:
        return self._book.closed_positions(limit)

    def get_balance(self) -> float:
        """Free balance, i.e. cash not reserved as margin by open positions."""
        with self._lock:
            return self._balance

    def get_equity(self) -> float:
        with self._lock:
            return self._balance + self._book.reserved_margin()

    def get_statistics(self) -> TradingStatistics:
        with self._lock:
            return compute_statistics(
                self._book.ledger(),
                initial_balance=self._initial_balance,
                free_balance=self._balance,
                reserved_margin=self._book.reserved_margin(),
                open_positions=len(self._book),
            )

    # ------------------------------------------------------------------
    # Stress window
    # ------------------------------------------------------------------

    def bootstrap_recent_closes(self, records: Iterable[RecentClose]) -> None:
        self._stress.bootstrap(records)

    def recent_win_rate(self, now: Optional[datetime] = None) -> Optional[float]:
        return self._stress.win_rate(now or utc_now())

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def save_state(self) -> dict[str, Any]:
        with self._lock:
            ledger = self._book.ledger()[-_SAVED_LEDGER_LIMIT:]
            return {
                "bot_id": self._bot_id,
                "initial_balance": self._initial_balance,
                "balance": self._balance,
                "market_bias": self._market_bias.value,
                "open_positions": [p.to_dict() for p in self._book.open_positions()],
                "closed_positions": [p.to_dict() for p in ledger],
                "recent_closes": [
                    {"timestamp": item.timestamp.isoformat(), "is_win": item.is_win}
                    for item in self._stress.snapshot()
                ],
                "saved_at": utc_now().isoformat(),
            }

    def restore_state(self, payload: Mapping[str, Any]) -> None:
        open_positions = [Position.from_dict(item) for item in payload.get("open_positions", [])]
        ledger = [Position.from_dict(item) for item in payload.get("closed_positions", [])]
        recent = [
            RecentClose(timestamp=datetime.fromisoformat(item["timestamp"]), is_win=bool(item["is_win"]))
            for item in payload.get("recent_closes", [])
        ]
        with self._lock:
            self._book.restore(open_positions, ledger)
            self._sequence = itertools.count(_next_sequence(self._book.position_ids()))
            self._initial_balance = float(payload.get("initial_balance", self._initial_balance))
            self._balance = float(payload.get("balance", self._balance))
            self._market_bias = MarketBias(payload.get("market_bias", self._market_bias.value))
            self._stress.bootstrap(recent)
        logger.info(
            "Restored state for %s: %d open, %d closed, balance %.2f",
            self._bot_id,
            len(open_positions),
            len(ledger),
            self._balance,
        )

    def reset(self) -> None:
        with self._lock:
            self._book.clear()
            self._stress.clear()
            self._balance = self._initial_balance
            self._market_bias = MarketBias.NEUTRAL

    # ------------------------------------------------------------------
    # Sink notifications
    # ------------------------------------------------------------------

    def _notify_opened(self, position: Position, setup: Setup) -> None:
        try:
            self._sink.on_position_opened(position, setup)
        except Exception:  # noqa: BLE001
            logger.exception("Persistence sink failed on open of %s", position.id)

    def _notify_closed(self, position: Position) -> None:
        try:
            self._sink.on_position_closed(position)
        except Exception:  # noqa: BLE001
            logger.exception("Persistence sink failed on close of %s", position.id)


__all__ = ["LifecycleSimulator"]
