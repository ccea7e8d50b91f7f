from __future__ import annotations

"""Execution cost model: fees, slippage and funding for simulated fills.

Slippage always moves a fill against the trader. Stop and target exits
use a harsher slippage multiplier than entries.
"""

from dataclasses import dataclass
from typing import Optional

from levsim.config.costs_config import ExecutionCostsConfig

from .models import Direction, MarketBias, Volatility

_MS_PER_HOUR = 60 * 60 * 1000
_SIZE_IMPACT_UNIT = 10_000.0


@dataclass(slots=True)
class FillCost:
    """Effective price and friction for one side of a trade."""

    effective_price: float
    fee: float
    slippage_cost: float

    @property
    def total(self) -> float:
        return self.fee + self.slippage_cost


@dataclass(slots=True)
class TradeCosts:
    entry_fee: float
    exit_fee: float
    entry_slippage: float
    exit_slippage: float
    funding_paid: float
    total_costs: float
    effective_entry_price: float
    effective_exit_price: float
    costs_as_percent: float


class ExecutionCostModel:
    """Stateless friction calculator for a given cost configuration."""

    def __init__(self, config: Optional[ExecutionCostsConfig] = None) -> None:
        self.config = config or ExecutionCostsConfig()

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    @property
    def taker_fee_rate(self) -> float:
        return self.config.fees.taker_fee if self.config.enabled else 0.0

    # ------------------------------------------------------------------
    # Slippage
    # ------------------------------------------------------------------

    def volatility_multiplier(self, volatility: Volatility) -> float:
        configured = self.config.slippage.volatility_multiplier
        if volatility is Volatility.LOW:
            return 0.5
        if volatility is Volatility.HIGH:
            return configured
        if volatility is Volatility.EXTREME:
            return configured * 1.5
        return 1.0

    def slippage_bps(self, notional: float, volatility: Volatility = Volatility.NORMAL) -> float:
        if not self.config.enabled:
            return 0.0
        slip = self.config.slippage
        bps = slip.base_bps * self.volatility_multiplier(Volatility(volatility))
        bps += (abs(notional) / _SIZE_IMPACT_UNIT) * slip.size_impact_factor
        return min(slip.max_bps, max(slip.min_bps, bps))

    def effective_entry_price(
        self,
        price: float,
        direction: Direction,
        notional: float,
        volatility: Volatility = Volatility.NORMAL,
    ) -> float:
        rate = self.slippage_bps(notional, volatility) / 10_000.0
        # long buys higher, short sells lower
        return price * (1 + Direction(direction).sign * rate)

    def effective_exit_price(
        self,
        price: float,
        direction: Direction,
        notional: float,
        volatility: Volatility = Volatility.NORMAL,
        *,
        harsh: bool = False,
    ) -> float:
        bps = self.slippage_bps(notional, volatility)
        if harsh:
            bps *= self.config.slippage.stop_multiplier
        rate = bps / 10_000.0
        # long sells lower, short buys back higher
        return price * (1 - Direction(direction).sign * rate)

    # ------------------------------------------------------------------
    # Fees and funding
    # ------------------------------------------------------------------

    def fee(self, notional: float, is_maker: bool = False) -> float:
        if not self.config.enabled:
            return 0.0
        fees = self.config.fees
        return abs(notional) * (fees.maker_fee if is_maker else fees.taker_fee)

    def funding(
        self,
        notional: float,
        direction: Direction,
        hold_ms: float,
        market_bias: MarketBias = MarketBias.NEUTRAL,
    ) -> float:
        """Funding paid over the hold; negative when the trader receives it."""
        if not self.config.enabled:
            return 0.0
        cfg = self.config.funding
        periods = max(0.0, hold_ms) / (cfg.interval_hours * _MS_PER_HOUR)
        if periods < cfg.min_interval_fraction:
            return 0.0
        bias = MarketBias(market_bias)
        if bias is MarketBias.BULLISH:
            rate, longs_pay = cfg.extreme_rate_percent / 100.0, True
        elif bias is MarketBias.BEARISH:
            rate, longs_pay = cfg.extreme_rate_percent / 100.0, False
        else:
            rate, longs_pay = cfg.default_rate_percent / 100.0, True
        total = abs(notional) * rate * periods
        trader_is_long = Direction(direction) is Direction.LONG
        return total if trader_is_long == longs_pay else -total

    # ------------------------------------------------------------------
    # Breakdowns
    # ------------------------------------------------------------------

    def entry_costs(
        self,
        price: float,
        notional: float,
        direction: Direction,
        volatility: Volatility = Volatility.NORMAL,
    ) -> FillCost:
        effective = self.effective_entry_price(price, direction, notional, volatility)
        slippage_cost = abs(effective - price) * (abs(notional) / price) if price else 0.0
        return FillCost(effective_price=effective, fee=self.fee(notional), slippage_cost=slippage_cost)

    def exit_costs(
        self,
        price: float,
        notional: float,
        direction: Direction,
        volatility: Volatility = Volatility.NORMAL,
        *,
        harsh: bool = False,
    ) -> FillCost:
        effective = self.effective_exit_price(price, direction, notional, volatility, harsh=harsh)
        slippage_cost = abs(effective - price) * (abs(notional) / price) if price else 0.0
        return FillCost(effective_price=effective, fee=self.fee(notional), slippage_cost=slippage_cost)

    def trade_costs(
        self,
        entry_price: float,
        exit_price: float,
        notional: float,
        direction: Direction,
        hold_ms: float,
        market_bias: MarketBias = MarketBias.NEUTRAL,
        volatility: Volatility = Volatility.NORMAL,
    ) -> TradeCosts:
        entry = self.entry_costs(entry_price, notional, direction, volatility)
        exit_ = self.exit_costs(exit_price, notional, direction, volatility)
        funding_paid = self.funding(notional, direction, hold_ms, market_bias)
        total = entry.total + exit_.total + funding_paid
        return TradeCosts(
            entry_fee=entry.fee,
            exit_fee=exit_.fee,
            entry_slippage=entry.slippage_cost,
            exit_slippage=exit_.slippage_cost,
            funding_paid=funding_paid,
            total_costs=total,
            effective_entry_price=entry.effective_price,
            effective_exit_price=exit_.effective_price,
            costs_as_percent=(total / notional) * 100.0 if notional else 0.0,
        )

    def estimate_round_trip_cost_percent(self, notional: float, holding_hours: float = 24.0) -> float:
        """Quick estimate of fees, normal slippage and neutral funding as % of notional."""
        if not self.config.enabled:
            return 0.0
        fees_pct = self.config.fees.taker_fee * 2 * 100.0
        slippage_pct = self.slippage_bps(notional, Volatility.NORMAL) / 100.0 * 2
        intervals = holding_hours / self.config.funding.interval_hours
        funding_pct = self.config.funding.default_rate_percent * intervals
        return fees_pct + slippage_pct + funding_pct


def determine_volatility(
    rsi: Optional[float] = None,
    price_change_percent: Optional[float] = None,
) -> Volatility:
    """Classify volatility from an RSI reading and/or a recent price move."""
    if price_change_percent is not None:
        move = abs(price_change_percent)
        if move > 5:
            return Volatility.EXTREME
        if move > 2:
            return Volatility.HIGH
    if rsi is not None:
        if rsi < 15 or rsi > 85:
            return Volatility.EXTREME
        if rsi < 25 or rsi > 75:
            return Volatility.HIGH
        if 40 < rsi < 60:
            return Volatility.LOW
    return Volatility.NORMAL


def determine_market_bias(
    btc_rsi_4h: Optional[float] = None,
    btc_price_change_24h: Optional[float] = None,
) -> MarketBias:
    score = 0
    if btc_rsi_4h is not None:
        if btc_rsi_4h > 60:
            score += 1
        if btc_rsi_4h > 70:
            score += 1
        if btc_rsi_4h < 40:
            score -= 1
        if btc_rsi_4h < 30:
            score -= 1
    if btc_price_change_24h is not None:
        if btc_price_change_24h > 2:
            score += 1
        if btc_price_change_24h > 5:
            score += 1
        if btc_price_change_24h < -2:
            score -= 1
        if btc_price_change_24h < -5:
            score -= 1
    if score >= 2:
        return MarketBias.BULLISH
    if score <= -2:
        return MarketBias.BEARISH
    return MarketBias.NEUTRAL


__all__ = [
    "ExecutionCostModel",
    "FillCost",
    "TradeCosts",
    "determine_market_bias",
    "determine_volatility",
]
