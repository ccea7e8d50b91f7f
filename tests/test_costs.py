"""
Tests for levsim/engine/costs.py

Covers:
  - Slippage bps by volatility and size, with clamping
  - Adverse entry and exit fills, harsher stop exits
  - Taker/maker fees
  - Funding direction by market bias and the short-hold cutoff
  - Cost breakdowns and the master enable switch
  - Volatility and market bias classification
"""
import pytest

from levsim.config import ExecutionCostsConfig
from levsim.engine import (
    Direction,
    ExecutionCostModel,
    MarketBias,
    Volatility,
    determine_market_bias,
    determine_volatility,
)

EIGHT_HOURS_MS = 8 * 60 * 60 * 1000


@pytest.fixture
def model():
    return ExecutionCostModel()


class TestSlippage:
    def test_base_slippage_for_small_order(self, model):
        assert model.slippage_bps(0.0, Volatility.NORMAL) == pytest.approx(2.0)

    def test_size_impact_adds_per_ten_thousand(self, model):
        assert model.slippage_bps(10_000.0, Volatility.NORMAL) == pytest.approx(2.5)

    @pytest.mark.parametrize(
        "volatility, expected",
        [
            (Volatility.LOW, 1.0),
            (Volatility.HIGH, 3.0),
            (Volatility.EXTREME, 4.5),
        ],
    )
    def test_volatility_multipliers(self, model, volatility, expected):
        assert model.slippage_bps(0.0, volatility) == pytest.approx(expected)

    def test_clamped_to_max(self, model):
        assert model.slippage_bps(1_000_000.0, Volatility.EXTREME) == pytest.approx(20.0)

    def test_clamped_to_min(self):
        config = ExecutionCostsConfig()
        config.slippage.base_bps = 0.5
        model = ExecutionCostModel(config)
        # 0.5 * 0.5 for low volatility is below the 1 bps floor
        assert model.slippage_bps(0.0, Volatility.LOW) == pytest.approx(1.0)


class TestFills:
    def test_long_entry_fills_higher(self, model):
        assert model.effective_entry_price(100.0, Direction.LONG, 0.0) == pytest.approx(100.02)

    def test_short_entry_fills_lower(self, model):
        assert model.effective_entry_price(100.0, Direction.SHORT, 0.0) == pytest.approx(99.98)

    def test_long_exit_fills_lower(self, model):
        assert model.effective_exit_price(100.0, Direction.LONG, 0.0) == pytest.approx(99.98)

    def test_short_exit_fills_higher(self, model):
        assert model.effective_exit_price(100.0, Direction.SHORT, 0.0) == pytest.approx(100.02)

    def test_harsh_exit_doubles_slippage(self, model):
        assert model.effective_exit_price(100.0, Direction.LONG, 0.0, harsh=True) == pytest.approx(99.96)
        assert model.effective_exit_price(100.0, Direction.SHORT, 0.0, harsh=True) == pytest.approx(100.04)

    def test_entry_costs_breakdown(self, model):
        fill = model.entry_costs(100.0, 1000.0, Direction.LONG)
        # 2 bps + 0.05 bps size impact on 1000 notional
        assert fill.effective_price == pytest.approx(100.0205)
        assert fill.fee == pytest.approx(0.4)
        assert fill.slippage_cost == pytest.approx(0.205)
        assert fill.total == pytest.approx(0.605)


class TestFees:
    def test_taker_fee(self, model):
        assert model.fee(1000.0) == pytest.approx(0.4)

    def test_maker_fee(self, model):
        assert model.fee(1000.0, is_maker=True) == pytest.approx(0.2)

    def test_taker_fee_rate(self, model):
        assert model.taker_fee_rate == pytest.approx(0.0004)


class TestFunding:
    def test_neutral_longs_pay_default_rate(self, model):
        assert model.funding(1000.0, Direction.LONG, EIGHT_HOURS_MS) == pytest.approx(0.1)
        assert model.funding(1000.0, Direction.SHORT, EIGHT_HOURS_MS) == pytest.approx(-0.1)

    def test_bullish_longs_pay_extreme_rate(self, model):
        paid = model.funding(1000.0, Direction.LONG, EIGHT_HOURS_MS, MarketBias.BULLISH)
        assert paid == pytest.approx(1.0)

    def test_bearish_shorts_pay(self, model):
        assert model.funding(1000.0, Direction.SHORT, EIGHT_HOURS_MS, MarketBias.BEARISH) == pytest.approx(1.0)
        assert model.funding(1000.0, Direction.LONG, EIGHT_HOURS_MS, MarketBias.BEARISH) == pytest.approx(-1.0)

    def test_scales_with_intervals(self, model):
        assert model.funding(1000.0, Direction.LONG, 3 * EIGHT_HOURS_MS) == pytest.approx(0.3)

    def test_short_hold_ignored(self, model):
        five_minutes_ms = 5 * 60 * 1000
        assert model.funding(1000.0, Direction.LONG, five_minutes_ms) == 0.0


class TestBreakdowns:
    def test_trade_costs_sum(self, model):
        costs = model.trade_costs(100.0, 110.0, 1000.0, Direction.LONG, EIGHT_HOURS_MS)
        expected = (
            costs.entry_fee
            + costs.exit_fee
            + costs.entry_slippage
            + costs.exit_slippage
            + costs.funding_paid
        )
        assert costs.total_costs == pytest.approx(expected)
        assert costs.funding_paid == pytest.approx(0.1)
        assert costs.costs_as_percent == pytest.approx(expected / 1000.0 * 100.0)
        assert costs.effective_entry_price > 100.0
        assert costs.effective_exit_price < 110.0

    def test_round_trip_estimate(self, model):
        # 0.08% fees + 0.04% slippage + 3 neutral funding periods
        assert model.estimate_round_trip_cost_percent(0.0, holding_hours=24.0) == pytest.approx(0.15)

    def test_disabled_model_has_no_friction(self):
        model = ExecutionCostModel(ExecutionCostsConfig(enabled=False))
        assert model.slippage_bps(50_000.0, Volatility.EXTREME) == 0.0
        assert model.effective_entry_price(100.0, Direction.LONG, 50_000.0) == 100.0
        assert model.fee(1000.0) == 0.0
        assert model.funding(1000.0, Direction.LONG, EIGHT_HOURS_MS) == 0.0
        assert model.taker_fee_rate == 0.0
        assert model.estimate_round_trip_cost_percent(1000.0) == 0.0


class TestClassifiers:
    @pytest.mark.parametrize(
        "rsi, expected",
        [
            (10.0, Volatility.EXTREME),
            (90.0, Volatility.EXTREME),
            (20.0, Volatility.HIGH),
            (80.0, Volatility.HIGH),
            (50.0, Volatility.LOW),
            (30.0, Volatility.NORMAL),
            (None, Volatility.NORMAL),
        ],
    )
    def test_volatility_from_rsi(self, rsi, expected):
        assert determine_volatility(rsi) is expected

    def test_large_move_dominates_rsi(self):
        assert determine_volatility(50.0, price_change_percent=-6.0) is Volatility.EXTREME
        assert determine_volatility(50.0, price_change_percent=3.0) is Volatility.HIGH

    def test_market_bias(self):
        assert determine_market_bias(75.0, 6.0) is MarketBias.BULLISH
        assert determine_market_bias(25.0, -6.0) is MarketBias.BEARISH
        assert determine_market_bias(55.0, 1.0) is MarketBias.NEUTRAL
        assert determine_market_bias() is MarketBias.NEUTRAL
