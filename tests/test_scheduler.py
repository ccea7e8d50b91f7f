import pytest

from levsim.engine import ExitReason, SetupState, SkipReason, TickScheduler
from levsim.exchange import StaticPriceFeed

from conftest import T0, make_setup, minutes


class FlakyFeed:
    """Serves prices except for symbols marked as failing."""

    def __init__(self, prices):
        self.prices = dict(prices)
        self.failing = set()
        self.requests = []

    def get_price(self, symbol):
        return None if symbol in self.failing else self.prices.get(symbol)

    def get_prices(self, symbols):
        symbols = list(symbols)
        self.requests.append(symbols)
        return {s: self.prices[s] for s in symbols if s in self.prices and s not in self.failing}


class TestTickScheduler:
    @pytest.fixture
    def feed(self):
        return StaticPriceFeed({"BTCUSDT": 100.0, "ETHUSDT": 50.0})

    @pytest.fixture
    def scheduler(self, make_simulator, feed):
        return TickScheduler(make_simulator(), feed, interval=1.0)

    def test_setups_opened_then_priced(self, scheduler):
        scheduler.submit_setup(make_setup())
        scheduler.submit_setup(make_setup("ETHUSDT", price=50.0))
        summary = scheduler.run_once(now=T0)
        assert len(summary.opened) == 2
        assert summary.prices_received == 2
        assert scheduler.pending_setups() == 0
        assert scheduler.last_summary is summary

    def test_price_tick_closes(self, scheduler, feed):
        scheduler.submit_setup(make_setup())
        scheduler.run_once(now=T0)
        feed.set_price("BTCUSDT", 91.5)
        summary = scheduler.run_once(now=minutes(1))
        assert [p.exit_reason for p in summary.closed] == [ExitReason.STOP_LOSS]
        assert scheduler.simulator.get_open_positions() == []

    def test_played_out_setup_closes_open_position(self, scheduler):
        scheduler.submit_setup(make_setup())
        scheduler.run_once(now=T0)
        scheduler.submit_setup(make_setup(price=101.0, state=SetupState.PLAYED_OUT))
        summary = scheduler.run_once(now=minutes(1))
        assert summary.closed[0].exit_reason is ExitReason.PLAYED_OUT

    def test_non_entry_setup_without_position_dropped(self, scheduler):
        scheduler.submit_setup(make_setup(state=SetupState.WATCHING))
        summary = scheduler.run_once(now=T0)
        assert summary.opened == []
        assert summary.skipped == []

    def test_skips_reported(self, make_simulator, feed):
        scheduler = TickScheduler(make_simulator(max_open_positions=1), feed)
        scheduler.submit_setup(make_setup())
        scheduler.submit_setup(make_setup("ETHUSDT", price=50.0))
        summary = scheduler.run_once(now=T0)
        assert [d.skip_reason for d in summary.skipped] == [SkipReason.MAX_POSITIONS_REACHED]

    def test_failed_fetch_leaves_position_untouched(self, make_simulator):
        feed = FlakyFeed({"BTCUSDT": 100.0})
        scheduler = TickScheduler(make_simulator(), feed)
        scheduler.submit_setup(make_setup())
        scheduler.run_once(now=T0)
        feed.failing.add("BTCUSDT")
        feed.prices["BTCUSDT"] = 50.0
        summary = scheduler.run_once(now=minutes(1))
        assert summary.closed == []
        position = scheduler.simulator.get_open_positions()[0]
        assert position.current_price == 100.0
        feed.failing.clear()
        summary = scheduler.run_once(now=minutes(2))
        assert summary.closed[0].exit_reason is ExitReason.LIQUIDATION

    def test_no_fetch_without_open_positions(self, make_simulator):
        feed = FlakyFeed({})
        TickScheduler(make_simulator(), feed).run_once(now=T0)
        assert feed.requests == []

    def test_start_stop(self, scheduler):
        scheduler.start()
        scheduler.start()
        scheduler.stop()
        assert scheduler._thread is None

    def test_interval_must_be_positive(self, make_simulator, feed):
        with pytest.raises(ValueError):
            TickScheduler(make_simulator(), feed, interval=0)
