from __future__ import annotations

"""Explicit tick driver: queued setup events first, then a batched price refresh."""

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from levsim.exchange.feed import PriceFeed

from .models import OPENABLE_STATES, OpenDecision, Position, Setup, utc_now
from .simulator import LifecycleSimulator

logger = logging.getLogger("levsim.engine.scheduler")

DEFAULT_TICK_INTERVAL = 5.0


@dataclass(slots=True)
class TickSummary:
    started_at: datetime
    opened: list[Position] = field(default_factory=list)
    skipped: list[OpenDecision] = field(default_factory=list)
    closed: list[Position] = field(default_factory=list)
    prices_received: int = 0


class TickScheduler:
    """Drive one simulator from a setup queue and a price feed.

    Price I/O may fan out concurrently inside the feed; results are applied
    by the simulator on the calling thread only.
    """

    def __init__(
        self,
        simulator: LifecycleSimulator,
        feed: PriceFeed,
        *,
        interval: float = DEFAULT_TICK_INTERVAL,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._simulator = simulator
        self._feed = feed
        self.interval = interval
        self._setups: "queue.Queue[Setup]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._last_summary: Optional[TickSummary] = None
        self._summary_lock = threading.Lock()

    @property
    def simulator(self) -> LifecycleSimulator:
        return self._simulator

    @property
    def last_summary(self) -> Optional[TickSummary]:
        with self._summary_lock:
            return self._last_summary

    def submit_setup(self, setup: Setup) -> None:
        self._setups.put(setup)

    def pending_setups(self) -> int:
        return self._setups.qsize()

    def run_once(self, now: Optional[datetime] = None) -> TickSummary:
        now = now or utc_now()
        summary = TickSummary(started_at=now)
        self._drain_setups(summary, now)
        symbols = sorted({position.symbol for position in self._simulator.get_open_positions()})
        if symbols:
            prices = self._feed.get_prices(symbols)
            summary.prices_received = len(prices)
            missing = set(symbols) - {symbol.upper() for symbol in prices}
            if missing:
                logger.debug("No price this tick for %s", ", ".join(sorted(missing)))
            summary.closed.extend(self._simulator.tick(prices, now=now))
        with self._summary_lock:
            self._last_summary = summary
        return summary

    def _drain_setups(self, summary: TickSummary, now: datetime) -> None:
        while True:
            try:
                setup = self._setups.get_nowait()
            except queue.Empty:
                return
            if setup.key in {position.key for position in self._simulator.get_open_positions()}:
                updated = self._simulator.update_position(setup, now=now)
                if updated is not None and updated.is_closed:
                    summary.closed.append(updated)
                continue
            if setup.state not in OPENABLE_STATES:
                logger.debug("Dropping %s setup for %s with no open position", setup.state.value, setup.symbol)
                continue
            decision = self._simulator.open_position(setup, now=now)
            if decision.opened:
                summary.opened.append(decision.position)
            else:
                summary.skipped.append(decision)

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="TickScheduler", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=self.interval * 2)
        self._thread = None

    def _run(self) -> None:
        logger.info(
            "Starting tick loop for %s: interval=%ss",
            self._simulator.bot_id,
            self.interval,
        )
        while not self._stop_event.is_set():
            start = time.perf_counter()
            try:
                summary = self.run_once()
                if summary.opened or summary.closed:
                    logger.info(
                        "Tick: opened=%d closed=%d skipped=%d balance=%.2f",
                        len(summary.opened),
                        len(summary.closed),
                        len(summary.skipped),
                        self._simulator.get_balance(),
                    )
            except Exception as exc:  # noqa: BLE001
                logger.exception("Tick failed: %s", exc)
            elapsed = time.perf_counter() - start
            wait_time = max(0.0, self.interval - elapsed)
            if self._stop_event.wait(wait_time):
                break
        logger.info("Tick loop stopped")

    def __enter__(self) -> "TickScheduler":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        self.stop()


__all__ = ["DEFAULT_TICK_INTERVAL", "TickScheduler", "TickSummary"]
