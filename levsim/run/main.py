from __future__ import annotations

"""Main entry point for running a paper-trading simulator against live prices."""

import json
import logging
import sys
import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

# allow running as a script (e.g. F5 in IDE) without manual PYTHONPATH tweaks
if __package__ is None or __package__ == "":
    current_file = Path(__file__).resolve()
    project_root = current_file.parents[2]
    if str(project_root) not in sys.path:
        sys.path.insert(0, str(project_root))

from levsim.config import (  # noqa: E402  pylint: disable=wrong-import-position
    RunnerConfig,
    default_costs_config,
    default_risk_config,
    default_runner_config,
    maybe_load_costs_config,
    maybe_load_risk_config,
    maybe_load_runner_config,
    resolve_config_path,
)
from levsim.engine import (  # noqa: E402  pylint: disable=wrong-import-position
    ExecutionCostModel,
    JsonlTradeSink,
    LifecycleSimulator,
    Setup,
    TickScheduler,
)
from levsim.exchange import BybitPriceFeed, BybitV5Client  # noqa: E402  pylint: disable=wrong-import-position

logger = logging.getLogger("levsim")

PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _configure_logging(log_file: Path) -> None:
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")
    root = logging.getLogger()
    root.setLevel(logging.INFO)
    for handler in root.handlers[:]:
        handler.close()
        root.removeHandler(handler)
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(formatter)
    root.addHandler(stream_handler)
    root.addHandler(file_handler)


def _setup_logging(bot_id: str = "default") -> tuple[Path, datetime]:
    log_dir = PROJECT_ROOT / "log"
    log_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"levsim_{bot_id}_{timestamp}.log"
    _configure_logging(log_file)
    return log_file, datetime.now()


def _maybe_rotate_logs(
    current_file: Path,
    start_time: datetime,
    bot_id: str = "default",
    rotation_hours: int = 6,
) -> tuple[Path, datetime]:
    if datetime.now() - start_time < timedelta(hours=rotation_hours):
        return current_file, start_time
    return _setup_logging(bot_id)


class SetupInbox:
    """Tail a JSON-lines file of detector setups, one object per line."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._offset = 0

    @property
    def path(self) -> Path:
        return self._path

    def read_new(self) -> list[Setup]:
        if not self._path.exists():
            return []
        setups: list[Setup] = []
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                handle.seek(self._offset)
                while True:
                    line = handle.readline()
                    if not line or not line.endswith("\n"):
                        break
                    self._offset = handle.tell()
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        setups.append(Setup.from_dict(json.loads(line)))
                    except (json.JSONDecodeError, KeyError, ValueError) as exc:
                        logger.warning("Skipping malformed setup line: %s (%s)", line[:200], exc)
        except OSError as exc:
            logger.warning("Failed to read setups from %s: %s", self._path, exc)
        return setups


def _load_state(simulator: LifecycleSimulator, state_file: Path) -> None:
    if not state_file.exists():
        return
    try:
        payload = json.loads(state_file.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Ignoring unreadable state file %s: %s", state_file, exc)
        return
    simulator.restore_state(payload)


def _save_state(simulator: LifecycleSimulator, state_file: Path) -> None:
    tmp_file = state_file.with_suffix(".tmp")
    try:
        tmp_file.write_text(json.dumps(simulator.save_state(), ensure_ascii=True), encoding="utf-8")
        tmp_file.replace(state_file)
    except OSError as exc:
        logger.error("Failed to save simulator state to %s: %s", state_file, exc)


def build_simulator(
    runner_config: RunnerConfig,
    output_dir: Path,
    config_path: Optional[Path] = None,
) -> LifecycleSimulator:
    risk_config = maybe_load_risk_config(config_path) or default_risk_config()
    costs_config = maybe_load_costs_config(config_path) or default_costs_config()
    sink = JsonlTradeSink(output_dir / "trades.jsonl", bot_id=runner_config.bot_id)
    return LifecycleSimulator(
        risk_config,
        ExecutionCostModel(costs_config),
        sink,
        initial_balance=runner_config.initial_balance,
        bot_id=runner_config.bot_id,
    )


def main() -> None:
    config_path = resolve_config_path()
    runner_config = maybe_load_runner_config(config_path) or default_runner_config()
    bot_id = runner_config.bot_id
    log_file, log_started = _setup_logging(bot_id)
    logger.info("Logging to %s", log_file)
    logger.info("Using simulator config %s", config_path)

    output_dir = runner_config.output_dir or (PROJECT_ROOT / "data" / bot_id)
    output_dir.mkdir(parents=True, exist_ok=True)
    state_file = output_dir / "state.json"

    simulator = build_simulator(runner_config, output_dir, config_path)
    _load_state(simulator, state_file)
    logger.info(
        "Simulator %s ready: balance=%.2f leverage=%sx max_positions=%s",
        bot_id,
        simulator.get_balance(),
        simulator.risk_config.leverage,
        simulator.risk_config.max_open_positions,
    )

    client = BybitV5Client(
        testnet=runner_config.testnet,
        timeout=runner_config.fetch_timeout,
        category=runner_config.category,
    )
    logger.info("Bybit REST client ready: base_url=%s", client.base_url)
    feed = BybitPriceFeed(
        client,
        category=runner_config.category,
        max_workers=runner_config.max_workers,
        timeout=runner_config.fetch_timeout,
    )
    scheduler = TickScheduler(simulator, feed, interval=runner_config.tick_interval)
    inbox = SetupInbox(output_dir / "setups.jsonl")
    logger.info(
        "Starting tick loop with %.1fs delay; reading setups from %s",
        runner_config.tick_interval,
        inbox.path,
    )
    try:
        while True:
            for setup in inbox.read_new():
                scheduler.submit_setup(setup)
            try:
                summary = scheduler.run_once()
                if summary.opened or summary.closed:
                    stats = simulator.get_statistics()
                    logger.info(
                        "Tick: opened=%d closed=%d balance=%.2f trades=%d win_rate=%.1f%% pnl=%.2f",
                        len(summary.opened),
                        len(summary.closed),
                        simulator.get_balance(),
                        stats.total_trades,
                        stats.win_rate,
                        stats.total_pnl,
                    )
                    _save_state(simulator, state_file)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Simulator tick failed: %s", exc)
            new_log_file, new_start = _maybe_rotate_logs(log_file, log_started, bot_id)
            if new_log_file != log_file:
                logger.info("Rotated log file to %s", new_log_file)
            log_file, log_started = new_log_file, new_start
            time.sleep(runner_config.tick_interval)
    except KeyboardInterrupt:
        logger.info("Received interrupt, stopping tick loop")
    finally:
        _save_state(simulator, state_file)
        feed.close()
        client.close()


if __name__ == "__main__":
    main()
