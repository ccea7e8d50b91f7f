from __future__ import annotations

"""Configuration loader for the simulator host process."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .paths import read_config

DEFAULT_TICK_INTERVAL = 5.0
DEFAULT_CATEGORY = "linear"


@dataclass(slots=True)
class RunnerConfig:
    bot_id: str = "default"
    initial_balance: float = 2000.0
    tick_interval: float = DEFAULT_TICK_INTERVAL
    category: str = DEFAULT_CATEGORY
    fetch_timeout: float = 10.0
    max_workers: int = 8
    testnet: bool = False
    output_dir: Optional[Path] = None


def load_runner_config(path: str | os.PathLike[str] | None = None) -> RunnerConfig:
    parser, config_path = read_config(path)
    if "runner" not in parser:
        raise ValueError(f"config missing '[runner]' section in {config_path}")
    section = parser["runner"]
    output_raw = section.get("output_dir", fallback="").strip()
    return RunnerConfig(
        bot_id=section.get("bot_id", fallback="default").strip() or "default",
        initial_balance=max(0.0, section.getfloat("initial_balance", fallback=2000.0)),
        tick_interval=max(1.0, section.getfloat("tick_interval", fallback=DEFAULT_TICK_INTERVAL)),
        category=section.get("category", fallback=DEFAULT_CATEGORY).strip() or DEFAULT_CATEGORY,
        fetch_timeout=max(0.5, section.getfloat("fetch_timeout", fallback=10.0)),
        max_workers=max(1, section.getint("max_workers", fallback=8)),
        testnet=section.getboolean("testnet", fallback=False),
        output_dir=Path(output_raw).expanduser() if output_raw else None,
    )


def maybe_load_runner_config(
    path: str | os.PathLike[str] | None = None,
    *,
    strict: bool = False,
) -> Optional[RunnerConfig]:
    try:
        return load_runner_config(path)
    except (FileNotFoundError, ValueError):
        if strict:
            raise
        return None


def default_runner_config() -> RunnerConfig:
    return RunnerConfig()
