from __future__ import annotations

"""Shared config file discovery for the simulator INI file."""

import configparser
import os
from pathlib import Path

CONFIG_ENV_VAR = "LEVSIM_CONFIG"
DEFAULT_FILE_NAME = "simulator.ini"
CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"


class ConfigError(ValueError):
    """Raised when configuration values cannot drive a simulator."""


def resolve_config_path(path: str | os.PathLike[str] | None = None) -> Path:
    candidates: list[Path] = []
    if path:
        candidates.append(Path(path).expanduser())
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        candidates.append(Path(env_path).expanduser())
    candidates.append(CONFIG_DIR / DEFAULT_FILE_NAME)
    candidates.append(Path(DEFAULT_FILE_NAME))
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return candidates[0]


def read_config(path: str | os.PathLike[str] | None = None) -> tuple[configparser.ConfigParser, Path]:
    config_path = resolve_config_path(path)
    parser = configparser.ConfigParser()
    read_files = parser.read(config_path)
    if not read_files:
        raise FileNotFoundError(f"simulator config not found at {config_path}")
    return parser, config_path


def optional_float(section: configparser.SectionProxy, key: str) -> float | None:
    raw = section.get(key, fallback="").strip()
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"invalid number for '{key}': {raw!r}") from exc


def optional_int(section: configparser.SectionProxy, key: str) -> int | None:
    raw = section.get(key, fallback="").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"invalid integer for '{key}': {raw!r}") from exc
