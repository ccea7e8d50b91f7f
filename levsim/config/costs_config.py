from __future__ import annotations

"""Configuration for execution friction: fees, slippage and funding."""

import configparser
import os
from dataclasses import dataclass, field
from typing import Optional

from .paths import ConfigError, read_config


@dataclass(slots=True)
class FeeStructure:
    maker_fee: float = 0.0002
    taker_fee: float = 0.0004


@dataclass(slots=True)
class SlippageConfig:
    base_bps: float = 2.0
    volatility_multiplier: float = 1.5
    # extra bps per 10k of notional
    size_impact_factor: float = 0.5
    min_bps: float = 1.0
    max_bps: float = 20.0
    stop_multiplier: float = 2.0


@dataclass(slots=True)
class FundingConfig:
    default_rate_percent: float = 0.01
    extreme_rate_percent: float = 0.1
    interval_hours: float = 8.0
    min_interval_fraction: float = 0.1


@dataclass(slots=True)
class ExecutionCostsConfig:
    """Friction parameters modelled on retail perpetual futures rates."""

    fees: FeeStructure = field(default_factory=FeeStructure)
    slippage: SlippageConfig = field(default_factory=SlippageConfig)
    funding: FundingConfig = field(default_factory=FundingConfig)
    enabled: bool = True

    def validate(self) -> None:
        if self.fees.maker_fee < 0 or self.fees.taker_fee < 0:
            raise ConfigError("fee rates must not be negative")
        slip = self.slippage
        for name in ("base_bps", "volatility_multiplier", "size_impact_factor", "min_bps", "max_bps"):
            if getattr(slip, name) < 0:
                raise ConfigError(f"slippage {name} must not be negative")
        if slip.min_bps > slip.max_bps:
            raise ConfigError(f"slippage min_bps {slip.min_bps} exceeds max_bps {slip.max_bps}")
        if slip.stop_multiplier < 1:
            raise ConfigError("slippage stop_multiplier must be at least 1")
        funding = self.funding
        if funding.interval_hours <= 0:
            raise ConfigError("funding interval_hours must be positive")
        if funding.default_rate_percent < 0 or funding.extreme_rate_percent < 0:
            raise ConfigError("funding rates must not be negative")
        if funding.min_interval_fraction < 0:
            raise ConfigError("funding min_interval_fraction must not be negative")


def parse_costs_config(parser: configparser.ConfigParser) -> ExecutionCostsConfig:
    defaults = ExecutionCostsConfig()
    fees = defaults.fees
    if "fees" in parser:
        section = parser["fees"]
        fees = FeeStructure(
            maker_fee=section.getfloat("maker_fee", fallback=fees.maker_fee),
            taker_fee=section.getfloat("taker_fee", fallback=fees.taker_fee),
        )
    slippage = defaults.slippage
    if "slippage" in parser:
        section = parser["slippage"]
        slippage = SlippageConfig(
            base_bps=section.getfloat("base_bps", fallback=slippage.base_bps),
            volatility_multiplier=section.getfloat(
                "volatility_multiplier", fallback=slippage.volatility_multiplier
            ),
            size_impact_factor=section.getfloat(
                "size_impact_factor", fallback=slippage.size_impact_factor
            ),
            min_bps=section.getfloat("min_bps", fallback=slippage.min_bps),
            max_bps=section.getfloat("max_bps", fallback=slippage.max_bps),
            stop_multiplier=section.getfloat("stop_multiplier", fallback=slippage.stop_multiplier),
        )
    funding = defaults.funding
    if "funding" in parser:
        section = parser["funding"]
        funding = FundingConfig(
            default_rate_percent=section.getfloat(
                "default_rate_percent", fallback=funding.default_rate_percent
            ),
            extreme_rate_percent=section.getfloat(
                "extreme_rate_percent", fallback=funding.extreme_rate_percent
            ),
            interval_hours=section.getfloat("interval_hours", fallback=funding.interval_hours),
            min_interval_fraction=section.getfloat(
                "min_interval_fraction", fallback=funding.min_interval_fraction
            ),
        )
    enabled = True
    if "fees" in parser:
        enabled = parser["fees"].getboolean("enabled", fallback=True)
    config = ExecutionCostsConfig(fees=fees, slippage=slippage, funding=funding, enabled=enabled)
    config.validate()
    return config


def load_costs_config(path: str | os.PathLike[str] | None = None) -> ExecutionCostsConfig:
    parser, _ = read_config(path)
    return parse_costs_config(parser)


def maybe_load_costs_config(
    path: str | os.PathLike[str] | None = None,
    *,
    strict: bool = False,
) -> Optional[ExecutionCostsConfig]:
    try:
        return load_costs_config(path)
    except ConfigError:
        raise
    except (FileNotFoundError, ValueError):
        if strict:
            raise
        return None


def default_costs_config() -> ExecutionCostsConfig:
    return ExecutionCostsConfig()
