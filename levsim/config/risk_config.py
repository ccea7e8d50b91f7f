from __future__ import annotations

"""Risk configuration for the leveraged position lifecycle simulator."""

import configparser
import os
from dataclasses import dataclass, field
from typing import Optional

from .paths import ConfigError, optional_float, optional_int, read_config

_RISK_SECTION = "risk"
_TIER_PREFIX = "risk.tier."
_INSURANCE_SECTION = "insurance"
_STOP_MODES = ("price", "roe")


@dataclass(slots=True)
class ProfitTier:
    """Trail step applied once the peak ROE reaches ``min_roe_percent``."""

    min_roe_percent: float
    trail_step_percent: float


@dataclass(slots=True)
class InsuranceConfig:
    """Conditional half-close taken during losing streaks."""

    enabled: bool = False
    threshold_percent: float = 2.0
    stress_win_rate_threshold: float = 50.0
    window_hours: float = 2.0
    min_sample: int = 3
    lookback_trades: Optional[int] = None


DEFAULT_PROFIT_TIERS: tuple[ProfitTier, ...] = (
    ProfitTier(min_roe_percent=50.0, trail_step_percent=2.0),
    ProfitTier(min_roe_percent=30.0, trail_step_percent=3.0),
    ProfitTier(min_roe_percent=20.0, trail_step_percent=4.0),
    ProfitTier(min_roe_percent=0.0, trail_step_percent=5.0),
)


@dataclass(slots=True)
class RiskConfig:
    """Sizing, stop, trailing and insurance parameters for one simulator.

    All ``*_percent`` values are plain percents (``2.0`` means 2%). Trail and
    insurance thresholds are expressed as ROE, stop/target percents as price
    distance unless ``stop_mode`` is ``"roe"``.
    """

    leverage: float = 10.0
    position_size_percent: float = 1.0
    stop_loss_percent: float = 8.0
    take_profit_percent: float = 0.0
    trail_trigger_percent: float = 10.0
    trail_step_percent: float = 5.0
    use_profit_tiers: bool = True
    profit_tiers: tuple[ProfitTier, ...] = DEFAULT_PROFIT_TIERS
    breakeven_trigger_percent: Optional[float] = None
    partial_take_profit_percent: float = 0.0
    partial_close_fraction: float = 0.5
    max_open_positions: int = 10
    minimum_position_size: float = 10.0
    require_futures: bool = True
    liquidation_margin_fraction: float = 0.9
    structural_stop_min_percent: float = 0.5
    structural_stop_max_percent: float = 10.0
    stop_mode: str = "price"
    insurance: InsuranceConfig = field(default_factory=InsuranceConfig)

    def __post_init__(self) -> None:
        self.profit_tiers = tuple(
            sorted(self.profit_tiers, key=lambda tier: tier.min_roe_percent, reverse=True)
        )

    def validate(self) -> None:
        if self.leverage <= 0:
            raise ConfigError(f"leverage must be positive, got {self.leverage}")
        if not 0 < self.position_size_percent <= 100:
            raise ConfigError(
                f"position_size_percent must be in (0, 100], got {self.position_size_percent}"
            )
        for name in (
            "stop_loss_percent",
            "take_profit_percent",
            "trail_trigger_percent",
            "trail_step_percent",
            "partial_take_profit_percent",
            "minimum_position_size",
            "structural_stop_min_percent",
            "structural_stop_max_percent",
        ):
            value = getattr(self, name)
            if value < 0:
                raise ConfigError(f"{name} must not be negative, got {value}")
        if self.structural_stop_min_percent > self.structural_stop_max_percent:
            raise ConfigError("structural_stop_min_percent exceeds structural_stop_max_percent")
        if not 0 < self.liquidation_margin_fraction <= 1:
            raise ConfigError(
                f"liquidation_margin_fraction must be in (0, 1], got {self.liquidation_margin_fraction}"
            )
        if not 0 < self.partial_close_fraction < 1:
            raise ConfigError(
                f"partial_close_fraction must be in (0, 1), got {self.partial_close_fraction}"
            )
        if self.max_open_positions < 1:
            raise ConfigError("max_open_positions must be at least 1")
        if self.stop_mode not in _STOP_MODES:
            raise ConfigError(f"stop_mode must be one of {_STOP_MODES}, got {self.stop_mode!r}")
        if self.breakeven_trigger_percent is not None and self.breakeven_trigger_percent < 0:
            raise ConfigError("breakeven_trigger_percent must not be negative")
        for tier in self.profit_tiers:
            if tier.trail_step_percent < 0:
                raise ConfigError(f"profit tier {tier} has a negative trail step")
        insurance = self.insurance
        if insurance.threshold_percent < 0:
            raise ConfigError("insurance threshold_percent must not be negative")
        if not 0 <= insurance.stress_win_rate_threshold <= 100:
            raise ConfigError("insurance stress_win_rate_threshold must be in [0, 100]")
        if insurance.window_hours <= 0:
            raise ConfigError("insurance window_hours must be positive")
        if insurance.min_sample < 1:
            raise ConfigError("insurance min_sample must be at least 1")
        if insurance.lookback_trades is not None and insurance.lookback_trades < 1:
            raise ConfigError("insurance lookback_trades must be at least 1 when set")


def _parse_tier(section_name: str, section: configparser.SectionProxy) -> ProfitTier:
    try:
        return ProfitTier(
            min_roe_percent=section.getfloat("min_roe_percent"),
            trail_step_percent=section.getfloat("trail_step_percent"),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid profit tier section [{section_name}]: {exc}") from exc


def _parse_insurance(parser: configparser.ConfigParser) -> InsuranceConfig:
    if _INSURANCE_SECTION not in parser:
        return InsuranceConfig()
    section = parser[_INSURANCE_SECTION]
    return InsuranceConfig(
        enabled=section.getboolean("enabled", fallback=False),
        threshold_percent=section.getfloat("threshold_percent", fallback=2.0),
        stress_win_rate_threshold=section.getfloat("stress_win_rate_threshold", fallback=50.0),
        window_hours=section.getfloat("window_hours", fallback=2.0),
        min_sample=section.getint("min_sample", fallback=3),
        lookback_trades=optional_int(section, "lookback_trades"),
    )


def parse_risk_config(parser: configparser.ConfigParser) -> RiskConfig:
    if _RISK_SECTION not in parser:
        raise ValueError(f"config missing '[{_RISK_SECTION}]' section")
    base = parser[_RISK_SECTION]
    tiers = tuple(
        _parse_tier(name, parser[name])
        for name in parser.sections()
        if name.startswith(_TIER_PREFIX)
    )
    config = RiskConfig(
        leverage=base.getfloat("leverage", fallback=10.0),
        position_size_percent=base.getfloat("position_size_percent", fallback=1.0),
        stop_loss_percent=base.getfloat("stop_loss_percent", fallback=8.0),
        take_profit_percent=base.getfloat("take_profit_percent", fallback=0.0),
        trail_trigger_percent=base.getfloat("trail_trigger_percent", fallback=10.0),
        trail_step_percent=base.getfloat("trail_step_percent", fallback=5.0),
        use_profit_tiers=base.getboolean("use_profit_tiers", fallback=True),
        profit_tiers=tiers or DEFAULT_PROFIT_TIERS,
        breakeven_trigger_percent=optional_float(base, "breakeven_trigger_percent"),
        partial_take_profit_percent=base.getfloat("partial_take_profit_percent", fallback=0.0),
        partial_close_fraction=base.getfloat("partial_close_fraction", fallback=0.5),
        max_open_positions=base.getint("max_open_positions", fallback=10),
        minimum_position_size=base.getfloat("minimum_position_size", fallback=10.0),
        require_futures=base.getboolean("require_futures", fallback=True),
        liquidation_margin_fraction=base.getfloat("liquidation_margin_fraction", fallback=0.9),
        structural_stop_min_percent=base.getfloat("structural_stop_min_percent", fallback=0.5),
        structural_stop_max_percent=base.getfloat("structural_stop_max_percent", fallback=10.0),
        stop_mode=base.get("stop_mode", fallback="price").strip().lower() or "price",
        insurance=_parse_insurance(parser),
    )
    config.validate()
    return config


def load_risk_config(path: str | os.PathLike[str] | None = None) -> RiskConfig:
    parser, config_path = read_config(path)
    try:
        return parse_risk_config(parser)
    except ConfigError:
        raise
    except ValueError as exc:
        raise ValueError(f"{exc} in {config_path}") from exc


def maybe_load_risk_config(
    path: str | os.PathLike[str] | None = None,
    *,
    strict: bool = False,
) -> Optional[RiskConfig]:
    try:
        return load_risk_config(path)
    except ConfigError:
        raise
    except (FileNotFoundError, ValueError):
        if strict:
            raise
        return None


def default_risk_config() -> RiskConfig:
    """Return the in-memory defaults used when no INI file is available."""

    return RiskConfig()
