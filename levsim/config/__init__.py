"""Configuration utilities for levsim."""

from .costs_config import (
    ExecutionCostsConfig,
    FeeStructure,
    FundingConfig,
    SlippageConfig,
    default_costs_config,
    load_costs_config,
    maybe_load_costs_config,
)
from .paths import ConfigError, resolve_config_path
from .risk_config import (
    DEFAULT_PROFIT_TIERS,
    InsuranceConfig,
    ProfitTier,
    RiskConfig,
    default_risk_config,
    load_risk_config,
    maybe_load_risk_config,
)
from .runner_config import (
    RunnerConfig,
    default_runner_config,
    load_runner_config,
    maybe_load_runner_config,
)

__all__ = [
    "ConfigError",
    "DEFAULT_PROFIT_TIERS",
    "ExecutionCostsConfig",
    "FeeStructure",
    "FundingConfig",
    "InsuranceConfig",
    "ProfitTier",
    "RiskConfig",
    "RunnerConfig",
    "SlippageConfig",
    "default_costs_config",
    "default_risk_config",
    "default_runner_config",
    "load_costs_config",
    "load_risk_config",
    "load_runner_config",
    "maybe_load_costs_config",
    "maybe_load_risk_config",
    "maybe_load_runner_config",
    "resolve_config_path",
]
