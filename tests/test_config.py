import textwrap

import pytest

from levsim.config import (
    ConfigError,
    RiskConfig,
    default_costs_config,
    default_runner_config,
    load_costs_config,
    load_risk_config,
    load_runner_config,
    maybe_load_costs_config,
    maybe_load_risk_config,
    maybe_load_runner_config,
    resolve_config_path,
)
from levsim.config.paths import CONFIG_DIR, CONFIG_ENV_VAR

SAMPLE = """
[runner]
bot_id = shadow-a
initial_balance = 5000
tick_interval = 2

[risk]
leverage = 20
position_size_percent = 2
stop_loss_percent = 4
breakeven_trigger_percent = 6
stop_mode = ROE

[risk.tier.low]
min_roe_percent = 0
trail_step_percent = 5

[risk.tier.high]
min_roe_percent = 40
trail_step_percent = 2

[insurance]
enabled = true
threshold_percent = 3
lookback_trades = 5

[fees]
taker_fee = 0.00055

[slippage]
stop_multiplier = 3

[funding]
interval_hours = 4
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "simulator.ini"
    path.write_text(textwrap.dedent(SAMPLE), encoding="utf-8")
    return path


class TestRiskConfig:
    def test_load_from_file(self, config_file):
        config = load_risk_config(config_file)
        assert config.leverage == 20.0
        assert config.position_size_percent == 2.0
        assert config.breakeven_trigger_percent == 6.0
        assert config.stop_mode == "roe"
        assert config.take_profit_percent == 0.0

    def test_tiers_sorted_highest_first(self, config_file):
        config = load_risk_config(config_file)
        assert [tier.min_roe_percent for tier in config.profit_tiers] == [40.0, 0.0]

    def test_insurance_section(self, config_file):
        insurance = load_risk_config(config_file).insurance
        assert insurance.enabled
        assert insurance.threshold_percent == 3.0
        assert insurance.lookback_trades == 5
        assert insurance.min_sample == 3

    def test_invalid_leverage_raises_config_error(self, tmp_path):
        path = tmp_path / "bad.ini"
        path.write_text("[risk]\nleverage = -2\n", encoding="utf-8")
        with pytest.raises(ConfigError):
            maybe_load_risk_config(path)

    def test_bad_number_raises_config_error(self, tmp_path):
        path = tmp_path / "bad.ini"
        path.write_text("[risk]\nbreakeven_trigger_percent = soon\n", encoding="utf-8")
        with pytest.raises(ConfigError):
            load_risk_config(path)

    def test_missing_section(self, tmp_path):
        path = tmp_path / "empty.ini"
        path.write_text("[runner]\nbot_id = x\n", encoding="utf-8")
        assert maybe_load_risk_config(path) is None
        with pytest.raises(ValueError):
            maybe_load_risk_config(path, strict=True)

    def test_missing_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        monkeypatch.chdir(tmp_path)
        missing = tmp_path / "nope.ini"
        monkeypatch.setattr("levsim.config.paths.CONFIG_DIR", tmp_path / "no-config-dir")
        assert maybe_load_risk_config(missing) is None
        with pytest.raises(FileNotFoundError):
            maybe_load_risk_config(missing, strict=True)

    @pytest.mark.parametrize(
        "overrides",
        [
            {"leverage": 0.0},
            {"position_size_percent": 0.0},
            {"position_size_percent": 120.0},
            {"stop_loss_percent": -1.0},
            {"liquidation_margin_fraction": 1.5},
            {"partial_close_fraction": 1.0},
            {"max_open_positions": 0},
            {"stop_mode": "atr"},
            {"structural_stop_min_percent": 12.0},
        ],
    )
    def test_validate_rejects(self, overrides):
        with pytest.raises(ConfigError):
            RiskConfig(**overrides).validate()

    def test_defaults_validate(self):
        RiskConfig().validate()


class TestCostsConfig:
    def test_load_with_overrides(self, config_file):
        config = load_costs_config(config_file)
        assert config.fees.taker_fee == pytest.approx(0.00055)
        assert config.fees.maker_fee == pytest.approx(0.0002)
        assert config.slippage.stop_multiplier == 3.0
        assert config.slippage.base_bps == 2.0
        assert config.funding.interval_hours == 4.0
        assert config.enabled

    def test_disable_switch(self, tmp_path):
        path = tmp_path / "costs.ini"
        path.write_text("[fees]\nenabled = false\n", encoding="utf-8")
        assert not load_costs_config(path).enabled

    def test_min_above_max_rejected(self, tmp_path):
        path = tmp_path / "costs.ini"
        path.write_text("[slippage]\nmin_bps = 30\nmax_bps = 20\n", encoding="utf-8")
        with pytest.raises(ConfigError):
            maybe_load_costs_config(path)

    def test_defaults_validate(self):
        default_costs_config().validate()


class TestRunnerConfig:
    def test_load(self, config_file):
        config = load_runner_config(config_file)
        assert config.bot_id == "shadow-a"
        assert config.initial_balance == 5000.0
        assert config.tick_interval == 2.0
        assert config.category == "linear"
        assert config.output_dir is None

    def test_missing_section_returns_none(self, tmp_path):
        path = tmp_path / "risk-only.ini"
        path.write_text("[risk]\nleverage = 5\n", encoding="utf-8")
        assert maybe_load_runner_config(path) is None

    def test_defaults(self):
        config = default_runner_config()
        assert config.bot_id == "default"
        assert config.initial_balance == 2000.0
        assert config.output_dir is None


class TestResolvePath:
    def test_explicit_path_wins(self, config_file, monkeypatch):
        monkeypatch.setenv(CONFIG_ENV_VAR, "/does/not/exist.ini")
        assert resolve_config_path(config_file) == config_file

    def test_env_var(self, config_file, monkeypatch):
        monkeypatch.setenv(CONFIG_ENV_VAR, str(config_file))
        assert resolve_config_path() == config_file

    def test_bundled_sample_config_loads(self, monkeypatch):
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        sample = CONFIG_DIR / "simulator.ini"
        assert resolve_config_path() == sample
        config = load_risk_config(sample)
        assert len(config.profit_tiers) == 4
        assert load_runner_config(sample).bot_id == "default"
