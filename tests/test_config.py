"""Tests for configuration loading and validation."""

import pytest

from ipmi_fan_control.config import Config
from ipmi_fan_control.curve import FanCurve
from ipmi_fan_control.errors import InvalidCurve

CURVE = "30,5;40,10;50,20"

ENV_KEYS = (
    "IPMI_HOST", "IPMI_USERNAME", "IPMI_PASSWORD", "IPMI_INTERFACE",
    "UPDATE_INTERVAL", "OVERHEAT_TEMPERATURE", "MAXIMUM_TEMPERATURE", "OVERHEAT_TIME",
    "FAN_CURVE", "SUSTAINED_FAN_CURVE", "TEMPERATURE_SOURCE",
    "LOG_LEVEL", "DEBUG", "PROTOCOL",
)


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the host environment and /etc/default out of the tests."""
    import ipmi_fan_control.config as config_mod

    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr(config_mod, "DEFAULT_CONFIG_PATH", str(tmp_path / "missing"))


class TestConfigDefaults:
    def test_defaults(self) -> None:
        cfg = Config(idle_curve=CURVE)
        assert cfg.host == "127.0.0.1"
        assert cfg.username is None
        assert cfg.interface == "lanplus"
        assert cfg.poll_interval == 5.0
        assert cfg.max_temperature == 70
        assert cfg.overheat_allowance == 900.0
        assert cfg.sensor == "ipmi"
        assert cfg.protocol == "dell-idrac"
        assert cfg.log_level == "INFO"

    def test_debug_forces_log_level(self) -> None:
        cfg = Config(idle_curve=CURVE, debug=True)
        assert cfg.log_level == "DEBUG"

    def test_sustained_defaults_to_idle(self) -> None:
        cfg = Config(idle_curve=CURVE)
        assert cfg.sustained_fan_curve == cfg.idle_fan_curve

    def test_blank_sustained_defaults_to_idle(self) -> None:
        cfg = Config(idle_curve=CURVE, sustained_curve="  ")
        assert cfg.sustained_curve is None
        assert cfg.sustained_fan_curve == FanCurve([(30, 5), (40, 10), (50, 20)])

    def test_overheat_defaults_to_idle_curve_max(self) -> None:
        assert Config(idle_curve=CURVE).effective_overheat_temperature == 50

    def test_overheat_default_capped_by_max_temperature(self) -> None:
        cfg = Config(idle_curve="30,5;80,100", max_temperature=70)
        assert cfg.effective_overheat_temperature == 70

    def test_explicit_overheat(self) -> None:
        cfg = Config(idle_curve=CURVE, overheat_temperature=55)
        assert cfg.effective_overheat_temperature == 55

    def test_describe_hides_password(self) -> None:
        cfg = Config(idle_curve=CURVE, username="root", password="calvin")
        summary = cfg.describe()
        assert "calvin" not in summary
        assert "idle_curve=30,5;40,10;50,20" in summary


class TestConfigValidation:
    def test_missing_idle_curve_raises(self) -> None:
        with pytest.raises(ValueError, match="No idle fan curve"):
            Config()

    def test_invalid_idle_curve_raises(self) -> None:
        with pytest.raises(InvalidCurve):
            Config(idle_curve="50,10;40,20")

    def test_invalid_sustained_curve_raises(self) -> None:
        with pytest.raises(InvalidCurve):
            Config(idle_curve=CURVE, sustained_curve="fast")

    def test_zero_poll_interval_raises(self) -> None:
        with pytest.raises(ValueError, match="Poll interval must be positive"):
            Config(idle_curve=CURVE, poll_interval=0)

    def test_negative_allowance_raises(self) -> None:
        with pytest.raises(ValueError, match="Overheat allowance"):
            Config(idle_curve=CURVE, overheat_allowance=-1)

    @pytest.mark.parametrize("interval", [float("nan"), float("inf")])
    def test_non_finite_poll_interval_raises(self, interval: float) -> None:
        with pytest.raises(ValueError, match="Poll interval must be positive"):
            Config(idle_curve=CURVE, poll_interval=interval)

    @pytest.mark.parametrize("allowance", [float("nan"), float("inf")])
    def test_non_finite_allowance_raises(self, allowance: float) -> None:
        with pytest.raises(ValueError, match="Overheat allowance"):
            Config(idle_curve=CURVE, overheat_allowance=allowance)

    def test_nan_interval_from_env_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FAN_CURVE", CURVE)
        monkeypatch.setenv("UPDATE_INTERVAL", "nan")
        with pytest.raises(ValueError, match="Poll interval"):
            Config.load([])

    def test_invalid_sensor_raises(self) -> None:
        with pytest.raises(ValueError, match="Invalid sensor"):
            Config(idle_curve=CURVE, sensor="gpu")

    def test_invalid_protocol_raises(self) -> None:
        with pytest.raises(ValueError, match="Unknown protocol"):
            Config(idle_curve=CURVE, protocol="nonexistent")


class TestConfigLoadCLI:
    def test_fan_curves(self) -> None:
        cfg = Config.load([
            "-H", "host.domain.com",
            "-u", "username",
            "-p", "password",
            "-f", "30,5;40,10;50,20",
            "-s", "30,5;40,10;50,20;70,100",
        ])
        assert cfg.host == "host.domain.com"
        assert cfg.username == "username"
        assert cfg.password == "password"
        assert cfg.sustained_fan_curve.max_temperature == 70

    def test_numeric_options(self) -> None:
        cfg = Config.load([
            "-f", CURVE, "-i", "10", "-o", "60", "-m", "80", "-a", "300",
        ])
        assert cfg.poll_interval == 10.0
        assert cfg.overheat_temperature == 60
        assert cfg.max_temperature == 80
        assert cfg.overheat_allowance == 300.0

    def test_cli_debug(self) -> None:
        cfg = Config.load(["-f", CURVE, "--debug"])
        assert cfg.log_level == "DEBUG"

    def test_cli_sensor_and_protocol(self) -> None:
        cfg = Config.load(["-f", CURVE, "--sensor", "local", "--protocol", "DELL-IDRAC"])
        assert cfg.sensor == "local"
        assert cfg.protocol == "dell-idrac"

    def test_no_curve_raises(self) -> None:
        with pytest.raises(ValueError, match="No idle fan curve"):
            Config.load([])


class TestConfigLoadEnv:
    def test_load_from_env_file(self, tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
        import ipmi_fan_control.config as config_mod

        env_file = tmp_path / "config"
        env_file.write_text(
            "IPMI_HOST=10.0.0.5\nFAN_CURVE=30,5;50,20\nUPDATE_INTERVAL=3\n"
            "OVERHEAT_TIME=600\nMAXIMUM_TEMPERATURE=75\n"
        )
        monkeypatch.setattr(config_mod, "DEFAULT_CONFIG_PATH", str(env_file))

        cfg = Config.load([])
        assert cfg.host == "10.0.0.5"
        assert cfg.idle_curve == "30,5;50,20"
        assert cfg.poll_interval == 3.0
        assert cfg.overheat_allowance == 600.0
        assert cfg.max_temperature == 75

    def test_env_vars_override_file(self, tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
        import ipmi_fan_control.config as config_mod

        env_file = tmp_path / "config"
        env_file.write_text("FAN_CURVE=30,5;50,20\nIPMI_HOST=10.0.0.5\n")
        monkeypatch.setattr(config_mod, "DEFAULT_CONFIG_PATH", str(env_file))
        monkeypatch.setenv("IPMI_HOST", "10.0.0.9")

        assert Config.load([]).host == "10.0.0.9"

    def test_unparseable_number_is_ignored(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FAN_CURVE", CURVE)
        monkeypatch.setenv("UPDATE_INTERVAL", "soon")
        assert Config.load([]).poll_interval == 5.0

    def test_empty_sustained_env_uses_idle(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FAN_CURVE", CURVE)
        monkeypatch.setenv("SUSTAINED_FAN_CURVE", "")
        cfg = Config.load([])
        assert cfg.sustained_fan_curve == cfg.idle_fan_curve

    def test_sustained_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FAN_CURVE", CURVE)
        monkeypatch.setenv("SUSTAINED_FAN_CURVE", "30,5;70,100")
        assert Config.load([]).sustained_fan_curve.max_temperature == 70

    def test_cli_overrides_env_var(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FAN_CURVE", "30,5;50,20")
        cfg = Config.load(["-f", "30,5;60,50"])
        assert cfg.idle_fan_curve.max_temperature == 60
