from pathlib import Path

import pytest

from wpactl.config import WpactlConfig, default_config, load_config


def test_default_model_has_expected_values():
    cfg = WpactlConfig()
    assert cfg.interface.name == "wlan0"
    assert cfg.supplicant.config_path.as_posix() == "/etc/wpa_supplicant/wpa_supplicant.conf"
    assert cfg.timeouts.state_wait_secs == 15.0
    assert cfg.timeouts.hs20_state_wait_secs == 45.0
    assert cfg.timeouts.poll_interval_secs == 0.5
    assert cfg.timeouts.lease_wait_secs == 8.0
    assert cfg.supplicant_log_path().as_posix() == "/tmp/wpa_supplicant_wlan0.log"


def test_yaml_loads_and_validates(tmp_path: Path):
    yml = tmp_path / "wpactl.yml"
    yml.write_text(
        """
interface:
  name: wlan1
supplicant:
  log_dir: /var/log/wpactl
timeouts:
  state_wait_secs: 20
logging:
  level: debug
        """.strip(),
        encoding="utf-8",
    )
    cfg = load_config(yml)
    assert cfg.interface.name == "wlan1"
    assert cfg.timeouts.state_wait_secs == 20
    assert cfg.logging.level == "DEBUG"
    assert cfg.supplicant_log_path().name == "wpa_supplicant_wlan1.log"


def test_empty_file_gives_defaults(tmp_path: Path, monkeypatch):
    monkeypatch.delenv("WIFI_INTERFACE", raising=False)
    yml = tmp_path / "wpactl.yml"
    yml.write_text("", encoding="utf-8")
    assert load_config(yml).interface.name == "wlan0"


def test_wifi_interface_env_fills_missing_name(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("WIFI_INTERFACE", "wlp2s0")
    yml = tmp_path / "wpactl.yml"
    yml.write_text("mock_mode: true\n", encoding="utf-8")
    assert load_config(yml).interface.name == "wlp2s0"
    assert default_config().interface.name == "wlp2s0"


def test_file_interface_wins_over_env(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("WIFI_INTERFACE", "wlp2s0")
    yml = tmp_path / "wpactl.yml"
    yml.write_text("interface:\n  name: wlan3\n", encoding="utf-8")
    assert load_config(yml).interface.name == "wlan3"


def test_poll_interval_above_state_wait_raises(tmp_path: Path):
    yml = tmp_path / "wpactl.yml"
    yml.write_text(
        """
timeouts:
  state_wait_secs: 1
  poll_interval_secs: 2
        """.strip(),
        encoding="utf-8",
    )
    with pytest.raises(ValueError):
        load_config(yml)


@pytest.mark.parametrize("name", ["", "wlan 0", "a" * 16, "../x"])
def test_invalid_interface_name_raises(tmp_path: Path, name: str):
    yml = tmp_path / "wpactl.yml"
    yml.write_text(f"interface:\n  name: '{name}'\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(yml)


def test_invalid_log_level_raises(tmp_path: Path):
    yml = tmp_path / "wpactl.yml"
    yml.write_text("logging:\n  level: chatty\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(yml)
