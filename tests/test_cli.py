import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from wpactl.cli import cli


@pytest.fixture
def mock_yml(tmp_path: Path) -> Path:
    yml = tmp_path / "wpactl.yml"
    yml.write_text(
        f"""
mock_mode: true
supplicant:
  config_path: {tmp_path / "wpa_supplicant.conf"}
  log_dir: {tmp_path / "logs"}
timeouts:
  scan_settle_secs: 0
credentials:
  base_dir: {tmp_path / "creds"}
logging:
  level: ERROR
        """.strip(),
        encoding="utf-8",
    )
    return yml


def run(*args: str, env: dict | None = None):
    return CliRunner().invoke(cli, list(args), prog_name="wpactl", env=env)


def test_version_command():
    result = run("version")
    assert result.exit_code == 0
    assert "wpactl" in result.stdout


def test_config_which_reports_cli_path(mock_yml: Path):
    result = run("--config", str(mock_yml), "config-which")
    assert result.exit_code == 0
    assert "wpactl.yml" in result.stdout
    assert "missing" not in result.stdout


def test_config_validate_ok(mock_yml: Path):
    result = run("config-validate", str(mock_yml))
    assert result.exit_code == 0
    assert "Config OK" in result.stdout


def test_config_validate_rejects_bad_file(tmp_path: Path):
    yml = tmp_path / "bad.yml"
    yml.write_text("timeouts:\n  state_wait_secs: 1\n  poll_interval_secs: 5\n", encoding="utf-8")
    result = run("config-validate", str(yml))
    assert result.exit_code == 1
    assert "validation failed" in result.stdout


def test_missing_config_is_usage_error(tmp_path: Path):
    result = run("--config", str(tmp_path / "nope.yml"), "status")
    assert result.exit_code == 2


def test_invalid_config_exits_2(tmp_path: Path):
    yml = tmp_path / "bad.yml"
    yml.write_text("interface:\n  name: 'wlan 0'\n", encoding="utf-8")
    result = run("--config", str(yml), "status")
    assert result.exit_code == 2


def test_scan_table_in_mock_mode(mock_yml: Path):
    result = run("--config", str(mock_yml), "scan")
    assert result.exit_code == 0, result.output
    assert "MockNet" in result.stdout
    assert "MockOpen" in result.stdout


def test_connect_json_in_mock_mode(mock_yml: Path):
    result = run("--config", str(mock_yml), "--json", "connect", "MockNet", "--psk", "password1")
    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["success"] is True
    assert payload["status"]["ssid"] == "MockNet"
    assert payload["status"]["ip_address"] == "192.168.1.100"


def test_connect_rejects_short_psk(mock_yml: Path):
    result = run("--config", str(mock_yml), "connect", "MockNet", "--psk", "short")
    assert result.exit_code == 1
    assert "validate" in result.stdout


def test_mock_flag_and_interface_override(tmp_path: Path, mock_yml: Path):
    mock_yml.write_text(mock_yml.read_text(encoding="utf-8").replace("mock_mode: true", "mock_mode: false"), encoding="utf-8")
    result = run("--config", str(mock_yml), "--mock", "--interface", "wlan7", "status")
    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout)["data"]["interface"] == "wlan7"


def test_hs20_state_in_mock_mode(mock_yml: Path):
    result = run("--config", str(mock_yml), "hs20-state")
    assert result.exit_code == 0
    assert json.loads(result.stdout)["data"]["credential_count"] == 0


def test_forget_unknown_network_exits_1(mock_yml: Path):
    result = run("--config", str(mock_yml), "forget", "9")
    assert result.exit_code == 1
    assert json.loads(result.stdout)["success"] is False


def test_logs_filter_choice(mock_yml: Path):
    result = run("--config", str(mock_yml), "logs", "--filter", "bogus")
    assert result.exit_code == 2
