"""Shared fakes for the command line tools wpactl drives."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

import pytest

from wpactl.config import WpactlConfig
from wpactl.core.orchestrator import ConnectionOrchestrator, MockComponentFactory
from wpactl.infrastructure.supplicant.control import ControlClient
from wpactl.tools.proc_utils import CommandResult


class FakeSystem:
    """Scripted runner: a small in-memory wpa_supplicant behind `wpa_cli`,
    plus canned replies for every other command."""

    def __init__(self):
        self.calls: list[list[str]] = []
        self.networks: dict[int, dict[str, str]] = {}
        self.next_id = 0
        self.selected: int | None = None
        self.state = "DISCONNECTED"
        self.state_after_select = "COMPLETED"
        self.fail_fields: set[str] = set()
        self.fail_commands: set[str] = set()
        self.scan_rows: list[str] = []
        self.scan_rows_after_retry: list[str] | None = None
        self.scans = 0
        self.status_calls = 0
        self.saves = 0
        self.replies: dict[tuple[str, ...], CommandResult] = {}

    # ------------------------------------------------------------ helpers

    def wpa_cli_commands(self) -> list[list[str]]:
        return [self._cli_args(call) for call in self.calls if call[0] == "wpa_cli"]

    def ssids(self) -> list[str]:
        return [entry.get("ssid", "").strip('"') for entry in self.networks.values()]

    def reply(self, prefix: Sequence[str], stdout: str = "", returncode: int = 0, stderr: str = "") -> None:
        self.replies[tuple(prefix)] = CommandResult(list(prefix), returncode, stdout, stderr)

    @staticmethod
    def _cli_args(args: list[str]) -> list[str]:
        rest = args[1:]
        while rest and rest[0] in ("-i", "-p"):
            rest = rest[2:]
        return rest

    # -------------------------------------------------------------- runner

    async def __call__(self, args: Sequence[str], *, timeout: float = 10.0, sudo: bool = False) -> CommandResult:
        args = list(args)
        self.calls.append(args)
        if args[0] == "wpa_cli":
            return CommandResult(args, 0, self._wpa_cli(self._cli_args(args)) + "\n", "")
        for length in range(len(args), 0, -1):
            canned = self.replies.get(tuple(args[:length]))
            if canned is not None:
                return canned
        return CommandResult(args, 0, "", "")

    def _wpa_cli(self, cmd: list[str]) -> str:
        name = cmd[0]
        if name in self.fail_commands:
            return "FAIL"
        if name == "add_network":
            nid = self.next_id
            self.next_id += 1
            self.networks[nid] = {}
            return str(nid)
        if name == "set_network":
            nid, field, value = int(cmd[1]), cmd[2], cmd[3]
            if field in self.fail_fields or nid not in self.networks:
                return "FAIL"
            self.networks[nid][field] = value
            return "OK"
        if name in ("enable_network",):
            return "OK" if int(cmd[1]) in self.networks else "FAIL"
        if name == "select_network":
            self.selected = int(cmd[1])
            self.state = self.state_after_select
            return "OK"
        if name == "save_config":
            self.saves += 1
            return "OK"
        if name == "remove_network":
            nid = int(cmd[1])
            if self.networks.pop(nid, None) is None:
                return "FAIL"
            if self.selected == nid:
                self.selected = None
                self.state = "DISCONNECTED"
            return "OK"
        if name == "list_networks":
            rows = ["network id / ssid / bssid / flags"]
            for nid, entry in sorted(self.networks.items()):
                flags = "[CURRENT]" if nid == self.selected else ""
                rows.append(f"{nid}\t{entry.get('ssid', '').strip(chr(34))}\tany\t{flags}")
            return "\n".join(rows)
        if name == "status" and len(cmd) > 1 and cmd[1] == "verbose":
            return "\n".join([
                "wpa_state=COMPLETED",
                "Supplicant PAE state=AUTHENTICATED",
                "suppPortStatus=Authorized",
                "EAP state=SUCCESS",
                "methodState=DONE",
                "decision=COND_SUCC",
            ])
        if name == "status":
            self.status_calls += 1
            lines = [f"wpa_state={self.state}", "address=02:11:22:33:44:55"]
            if self.state == "COMPLETED" and self.selected is not None:
                ssid = self.networks[self.selected].get("ssid", "").strip('"')
                lines += [f"id={self.selected}", f"ssid={ssid}", "bssid=aa:bb:cc:dd:ee:01", "freq=2437", "key_mgmt=WPA2-PSK"]
            return "\n".join(lines)
        if name == "mib":
            return "\n".join([
                "dot1xSuppEapolFramesRx=4",
                "dot1xSuppEapolFramesTx=5",
                "dot1xSuppEapolReqIdFramesRx=1",
                "dot1xSuppSuppControlledPortStatus=Authorized",
                "dot11RSNA4WayHandshakeFailures=0",
            ])
        if name == "scan":
            self.scans += 1
            if self.scans > 1 and self.scan_rows_after_retry is not None:
                self.scan_rows = self.scan_rows_after_retry
            return "OK"
        if name == "scan_results":
            return "\n".join(["bssid / frequency / signal level / flags / ssid", *self.scan_rows])
        if name in ("disconnect",):
            self.state = "DISCONNECTED"
            return "OK"
        if name in ("reconnect", "interworking_select"):
            self.state = self.state_after_select
            return "OK"
        return "UNKNOWN COMMAND"


@pytest.fixture
def fake_system() -> FakeSystem:
    return FakeSystem()


@pytest.fixture
def fast_config(tmp_path: Path) -> WpactlConfig:
    """Config with short timeouts and every file under tmp_path."""
    return WpactlConfig.model_validate(
        {
            "interface": {"name": "wlan0"},
            "supplicant": {
                "config_path": str(tmp_path / "wpa_supplicant.conf"),
                "log_dir": str(tmp_path / "logs"),
                "settle_secs": 0,
                "restart_delay_secs": 0,
            },
            "timeouts": {
                "scan_settle_secs": 0,
                "state_wait_secs": 0.2,
                "hs20_state_wait_secs": 0.2,
                "poll_interval_secs": 0.05,
                "lease_wait_secs": 0.1,
            },
            "credentials": {"base_dir": str(tmp_path / "creds")},
        }
    )


class WpaCliFactory(MockComponentFactory):
    """Mock components, but a real ControlClient talking to a FakeSystem."""

    def __init__(self, config: WpactlConfig, system: FakeSystem):
        super().__init__(config)
        self.system = system

    def control_client(self, interface: str) -> ControlClient:
        return ControlClient(
            interface,
            runner=self.system,
            scan_settle_secs=0,
        )


@pytest.fixture
def orchestrator(fast_config: WpactlConfig, fake_system: FakeSystem) -> ConnectionOrchestrator:
    return ConnectionOrchestrator(fast_config, factory=WpaCliFactory(fast_config, fake_system))
