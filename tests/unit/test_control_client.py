"""Unit tests for ControlClient."""

import pytest

from wpactl.core.errors import CommandError
from wpactl.domain.models import ConnectionState, MacMode, MacPolicy, OpenAuth, PskAuth
from wpactl.infrastructure.supplicant.control import ControlClient, MockControlClient
from wpactl.tools.proc_utils import CommandResult


@pytest.fixture
def client(fake_system):
    return ControlClient("wlan0", runner=fake_system, scan_settle_secs=0)


class TestConnect:
    """Test the network setup sequence."""

    @pytest.mark.asyncio
    async def test_psk_sequence(self, client, fake_system):
        network_id = await client.connect("Net1", PskAuth(psk="pw123456"))

        assert network_id == 0
        assert fake_system.wpa_cli_commands() == [
            ["add_network"],
            ["set_network", "0", "ssid", '"Net1"'],
            ["set_network", "0", "key_mgmt", "WPA-PSK"],
            ["set_network", "0", "psk", '"pw123456"'],
            ["enable_network", "0"],
            ["select_network", "0"],
            ["save_config"],
        ]
        assert fake_system.ssids() == ["Net1"]

    @pytest.mark.asyncio
    async def test_interface_and_ctrl_dir_passed(self, fake_system):
        client = ControlClient("wlan1", runner=fake_system, ctrl_dir="/run/wpa")
        await client.disconnect()
        assert fake_system.calls[0][:5] == ["wpa_cli", "-i", "wlan1", "-p", "/run/wpa"]

    @pytest.mark.asyncio
    async def test_failed_psk_removes_entry(self, client, fake_system):
        fake_system.fail_fields.add("psk")

        with pytest.raises(CommandError) as exc_info:
            await client.connect("Net1", PskAuth(psk="pw123456"))

        assert exc_info.value.ssid == "Net1"
        assert exc_info.value.step == "set_network psk"
        assert "Net1" in str(exc_info.value)
        assert fake_system.networks == {}
        commands = fake_system.wpa_cli_commands()
        assert ["remove_network", "0"] in commands
        assert ["enable_network", "0"] not in commands

    @pytest.mark.asyncio
    async def test_failed_select_removes_entry(self, client, fake_system):
        fake_system.fail_commands.add("select_network")

        with pytest.raises(CommandError) as exc_info:
            await client.connect("Net1", OpenAuth())

        assert exc_info.value.step == "select_network"
        assert "Net1" not in fake_system.ssids()

    @pytest.mark.asyncio
    async def test_failed_save_config_removes_entry(self, client, fake_system):
        fake_system.fail_commands.add("save_config")

        with pytest.raises(CommandError):
            await client.connect("Net1", OpenAuth())

        assert fake_system.networks == {}

    @pytest.mark.asyncio
    async def test_non_printable_ssid_sent_as_hex(self, client, fake_system):
        await client.connect("caf\u00e9", OpenAuth())
        assert fake_system.networks[0]["ssid"] == "caf\u00e9".encode().hex()

    @pytest.mark.asyncio
    async def test_mac_policy_is_set_per_network(self, client, fake_system):
        await client.connect("Net1", OpenAuth(), MacPolicy(mode=MacMode.RANDOM))
        assert fake_system.networks[0]["mac_addr"] == "1"

    @pytest.mark.asyncio
    async def test_remove_network_saves(self, client, fake_system):
        await client.connect("Net1", OpenAuth())
        saves = fake_system.saves
        await client.remove_network(0)
        assert fake_system.saves == saves + 1
        assert await client.list_networks() == []

    @pytest.mark.asyncio
    async def test_remove_unknown_network_raises(self, client):
        with pytest.raises(CommandError):
            await client.remove_network(42)


class TestWaitForState:
    """Test bounded state polling."""

    @pytest.mark.asyncio
    async def test_reached(self, client, fake_system):
        await client.connect("Net1", OpenAuth())
        result = await client.wait_for_state("COMPLETED", timeout=15, poll_interval=0.01)
        assert result.reached
        assert result.status.ssid == "Net1"

    @pytest.mark.asyncio
    async def test_timeout_below_interval_checks_once(self, client, fake_system):
        result = await client.wait_for_state(ConnectionState.COMPLETED, timeout=0.1, poll_interval=0.5)
        assert not result.reached
        assert result.status.wpa_state == ConnectionState.DISCONNECTED
        assert fake_system.status_calls == 1

    @pytest.mark.asyncio
    async def test_not_reached_returns_last_status(self, client, fake_system):
        fake_system.state = "SCANNING"
        result = await client.wait_for_state(ConnectionState.COMPLETED, timeout=0.05, poll_interval=0.01)
        assert not result.reached
        assert result.status.wpa_state == ConnectionState.SCANNING
        assert fake_system.status_calls >= 2

    @pytest.mark.asyncio
    async def test_non_positive_interval_rejected(self, client):
        with pytest.raises(ValueError):
            await client.wait_for_state(ConnectionState.COMPLETED, timeout=1, poll_interval=0)


class TestScanAndDiagnostics:
    """Test scan and diagnostics commands."""

    @pytest.mark.asyncio
    async def test_scan(self, client, fake_system):
        fake_system.scan_rows = ["aa:bb:cc:dd:ee:01\t2437\t-45\t[ESS]\tOpenNet"]
        networks = await client.scan()
        assert [n.ssid for n in networks] == ["OpenNet"]

    @pytest.mark.asyncio
    async def test_scan_retry_on_empty(self, client, fake_system):
        fake_system.scan_rows_after_retry = ["aa:bb:cc:dd:ee:01\t2437\t-45\t[ESS]\tLate"]
        networks = await client.scan_with_retry(retries=1)
        assert fake_system.scans == 2
        assert [n.ssid for n in networks] == ["Late"]

    @pytest.mark.asyncio
    async def test_scan_rejected(self, client, fake_system):
        fake_system.fail_commands.add("scan")
        with pytest.raises(CommandError):
            await client.scan()

    @pytest.mark.asyncio
    async def test_disconnect_failure(self, client, fake_system):
        fake_system.fail_commands.add("disconnect")
        with pytest.raises(CommandError):
            await client.disconnect()

    @pytest.mark.asyncio
    async def test_eap_diagnostics(self, client):
        diag = await client.eap_diagnostics()
        assert diag.eap_state == "SUCCESS"
        assert diag.decision == "COND_SUCC"
        assert diag.eapol_tx == 5
        assert diag.controlled_port_status == "Authorized"

    @pytest.mark.asyncio
    async def test_unreachable_supplicant(self):
        async def runner(args, *, timeout=10.0, sudo=False):
            return CommandResult(list(args), 255, "", "Failed to connect to non-global ctrl_ifname: wlan0")

        client = ControlClient("wlan0", runner=runner)
        with pytest.raises(CommandError) as exc_info:
            await client.status()
        assert "Failed to connect" in exc_info.value.response


class TestMockControlClient:
    """Test the in-memory control client."""

    @pytest.mark.asyncio
    async def test_connect_and_forget(self):
        client = MockControlClient()
        nid = await client.connect("MockNet", PskAuth(psk="password1"))
        assert (await client.status()).wpa_state == ConnectionState.COMPLETED
        await client.remove_network(nid)
        assert (await client.status()).wpa_state == ConnectionState.DISCONNECTED
        assert await client.list_networks() == []
