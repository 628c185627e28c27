"""Unit tests for LeaseManager."""

from unittest.mock import AsyncMock, patch

import pytest

from wpactl.core.errors import LeaseError
from wpactl.domain.models import MacMode
from wpactl.infrastructure.dhcp.lease_manager import (
    LeaseManager,
    MockLeaseManager,
    parse_default_gateway,
    parse_inet_address,
    parse_link_dns,
)

IP_ADDR_OUTPUT = """3: wlan0: <BROADCAST,MULTICAST,UP,LOWER_UP> mtu 1500 qdisc noqueue state UP
    inet 192.168.4.23/24 brd 192.168.4.255 scope global dynamic wlan0
       valid_lft 86321sec preferred_lft 86321sec
"""


@pytest.fixture
def leases(fake_system, tmp_path):
    def make(**kwargs) -> LeaseManager:
        return LeaseManager(runner=fake_system, log_dir=tmp_path / "logs", **kwargs)

    return make


class FakeProcess:
    """Stand-in for a long running dhclient child."""

    def __init__(self, pid: int = 4242):
        self.pid = pid
        self.returncode = None
        self.terminated = False

    def terminate(self):
        self.terminated = True
        self.returncode = -15

    def kill(self):
        self.returncode = -9

    async def wait(self):
        return self.returncode


def spawn_patch(proc):
    return patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc))


class TestParsers:
    """Test ip/resolvectl output parsing."""

    def test_inet(self):
        assert parse_inet_address(IP_ADDR_OUTPUT) == "192.168.4.23"
        assert parse_inet_address("3: wlan0: <NO-CARRIER> mtu 1500") is None

    def test_gateway(self):
        assert parse_default_gateway("default via 192.168.4.1 proto dhcp metric 600") == "192.168.4.1"
        assert parse_default_gateway("") is None

    def test_link_dns(self):
        assert parse_link_dns("Link 3 (wlan0): 1.1.1.1 fe80::1") == ["1.1.1.1", "fe80::1"]
        assert parse_link_dns("Link 3 (wlan0):") == []
        assert parse_link_dns("") == []


class TestStart:
    """Test dhclient startup."""

    @pytest.mark.asyncio
    async def test_random_mode_uses_no_lease_file(self, fake_system, leases):
        manager = leases()
        proc = FakeProcess()
        with spawn_patch(proc) as spawn:
            state = await manager.start("wlan0", mac_mode=MacMode.RANDOM)

        assert spawn.call_args.args == ("dhclient", "-d", "-v", "-lf", "/dev/null", "wlan0")
        assert state.pid == 4242
        assert state.mac_mode == MacMode.RANDOM
        assert manager.is_running()
        await manager.stop()

    @pytest.mark.asyncio
    async def test_device_mode_keeps_lease_file(self, fake_system, leases):
        manager = leases(sudo=True)
        with spawn_patch(FakeProcess()) as spawn:
            await manager.start("wlan0", mac_mode="device")

        assert spawn.call_args.args == ("sudo", "dhclient", "-d", "-v", "wlan0")
        await manager.stop()

    @pytest.mark.asyncio
    async def test_output_goes_to_log_in_own_session(self, fake_system, leases, tmp_path):
        manager = leases()
        with spawn_patch(FakeProcess()) as spawn:
            await manager.start("wlan0")

        kwargs = spawn.call_args.kwargs
        assert kwargs["start_new_session"] is True
        assert kwargs["stdout"].name == str(tmp_path / "logs" / "dhclient_wlan0.log")
        assert manager.log_path("wlan0").exists()
        await manager.stop()
        assert kwargs["stdout"].closed

    @pytest.mark.asyncio
    async def test_start_releases_leftover_client_first(self, fake_system, leases):
        manager = leases()
        with spawn_patch(FakeProcess()):
            await manager.start("wlan0")

        assert fake_system.calls[:3] == [
            ["dhclient", "-r", "wlan0"],
            ["pkill", "-f", "[d]hclient.*wlan0"],
            ["ip", "addr", "flush", "dev", "wlan0"],
        ]
        await manager.stop()

    @pytest.mark.asyncio
    async def test_missing_binary(self, fake_system, leases):
        manager = leases()
        with patch("asyncio.create_subprocess_exec", AsyncMock(side_effect=FileNotFoundError("dhclient"))):
            with pytest.raises(LeaseError) as exc_info:
                await manager.start("wlan0")
        assert exc_info.value.step == "dhcp"
        assert manager.state is None

    @pytest.mark.asyncio
    async def test_start_replaces_previous(self, fake_system, leases):
        manager = leases(stop_grace_secs=0.1)
        first = FakeProcess(pid=1)
        with spawn_patch(first):
            await manager.start("wlan0")
        with spawn_patch(FakeProcess(pid=2)):
            state = await manager.start("wlan0")

        assert first.terminated
        assert state.pid == 2
        await manager.stop()


class TestWaitForIp:
    """Test lease polling."""

    @pytest.mark.asyncio
    async def test_returns_address(self, fake_system, leases):
        fake_system.reply(["ip", "-4", "addr", "show", "wlan0"], IP_ADDR_OUTPUT)
        manager = leases(configure_dns=False)
        with spawn_patch(FakeProcess()):
            await manager.start("wlan0")

        assert await manager.wait_for_ip(timeout=1, poll_interval=0.01) == "192.168.4.23"
        assert manager.state.ip == "192.168.4.23"
        await manager.stop()

    @pytest.mark.asyncio
    async def test_timeout_returns_none(self, fake_system, leases):
        manager = leases()
        with spawn_patch(FakeProcess()):
            await manager.start("wlan0")

        assert await manager.wait_for_ip(timeout=0.05, poll_interval=0.01) is None
        await manager.stop()

    @pytest.mark.asyncio
    async def test_without_start(self, fake_system, leases):
        assert await leases().wait_for_ip(timeout=1) is None


class TestDns:
    """Test the systemd-resolved fallback."""

    @pytest.mark.asyncio
    async def test_gateway_used_when_link_has_no_dns(self, fake_system, leases):
        fake_system.reply(["systemctl", "is-active", "systemd-resolved"], "active\n")
        fake_system.reply(["resolvectl", "dns", "wlan0"], "Link 3 (wlan0):\n")
        fake_system.reply(["ip", "route", "show", "default"], "default via 192.168.4.1 dev wlan0\n")
        manager = leases()

        assert await manager.reconcile_dns("wlan0") == "192.168.4.1"
        assert ["resolvectl", "dns", "wlan0", "192.168.4.1"] in fake_system.calls

    @pytest.mark.asyncio
    async def test_existing_dns_left_alone(self, fake_system, leases):
        fake_system.reply(["systemctl", "is-active", "systemd-resolved"], "active\n")
        fake_system.reply(["resolvectl", "dns", "wlan0"], "Link 3 (wlan0): 9.9.9.9\n")
        manager = leases()

        assert await manager.reconcile_dns("wlan0") is None
        assert not any(len(c) == 4 and c[:2] == ["resolvectl", "dns"] for c in fake_system.calls)

    @pytest.mark.asyncio
    async def test_resolved_inactive(self, fake_system, leases):
        fake_system.reply(["systemctl", "is-active", "systemd-resolved"], "inactive\n", 3)
        assert await leases().reconcile_dns("wlan0") is None

    @pytest.mark.asyncio
    async def test_stop_reverts_dns(self, fake_system, leases):
        fake_system.reply(["ip", "-4", "addr", "show", "wlan0"], IP_ADDR_OUTPUT)
        fake_system.reply(["systemctl", "is-active", "systemd-resolved"], "active\n")
        fake_system.reply(["ip", "route", "show", "default"], "default via 192.168.4.1 dev wlan0\n")
        manager = leases()
        with spawn_patch(FakeProcess()):
            await manager.start("wlan0")
        await manager.wait_for_ip(timeout=1, poll_interval=0.01)
        assert manager.state.dns_server == "192.168.4.1"

        await manager.stop()

        assert ["resolvectl", "revert", "wlan0"] in fake_system.calls


class TestStop:
    """Test teardown."""

    @pytest.mark.asyncio
    async def test_stop_without_state_cleans_interface(self, fake_system, leases):
        await leases().stop("wlan0")
        assert fake_system.calls == [
            ["dhclient", "-r", "wlan0"],
            ["pkill", "-f", "[d]hclient.*wlan0"],
            ["ip", "addr", "flush", "dev", "wlan0"],
        ]

    @pytest.mark.asyncio
    async def test_stop_without_anything_is_noop(self, fake_system, leases):
        await leases().stop()
        assert fake_system.calls == []

    @pytest.mark.asyncio
    async def test_stop_continues_when_commands_raise(self):
        calls = []

        async def runner(args, *, timeout=10.0, sudo=False):
            calls.append(list(args))
            raise OSError("boom")

        await LeaseManager(runner=runner).stop("wlan0")
        assert len(calls) == 3


class TestMockLeaseManager:
    """Test the fixed-address manager."""

    @pytest.mark.asyncio
    async def test_cycle(self):
        manager = MockLeaseManager()
        await manager.start("wlan0", "random")
        assert await manager.wait_for_ip(timeout=1) == "192.168.1.100"
        assert manager.started == [("wlan0", MacMode.RANDOM)]
        await manager.stop()
        assert manager.state is None
        assert manager.stopped[-1] == "wlan0"

    @pytest.mark.asyncio
    async def test_no_lease(self):
        manager = MockLeaseManager(ip=None)
        await manager.start("wlan0")
        assert await manager.wait_for_ip(timeout=1) is None
