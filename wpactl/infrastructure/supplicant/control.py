"""
Control Client - issues wpa_cli commands against a running wpa_supplicant.

Each method maps to one control command or a fixed sequence of them. Network
setup is transactional: any step that fails after `add_network` removes the
half-built entry before the error propagates.

Usage:
    client = ControlClient("wlan0")
    network_id = await client.connect("HomeNet", PskAuth(psk="secret123"))
    result = await client.wait_for_state(ConnectionState.COMPLETED, timeout=15)
"""

from __future__ import annotations

import asyncio
import logging

from ...core.errors import CommandError
from ...domain.models import (
    ConnectionState,
    ConnectionStatus,
    EapDiagnostics,
    MacPolicy,
    NetworkAuth,
    OpenAuth,
    SavedNetwork,
    ScannedNetwork,
    StateWaitResult,
)
from ...tools.polling import poll_until
from ...tools.proc_utils import CommandRunner, run_command
from . import protocol

logger = logging.getLogger(__name__)


class ControlClient:
    """Thin async wrapper around `wpa_cli -i <iface>`."""

    def __init__(
        self,
        interface: str = "wlan0",
        runner: CommandRunner | None = None,
        cli_binary: str = "wpa_cli",
        ctrl_dir: str | None = None,
        command_timeout: float = 10.0,
        scan_settle_secs: float = 3.0,
        sudo: bool = False,
    ):
        self.interface = interface
        self._runner = runner or run_command
        self.cli_binary = cli_binary
        self.ctrl_dir = ctrl_dir
        self.command_timeout = command_timeout
        self.scan_settle_secs = scan_settle_secs
        self.sudo = sudo

    async def command(self, *args: str, ssid: str | None = None, step: str | None = None) -> str:
        """Run one control command and return its reply text."""
        cmd = [self.cli_binary, "-i", self.interface]
        if self.ctrl_dir:
            cmd += ["-p", self.ctrl_dir]
        cmd += list(args)
        result = await self._runner(cmd, timeout=self.command_timeout, sudo=self.sudo)
        if not result.ok:
            raise CommandError(args[0], response=result.output, ssid=ssid, step=step)
        return result.stdout

    async def _expect_ok(self, *args: str, ssid: str | None = None, step: str | None = None) -> None:
        reply = await self.command(*args, ssid=ssid, step=step)
        if not protocol.is_ok(reply):
            raise CommandError(args[0], response=reply.strip(), ssid=ssid, step=step)

    # ------------------------------------------------------------ networks

    async def connect(
        self,
        ssid: str,
        auth: NetworkAuth | None = None,
        mac_policy: MacPolicy | None = None,
    ) -> int:
        """Create, configure, enable and select a network. Returns its id."""
        fields = protocol.network_fields(ssid, auth or OpenAuth(), mac_policy)

        reply = await self.command("add_network", ssid=ssid)
        try:
            network_id = protocol.parse_network_id(reply)
        except ValueError as e:
            raise CommandError("add_network", response=reply.strip(), ssid=ssid) from e
        logger.info("Configuring network %d for SSID '%s'", network_id, ssid)

        nid = str(network_id)
        try:
            for name, value in fields:
                await self._expect_ok("set_network", nid, name, value, ssid=ssid, step=f"set_network {name}")
            await self._expect_ok("enable_network", nid, ssid=ssid)
            await self._expect_ok("select_network", nid, ssid=ssid)
            await self._expect_ok("save_config", ssid=ssid)
        except Exception:
            await self.discard_network(network_id)
            raise
        return network_id

    async def discard_network(self, network_id: int) -> bool:
        """Remove a network and persist, logging instead of raising."""
        try:
            await self.remove_network(network_id)
        except Exception as e:
            logger.error("Cleanup of network %d failed: %s", network_id, e)
            return False
        logger.info("Removed network %d", network_id)
        return True

    async def remove_network(self, network_id: int) -> None:
        await self._expect_ok("remove_network", str(network_id))
        await self._expect_ok("save_config")

    async def list_networks(self) -> list[SavedNetwork]:
        return protocol.parse_network_list(await self.command("list_networks"))

    async def disconnect(self) -> None:
        await self._expect_ok("disconnect")

    async def reconnect(self) -> None:
        await self._expect_ok("reconnect")

    async def interworking_select(self) -> None:
        await self._expect_ok("interworking_select", "auto")

    # -------------------------------------------------------------- status

    async def status(self) -> ConnectionStatus:
        return protocol.parse_status(await self.command("status"))

    async def _status_or_unknown(self) -> ConnectionStatus:
        try:
            return await self.status()
        except CommandError as e:
            logger.debug("status unavailable on %s: %s", self.interface, e)
            return ConnectionStatus()

    async def wait_for_state(
        self,
        target: ConnectionState | str,
        timeout: float,
        poll_interval: float = 0.5,
    ) -> StateWaitResult:
        """Poll status until `target` is reported or the budget runs out."""
        target = ConnectionState(target)
        reached, status = await poll_until(
            self._status_or_unknown,
            lambda s: s.wpa_state == target,
            timeout=timeout,
            interval=poll_interval,
        )
        if reached:
            logger.info("%s reached %s", self.interface, target.value)
        else:
            logger.warning(
                "%s did not reach %s within %.1fs (state %s)",
                self.interface, target.value, timeout, status.wpa_state.value,
            )
        return StateWaitResult(reached=reached, status=status)

    async def status_verbose(self) -> dict[str, str]:
        return protocol.parse_key_values(await self.command("status", "verbose"))

    async def mib(self) -> dict[str, str]:
        return protocol.parse_key_values(await self.command("mib"))

    async def eap_diagnostics(self) -> EapDiagnostics:
        verbose = await self.command("status", "verbose")
        mib = await self.command("mib")
        return protocol.parse_eap_diagnostics(verbose, mib)

    # ---------------------------------------------------------------- scan

    async def scan(self) -> list[ScannedNetwork]:
        """Trigger a scan, wait for it to settle and return the results."""
        reply = await self.command("scan")
        if protocol.is_busy(reply):
            logger.debug("Scan already running on %s, waiting for it", self.interface)
        elif not protocol.is_ok(reply):
            raise CommandError("scan", response=reply.strip())
        await asyncio.sleep(self.scan_settle_secs)
        return await self.scan_results()

    async def scan_results(self) -> list[ScannedNetwork]:
        return protocol.parse_scan_results(await self.command("scan_results"))

    async def scan_with_retry(self, retries: int = 1) -> list[ScannedNetwork]:
        networks = await self.scan()
        attempt = 0
        while not networks and attempt < retries:
            attempt += 1
            logger.info("Empty scan on %s, retrying (%d/%d)", self.interface, attempt, retries)
            networks = await self.scan()
        return networks


class MockControlClient(ControlClient):
    """In-memory control client for mock mode."""

    def __init__(self, interface: str = "wlan0", **kwargs):
        super().__init__(interface, **kwargs)
        self.networks: dict[int, dict[str, str]] = {}
        self.current: int | None = None
        self.state = ConnectionState.DISCONNECTED
        self.address = "02:00:00:00:00:01"
        self.scan_table = [
            ScannedNetwork(bssid="aa:bb:cc:00:00:01", frequency=2437, signal=-48, flags="[WPA2-PSK-CCMP][ESS]", ssid="MockNet"),
            ScannedNetwork(bssid="aa:bb:cc:00:00:02", frequency=5180, signal=-67, flags="[ESS]", ssid="MockOpen"),
        ]
        self._next_id = 0

    async def connect(self, ssid, auth=None, mac_policy=None) -> int:
        protocol.network_fields(ssid, auth or OpenAuth(), mac_policy)
        network_id = self._next_id
        self._next_id += 1
        self.networks[network_id] = {"ssid": ssid}
        self.current = network_id
        self.state = ConnectionState.COMPLETED
        return network_id

    async def remove_network(self, network_id: int) -> None:
        if self.networks.pop(network_id, None) is None:
            raise CommandError("remove_network", response="FAIL")
        if self.current == network_id:
            self.current = None
            self.state = ConnectionState.DISCONNECTED

    async def list_networks(self) -> list[SavedNetwork]:
        return [
            SavedNetwork(
                network_id=nid,
                ssid=entry["ssid"],
                flags="[CURRENT]" if nid == self.current else "",
            )
            for nid, entry in sorted(self.networks.items())
        ]

    async def disconnect(self) -> None:
        self.state = ConnectionState.DISCONNECTED

    async def reconnect(self) -> None:
        if self.current is not None:
            self.state = ConnectionState.COMPLETED

    async def interworking_select(self) -> None:
        self.state = ConnectionState.COMPLETED

    async def status(self) -> ConnectionStatus:
        ssid = self.networks[self.current]["ssid"] if self.current is not None and self.state == ConnectionState.COMPLETED else None
        return ConnectionStatus(
            wpa_state=self.state,
            ssid=ssid,
            address=self.address,
            network_id=self.current if ssid else None,
        )

    async def eap_diagnostics(self) -> EapDiagnostics:
        return EapDiagnostics(eap_state="SUCCESS", decision="COND_SUCC", pae_state="AUTHENTICATED", port_status="Authorized")

    async def scan(self) -> list[ScannedNetwork]:
        return list(self.scan_table)

    async def scan_results(self) -> list[ScannedNetwork]:
        return list(self.scan_table)
