"""
Lease Manager - runs dhclient for a connected interface.

dhclient runs in the foreground in its own session with its output in a
per-interface log file, so it outlives the command that started it and can
still be stopped deterministically by PID or by name. When
systemd-resolved is active and the lease did not provide a DNS server, the
default gateway is set as the link's resolver and reverted on stop.

Usage:
    leases = LeaseManager()
    await leases.start("wlan0", mac_mode=MacMode.RANDOM)
    ip = await leases.wait_for_ip(timeout=8.0)
    await leases.stop()
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import IO

from ...core.errors import LeaseError
from ...domain.models import MacMode
from ...tools.polling import poll_until
from ...tools.proc_utils import (
    CommandResult,
    CommandRunner,
    process_pattern,
    run_best_effort,
    run_command,
    terminate_process,
)

logger = logging.getLogger(__name__)

_INET_RE = re.compile(r"\binet\s+(\d{1,3}(?:\.\d{1,3}){3})")
_GATEWAY_RE = re.compile(r"\bvia\s+(\d{1,3}(?:\.\d{1,3}){3})")
_IP_RE = re.compile(r"\b\d{1,3}(?:\.\d{1,3}){3}\b|\b[0-9a-fA-F:]*:[0-9a-fA-F:]+\b")


@dataclass
class LeaseState:
    """The lease currently managed for an interface."""

    interface: str
    pid: int | None = None
    ip: str | None = None
    dns_server: str | None = None
    mac_mode: MacMode | None = None

    def to_dict(self) -> dict:
        return {
            "interface": self.interface,
            "pid": self.pid,
            "ip": self.ip,
            "dns_server": self.dns_server,
            "mac_mode": self.mac_mode.value if self.mac_mode else None,
        }


def parse_inet_address(output: str) -> str | None:
    match = _INET_RE.search(output)
    return match.group(1) if match else None


def parse_default_gateway(output: str) -> str | None:
    match = _GATEWAY_RE.search(output)
    return match.group(1) if match else None


def parse_link_dns(output: str) -> list[str]:
    """Servers from `resolvectl dns <iface>` ("Link 3 (wlan0): 1.1.1.1 ...")."""
    _, sep, rest = output.partition("):")
    if not sep:
        return []
    return _IP_RE.findall(rest)


class LeaseManager:
    """Owns the dhclient process and DNS override for one interface at a time."""

    def __init__(
        self,
        runner: CommandRunner | None = None,
        binary: str = "dhclient",
        configure_dns: bool = True,
        poll_interval: float = 0.5,
        stop_grace_secs: float = 3.0,
        sudo: bool = False,
        command_timeout: float = 10.0,
        log_dir: Path = Path("/tmp"),
    ):
        self._runner = runner or run_command
        self.binary = binary
        self.log_dir = Path(log_dir)
        self.configure_dns = configure_dns
        self.poll_interval = poll_interval
        self.stop_grace_secs = stop_grace_secs
        self.sudo = sudo
        self.command_timeout = command_timeout

        self._process: asyncio.subprocess.Process | None = None
        self._log_fp: IO[str] | None = None
        self._state: LeaseState | None = None

    @property
    def state(self) -> LeaseState | None:
        return self._state

    def log_path(self, interface: str) -> Path:
        return self.log_dir / f"dhclient_{interface}.log"

    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    async def _run(self, args: list[str]) -> CommandResult:
        return await self._runner(args, timeout=self.command_timeout, sudo=self.sudo)

    async def _best_effort(self, args: list[str]) -> CommandResult | None:
        return await run_best_effort(self._runner, args, timeout=self.command_timeout, sudo=self.sudo)

    def _build_command(self, interface: str, mac_mode: MacMode | None) -> list[str]:
        cmd = [self.binary, "-d", "-v"]
        if mac_mode is not None and mac_mode.is_randomized:
            # random modes never persist a lease
            cmd += ["-lf", "/dev/null"]
        cmd.append(interface)
        return ["sudo", *cmd] if self.sudo else cmd

    def _close_log(self) -> None:
        if self._log_fp is not None:
            try:
                self._log_fp.close()
            except OSError as e:
                logger.debug("Closing dhclient log failed: %s", e)
            self._log_fp = None

    async def start(self, interface: str, mac_mode: MacMode | str | None = None) -> LeaseState:
        """Start dhclient on `interface`, replacing any lease managed before."""
        mode = MacMode(mac_mode) if mac_mode is not None else None
        await self.stop(interface)

        cmd = self._build_command(interface, mode)
        log_path = self.log_path(interface)
        logger.info("Starting DHCP on %s%s, log %s", interface, " (no lease file)" if "-lf" in cmd else "", log_path)
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            self._log_fp = open(log_path, "w", encoding="utf-8")
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=self._log_fp,
                stderr=asyncio.subprocess.STDOUT,
                start_new_session=True,
            )
        except OSError as e:
            self._close_log()
            raise LeaseError(f"cannot start {self.binary} on {interface}: {e}") from e

        self._process = proc
        self._state = LeaseState(interface=interface, pid=proc.pid, mac_mode=mode)
        return self._state

    async def current_ip(self, interface: str) -> str | None:
        result = await self._run(["ip", "-4", "addr", "show", interface])
        if not result.ok:
            return None
        return parse_inet_address(result.stdout)

    async def wait_for_ip(self, timeout: float, poll_interval: float | None = None) -> str | None:
        """Poll for an IPv4 address. None means no lease within `timeout`."""
        state = self._state
        if state is None:
            return None

        reached, ip = await poll_until(
            lambda: self.current_ip(state.interface),
            lambda value: value is not None,
            timeout=timeout,
            interval=poll_interval or self.poll_interval,
        )
        if not reached:
            logger.warning("No DHCP lease on %s within %.1fs", state.interface, timeout)
            return None

        state.ip = ip
        logger.info("DHCP lease on %s: %s", state.interface, ip)
        if self.configure_dns:
            try:
                state.dns_server = await self.reconcile_dns(state.interface)
            except Exception as e:
                logger.warning("DNS setup on %s failed: %s", state.interface, e)
        return ip

    # ----------------------------------------------------------------- dns

    async def _resolved_active(self) -> bool:
        result = await self._best_effort(["systemctl", "is-active", "systemd-resolved"])
        return result is not None and result.stdout.strip() == "active"

    async def default_gateway(self, interface: str) -> str | None:
        result = await self._run(["ip", "route", "show", "default", "dev", interface])
        return parse_default_gateway(result.stdout) if result.ok else None

    async def reconcile_dns(self, interface: str) -> str | None:
        """Point the link at its gateway when the lease brought no resolver."""
        if not await self._resolved_active():
            logger.debug("systemd-resolved not active, leaving DNS alone")
            return None
        current = await self._run(["resolvectl", "dns", interface])
        if current.ok and parse_link_dns(current.stdout):
            logger.debug("%s already has DNS servers", interface)
            return None
        gateway = await self.default_gateway(interface)
        if gateway is None:
            logger.warning("No default gateway on %s, cannot set DNS", interface)
            return None
        result = await self._run(["resolvectl", "dns", interface, gateway])
        if not result.ok:
            logger.warning("resolvectl dns %s %s failed: %s", interface, gateway, result.output)
            return None
        logger.info("DNS for %s set to gateway %s", interface, gateway)
        return gateway

    # ---------------------------------------------------------------- stop

    async def stop(self, interface: str | None = None) -> None:
        """Tear down the lease. Every step runs even when an earlier one fails."""
        state = self._state
        iface = interface or (state.interface if state else None)
        proc = self._process
        self._process = None
        self._state = None
        self._close_log()

        if state is not None and state.dns_server:
            await self._best_effort(["resolvectl", "revert", state.interface])

        if proc is not None:
            try:
                await terminate_process(proc, grace=self.stop_grace_secs)
            except Exception as e:
                logger.warning("Error stopping dhclient pid %s: %s", proc.pid, e)

        if iface is None:
            return
        logger.info("Releasing DHCP on %s", iface)
        await self._best_effort([self.binary, "-r", iface])
        await self._best_effort(["pkill", "-f", process_pattern(self.binary, iface)])
        await self._best_effort(["ip", "addr", "flush", "dev", iface])


class MockLeaseManager(LeaseManager):
    """Hands out a fixed address without running dhclient."""

    def __init__(self, ip: str | None = "192.168.1.100", **kwargs):
        super().__init__(**kwargs)
        self.mock_ip = ip
        self.started: list[tuple[str, MacMode | None]] = []
        self.stopped: list[str | None] = []

    def is_running(self) -> bool:
        return self._state is not None

    async def start(self, interface: str, mac_mode: MacMode | str | None = None) -> LeaseState:
        mode = MacMode(mac_mode) if mac_mode is not None else None
        await self.stop(interface)
        self.started.append((interface, mode))
        self._state = LeaseState(interface=interface, mac_mode=mode)
        return self._state

    async def wait_for_ip(self, timeout: float, poll_interval: float | None = None) -> str | None:
        if self._state is None or self.mock_ip is None:
            return None
        self._state.ip = self.mock_ip
        return self.mock_ip

    async def stop(self, interface: str | None = None) -> None:
        self.stopped.append(interface or (self._state.interface if self._state else None))
        self._state = None
