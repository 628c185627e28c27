"""
MAC Policy Engine - link-layer address handling for client connections.

Reads the current and permanent hardware address of an interface and changes
it with `ip link`. Also translates a MacPolicy into the values wpa_supplicant
expects, both per network (`mac_addr` in a network block) and globally (the
`mac_addr`/`preassoc_mac_addr`/... settings used by Hotspot 2.0).

Usage:
    engine = MacPolicyEngine()
    await engine.restore_permanent_mac("wlan0")
"""

from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path

from ...core.errors import MacChangeError
from ...domain.models import MAC_RE, MacMode, MacPolicy, PreassocMacMode
from ...tools.proc_utils import CommandResult, CommandRunner, run_command

logger = logging.getLogger(__name__)

SYSFS_NET = Path("/sys/class/net")
DEFAULT_RAND_ADDR_LIFETIME = 60

GLOBAL_MAC_KEYS = (
    "mac_addr",
    "mac_value",
    "preassoc_mac_addr",
    "rand_addr_lifetime",
    "gas_rand_mac_addr",
    "gas_rand_addr_lifetime",
)

_MODE_VALUES = {
    MacMode.DEVICE: "0",
    MacMode.RANDOM: "1",
    MacMode.PERSISTENT_RANDOM: "2",
    MacMode.SPECIFIC: "3",
}

_PREASSOC_VALUES = {
    PreassocMacMode.DISABLED: "0",
    PreassocMacMode.RANDOM: "1",
    PreassocMacMode.PERSISTENT_RANDOM: "2",
}

_PERMADDR_RE = re.compile(r"permaddr\s+(([0-9a-fA-F]{2}:){5}[0-9a-fA-F]{2})")


def is_valid_mac(value: str) -> bool:
    return bool(value) and MAC_RE.match(value) is not None


def normalize_mac(value: str) -> str:
    if not is_valid_mac(value):
        raise ValueError(f"Invalid MAC address: {value!r}")
    return value.lower()


def mac_mode_to_network_value(policy: MacPolicy) -> str:
    """Value for the per-network `mac_addr` field; `specific` also needs `mac_value`."""
    return _MODE_VALUES[policy.mode]


def mac_policy_to_global_values(policy: MacPolicy) -> list[tuple[str, str]]:
    """Ordered global config settings for a MAC policy."""
    mode_value = _MODE_VALUES[policy.mode]
    lifetime = str(policy.rotation_seconds or DEFAULT_RAND_ADDR_LIFETIME)

    settings = [("mac_addr", mode_value)]
    if policy.mode == MacMode.SPECIFIC:
        assert policy.address is not None
        settings.append(("mac_value", policy.address))
    if policy.preassoc_mode is not None:
        settings.append(("preassoc_mac_addr", _PREASSOC_VALUES[policy.preassoc_mode]))
    if policy.mode.is_randomized:
        settings.append(("rand_addr_lifetime", lifetime))

    # GAS/ANQP queries follow the mode, except that a fixed address is never reused
    if policy.mode == MacMode.SPECIFIC:
        settings.append(("gas_rand_mac_addr", "0"))
    else:
        settings.append(("gas_rand_mac_addr", mode_value))
        if policy.mode.is_randomized:
            settings.append(("gas_rand_addr_lifetime", lifetime))
    return settings


class MacPolicyEngine:
    """Reads and changes interface MAC addresses."""

    def __init__(
        self,
        runner: CommandRunner | None = None,
        sysfs_root: Path = SYSFS_NET,
        sudo: bool = False,
        command_timeout: float = 10.0,
    ):
        self._runner = runner or run_command
        self.sysfs_root = Path(sysfs_root)
        self.sudo = sudo
        self.command_timeout = command_timeout

    async def _run(self, args: list[str]) -> CommandResult:
        return await self._runner(args, timeout=self.command_timeout, sudo=self.sudo)

    async def read_current_mac(self, interface: str) -> str:
        path = self.sysfs_root / interface / "address"
        loop = asyncio.get_running_loop()
        raw = await loop.run_in_executor(None, path.read_text)
        return normalize_mac(raw.strip())

    async def read_permanent_mac(self, interface: str) -> str:
        """Burned-in address from `ip link show`, or the current one if not reported."""
        result = await self._run(["ip", "link", "show", interface])
        if result.ok:
            match = _PERMADDR_RE.search(result.stdout)
            if match:
                return match.group(1).lower()
        return await self.read_current_mac(interface)

    async def _link(self, interface: str, mac: str, *args: str) -> None:
        result = await self._run(["ip", "link", "set", interface, *args])
        if not result.ok:
            raise MacChangeError(interface, mac, f"ip link set {' '.join(args)}: {result.output}")

    async def set_mac(self, interface: str, mac: str) -> None:
        """Set the address with the link down; the link is brought back up in every case."""
        mac = normalize_mac(mac)
        logger.info("Setting %s MAC to %s", interface, mac)

        failure: MacChangeError | None = None
        try:
            await self._link(interface, mac, "down")
            await self._link(interface, mac, "address", mac)
        except MacChangeError as e:
            failure = e
        finally:
            up = await self._run(["ip", "link", "set", interface, "up"])

        if failure is not None:
            if not up.ok:
                logger.error("Interface %s did not come back up: %s", interface, up.output)
            raise failure
        if not up.ok:
            raise MacChangeError(interface, mac, f"ip link set up: {up.output}")

    async def restore_permanent_mac(self, interface: str) -> bool:
        """Put the hardware address back. Returns True when a change was made."""
        permanent = await self.read_permanent_mac(interface)
        current = await self.read_current_mac(interface)
        if current == permanent:
            logger.debug("%s already uses its permanent MAC %s", interface, permanent)
            return False
        logger.info("Restoring %s MAC %s -> %s", interface, current, permanent)
        await self.set_mac(interface, permanent)
        return True


class MockMacPolicyEngine(MacPolicyEngine):
    """In-memory MAC engine for mock mode and tests."""

    def __init__(self, macs: dict[str, tuple[str, str]] | None = None):
        super().__init__()
        # interface -> (current, permanent)
        self._current: dict[str, str] = {}
        self._permanent: dict[str, str] = {}
        self.link_up: dict[str, bool] = {}
        self.changes: list[tuple[str, str]] = []
        for iface, (current, permanent) in (macs or {}).items():
            self._current[iface] = normalize_mac(current)
            self._permanent[iface] = normalize_mac(permanent)
            self.link_up[iface] = True

    def _ensure(self, interface: str) -> None:
        if interface not in self._permanent:
            self._permanent[interface] = "02:00:00:00:00:01"
            self._current[interface] = self._permanent[interface]
            self.link_up[interface] = True

    async def read_current_mac(self, interface: str) -> str:
        self._ensure(interface)
        return self._current[interface]

    async def read_permanent_mac(self, interface: str) -> str:
        self._ensure(interface)
        return self._permanent[interface]

    async def set_mac(self, interface: str, mac: str) -> None:
        mac = normalize_mac(mac)
        self._ensure(interface)
        self._current[interface] = mac
        self.link_up[interface] = True
        self.changes.append((interface, mac))
