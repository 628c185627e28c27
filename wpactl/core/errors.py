"""
wpactl error hierarchy.

Infrastructure components raise these; the orchestrator converts them into
failed OperationResult objects at its boundary. Each error carries the name of
the step that failed so callers can report where a request stopped.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..domain.models import ConnectionStatus


class WpactlError(Exception):
    """Base class for all wpactl failures."""

    step: str | None = None


class StartupError(WpactlError):
    """wpa_supplicant could not be brought up for an interface."""

    step = "start_supplicant"

    def __init__(self, interface: str, reason: str, log_tail: list[str] | None = None):
        self.interface = interface
        self.reason = reason
        self.log_tail = list(log_tail or [])
        super().__init__(f"wpa_supplicant failed to start on {interface}: {reason}")


class CommandError(WpactlError):
    """A control command was rejected or could not be delivered."""

    def __init__(
        self,
        command: str,
        response: str = "",
        ssid: str | None = None,
        step: str | None = None,
    ):
        self.command = command
        self.response = response
        self.ssid = ssid
        self.step = step or command
        message = f"{self.step} failed"
        if ssid is not None:
            message += f" for SSID '{ssid}'"
        if response:
            message += f": {response}"
        super().__init__(message)


class StateTimeoutError(WpactlError):
    """The supplicant did not reach the wanted state within the time budget."""

    step = "wait_for_state"

    def __init__(
        self,
        target: str,
        timeout: float,
        status: ConnectionStatus | None = None,
        context: str | None = None,
    ):
        self.target = target
        self.timeout = timeout
        self.status = status
        message = f"{target} not reached within {timeout:g}s"
        if context:
            message += f" for {context}"
        if status is not None:
            message += f" (last state {status.wpa_state.value})"
        super().__init__(message)


class LeaseError(WpactlError):
    """The DHCP client could not be run."""

    step = "dhcp"


class LeaseTimeoutError(LeaseError):
    """No address was leased within the time budget."""

    def __init__(self, interface: str, timeout: float):
        self.interface = interface
        self.timeout = timeout
        super().__init__(f"No IP address on {interface} within {timeout:g}s")


class ConfigWriteError(WpactlError):
    """The supplicant config file could not be replaced atomically."""

    step = "write_config"

    def __init__(self, path: Path | str, reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Failed to write {self.path}: {reason}")


class MacChangeError(WpactlError):
    """Changing an interface MAC address failed."""

    step = "set_mac"

    def __init__(self, interface: str, address: str, reason: str):
        self.interface = interface
        self.address = address
        self.reason = reason
        super().__init__(f"Failed to set {interface} MAC to {address}: {reason}")
