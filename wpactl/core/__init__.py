"""wpactl core - error hierarchy and connection orchestration."""

from .errors import (
    CommandError,
    ConfigWriteError,
    LeaseError,
    LeaseTimeoutError,
    MacChangeError,
    StartupError,
    StateTimeoutError,
    WpactlError,
)

__all__ = [
    "CommandError",
    "ConfigWriteError",
    "LeaseError",
    "LeaseTimeoutError",
    "MacChangeError",
    "StartupError",
    "StateTimeoutError",
    "WpactlError",
]
