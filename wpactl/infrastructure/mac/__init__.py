"""MAC address policy handling."""

from .policy_engine import (
    GLOBAL_MAC_KEYS,
    MacPolicyEngine,
    MockMacPolicyEngine,
    is_valid_mac,
    mac_mode_to_network_value,
    mac_policy_to_global_values,
    normalize_mac,
)

__all__ = [
    "GLOBAL_MAC_KEYS",
    "MacPolicyEngine",
    "MockMacPolicyEngine",
    "is_valid_mac",
    "mac_mode_to_network_value",
    "mac_policy_to_global_values",
    "normalize_mac",
]
