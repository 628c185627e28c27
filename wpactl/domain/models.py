"""
Domain models for wpactl.

Pydantic models shared by the infrastructure components, the orchestrator and
the CLI. Everything that crosses a component boundary is one of these.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, Field, field_validator, model_validator

MAC_PATTERN = r"^([0-9A-Fa-f]{2}:){5}[0-9A-Fa-f]{2}$"
MAC_RE = re.compile(MAC_PATTERN)

_HEX_PSK_RE = re.compile(r"^[0-9A-Fa-f]{64}$")


def _reject_control_chars(value: str) -> str:
    if any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in value):
        raise ValueError("value must not contain control characters")
    return value


def quotable_value(value: str) -> str:
    """Reject values that cannot be written inside a double-quoted config string."""
    if '"' in value:
        raise ValueError("value must not contain double quotes")
    return _reject_control_chars(value)


# =============================================================================
# Connection state
# =============================================================================


class ConnectionState(str, Enum):
    """Supplicant connection state as reported by `wpa_state`."""

    DISCONNECTED = "DISCONNECTED"
    INACTIVE = "INACTIVE"
    INTERFACE_DISABLED = "INTERFACE_DISABLED"
    SCANNING = "SCANNING"
    AUTHENTICATING = "AUTHENTICATING"
    ASSOCIATING = "ASSOCIATING"
    ASSOCIATED = "ASSOCIATED"
    FOUR_WAY_HANDSHAKE = "4WAY_HANDSHAKE"
    GROUP_HANDSHAKE = "GROUP_HANDSHAKE"
    COMPLETED = "COMPLETED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: str | None) -> ConnectionState:
        """Map a raw state token to a member, unknown tokens become UNKNOWN."""
        if not value:
            return cls.UNKNOWN
        try:
            return cls(value.strip().upper())
        except ValueError:
            return cls.UNKNOWN


class ConnectionStatus(BaseModel):
    """Snapshot of the supplicant `status` output."""

    wpa_state: ConnectionState = ConnectionState.UNKNOWN
    ssid: str | None = None
    bssid: str | None = None
    ip_address: str | None = None
    frequency: int | None = None
    key_mgmt: str | None = None
    address: str | None = None
    network_id: int | None = None

    @property
    def is_connected(self) -> bool:
        return self.wpa_state == ConnectionState.COMPLETED


class StateWaitResult(BaseModel):
    """Outcome of a bounded wait for a connection state."""

    reached: bool
    status: ConnectionStatus


# =============================================================================
# MAC policy
# =============================================================================


class MacMode(str, Enum):
    """How the link-layer address is chosen for a connection."""

    DEVICE = "device"
    RANDOM = "random"
    PERSISTENT_RANDOM = "persistent-random"
    SPECIFIC = "specific"

    @property
    def is_randomized(self) -> bool:
        return self in (MacMode.RANDOM, MacMode.PERSISTENT_RANDOM)


class PreassocMacMode(str, Enum):
    """Address used while scanning before association."""

    DISABLED = "disabled"
    RANDOM = "random"
    PERSISTENT_RANDOM = "persistent-random"


class MacPolicy(BaseModel):
    """MAC address policy for one connection."""

    mode: MacMode = MacMode.DEVICE
    address: str | None = None
    preassoc_mode: PreassocMacMode | None = None
    rotation_seconds: int | None = Field(default=None, ge=1)

    @field_validator("address")
    @classmethod
    def _normalize_address(cls, v: str | None) -> str | None:
        if v is None:
            return None
        if not MAC_RE.match(v):
            raise ValueError(f"Invalid MAC address: {v!r}")
        return v.lower()

    @model_validator(mode="after")
    def _address_iff_specific(self) -> MacPolicy:
        if self.mode == MacMode.SPECIFIC and self.address is None:
            raise ValueError("address is required when mode is 'specific'")
        if self.mode != MacMode.SPECIFIC and self.address is not None:
            raise ValueError("address is only allowed when mode is 'specific'")
        return self


# =============================================================================
# Authentication
# =============================================================================


class EapMethod(str, Enum):
    """Password based EAP methods."""

    PEAP = "PEAP"
    TTLS = "TTLS"
    PWD = "PWD"

    @property
    def uses_phase2(self) -> bool:
        return self in (EapMethod.PEAP, EapMethod.TTLS)


class OpenAuth(BaseModel):
    """No authentication."""

    kind: str = Field(default="open", frozen=True)


class PskAuth(BaseModel):
    """WPA/WPA2 personal."""

    kind: str = Field(default="psk", frozen=True)
    psk: str

    @field_validator("psk")
    @classmethod
    def _validate_psk(cls, v: str) -> str:
        if _HEX_PSK_RE.match(v):
            return v
        if not 8 <= len(v) <= 63:
            raise ValueError("passphrase must be 8-63 characters or 64 hex digits")
        return _reject_control_chars(v)


class EapAuth(BaseModel):
    """WPA enterprise with a username and password."""

    kind: str = Field(default="eap", frozen=True)
    identity: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    method: EapMethod = EapMethod.PEAP
    phase2: str = "MSCHAPV2"

    @field_validator("identity", "password", "phase2")
    @classmethod
    def _no_control_chars(cls, v: str) -> str:
        return _reject_control_chars(v)


class TlsAuth(BaseModel):
    """WPA enterprise with a client certificate (EAP-TLS)."""

    kind: str = Field(default="tls", frozen=True)
    identity: str = Field(..., min_length=1)
    client_cert_path: str = Field(..., min_length=1)
    private_key_path: str = Field(..., min_length=1)
    ca_cert_path: str | None = None
    key_password: str | None = None

    @field_validator("identity", "client_cert_path", "private_key_path", "ca_cert_path", "key_password")
    @classmethod
    def _no_control_chars(cls, v: str | None) -> str | None:
        return None if v is None else _reject_control_chars(v)


NetworkAuth = Union[OpenAuth, PskAuth, EapAuth, TlsAuth]


class TlsCertPaths(BaseModel):
    """Certificate locations given directly instead of by credential id."""

    client_cert_path: str = Field(..., min_length=1)
    private_key_path: str = Field(..., min_length=1)
    ca_cert_path: str | None = None


# =============================================================================
# Hotspot 2.0
# =============================================================================


class Hs20Credential(BaseModel):
    """Passpoint credential written as a `cred={...}` block."""

    realm: str = Field(..., min_length=1)
    domain: str = Field(..., min_length=1)
    identity: str = Field(..., min_length=1)
    client_cert_path: str = Field(..., min_length=1)
    private_key_path: str = Field(..., min_length=1)
    ca_cert_path: str | None = None
    priority: int | None = Field(default=None, ge=0)

    @field_validator("realm", "domain", "identity", "client_cert_path", "private_key_path", "ca_cert_path")
    @classmethod
    def _quotable(cls, v: str | None) -> str | None:
        return None if v is None else quotable_value(v)


class Hs20ConfigState(BaseModel):
    """Hotspot 2.0 related settings found in the supplicant config file."""

    interworking: bool = False
    auto_interworking: bool = False
    hs20: bool = False
    credential_count: int = 0


class StoredCredential(BaseModel):
    """Certificate bundle resolved from the credential store."""

    id: str
    identity: str
    client_cert_path: str
    private_key_path: str
    ca_cert_path: str | None = None
    description: str | None = None


# =============================================================================
# Scan / network table
# =============================================================================


class ScannedNetwork(BaseModel):
    """One row of `scan_results`."""

    bssid: str
    frequency: int = 0
    signal: int = -100
    flags: str = ""
    ssid: str = ""

    @property
    def is_open(self) -> bool:
        return not any(token in self.flags for token in ("WPA", "WEP", "RSN", "SAE"))

    @property
    def is_5ghz(self) -> bool:
        return self.frequency > 5000


class SavedNetwork(BaseModel):
    """One row of `list_networks`."""

    network_id: int
    ssid: str = ""
    bssid: str = "any"
    flags: str = ""

    @property
    def is_current(self) -> bool:
        return "[CURRENT]" in self.flags

    @property
    def is_disabled(self) -> bool:
        return "[DISABLED]" in self.flags


class EapDiagnostics(BaseModel):
    """802.1X / EAP state pulled from `status verbose` and `mib`."""

    eap_state: str | None = None
    decision: str | None = None
    pae_state: str | None = None
    port_status: str | None = None
    method_state: str | None = None
    eapol_rx: int | None = None
    eapol_tx: int | None = None
    eapol_req_id_rx: int | None = None
    four_way_handshake_failures: int | None = None
    controlled_port_status: str | None = None


# =============================================================================
# Results
# =============================================================================


class OperationResult(BaseModel):
    """Result of one orchestrator operation."""

    success: bool
    status: ConnectionStatus | None = None
    error: str | None = None
    step: str | None = None
    warnings: list[str] = Field(default_factory=list)
    data: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def failure(
        cls,
        error: BaseException | str,
        step: str | None = None,
        status: ConnectionStatus | None = None,
    ) -> OperationResult:
        return cls(success=False, error=str(error), step=step, status=status)

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready dict for front ends."""
        return self.model_dump(mode="json", exclude_none=True)
