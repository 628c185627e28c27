"""
wpa_cli reply parsing and value encoding.

Every token the control interface speaks lives here: the OK/FAIL replies,
the table headers of `scan_results` and `list_networks`, key=value status
blocks and how string values are quoted for `set_network`.
"""

from __future__ import annotations

import re

from ...domain.models import (
    ConnectionState,
    ConnectionStatus,
    EapAuth,
    EapDiagnostics,
    MacPolicy,
    NetworkAuth,
    OpenAuth,
    PskAuth,
    SavedNetwork,
    ScannedNetwork,
    TlsAuth,
)
from ..mac.policy_engine import mac_mode_to_network_value

OK = "OK"
FAIL_BUSY = "FAIL-BUSY"

SCAN_HEADER_PREFIX = "bssid /"
NETWORKS_HEADER_PREFIX = "network id /"

_HEX_PSK_RE = re.compile(r"^[0-9A-Fa-f]{64}$")
_ESCAPE_RE = re.compile(r"\\(x[0-9a-fA-F]{2}|[\\\"nrte])")
_SIMPLE_ESCAPES = {"\\": "\\", '"': '"', "n": "\n", "r": "\r", "t": "\t", "e": "\x1b"}


def reply_lines(output: str) -> list[str]:
    return [line.strip() for line in output.strip().splitlines() if line.strip()]


def is_ok(output: str) -> bool:
    return OK in reply_lines(output)


def is_busy(output: str) -> bool:
    return FAIL_BUSY in reply_lines(output)


def quote(value: str) -> str:
    """Quote a string value for set_network."""
    if any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in value):
        raise ValueError("value must not contain control characters")
    return f'"{value}"'


def encode_ssid(ssid: str) -> str:
    """Quoted SSID, or unquoted hex when it is not printable ASCII."""
    if ssid.isascii() and ssid.isprintable():
        return quote(ssid)
    return ssid.encode("utf-8").hex()


def decode_ssid(raw: str) -> str:
    r"""Undo the printf-style escaping (`\xNN`, `\\`, `\"`) wpa_cli applies to SSIDs."""
    if "\\" not in raw:
        return raw
    out = bytearray()
    pos = 0
    for match in _ESCAPE_RE.finditer(raw):
        out.extend(raw[pos:match.start()].encode("utf-8"))
        token = match.group(1)
        if token.startswith("x"):
            out.append(int(token[1:], 16))
        else:
            out.extend(_SIMPLE_ESCAPES[token].encode("utf-8"))
        pos = match.end()
    out.extend(raw[pos:].encode("utf-8"))
    return out.decode("utf-8", errors="replace")


def parse_network_id(output: str) -> int:
    lines = reply_lines(output)
    if not lines or not lines[-1].isdigit():
        raise ValueError(f"unexpected add_network reply: {output.strip()!r}")
    return int(lines[-1])


def parse_key_values(output: str) -> dict[str, str]:
    values: dict[str, str] = {}
    for line in output.splitlines():
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        values[key.strip()] = value.strip()
    return values


def _int_or_none(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def parse_status(output: str) -> ConnectionStatus:
    values = parse_key_values(output)
    return ConnectionStatus(
        wpa_state=ConnectionState.parse(values.get("wpa_state")),
        ssid=decode_ssid(values["ssid"]) if "ssid" in values else None,
        bssid=values.get("bssid"),
        ip_address=values.get("ip_address"),
        frequency=_int_or_none(values.get("freq")),
        key_mgmt=values.get("key_mgmt"),
        address=values.get("address"),
        network_id=_int_or_none(values.get("id")),
    )


def parse_scan_results(output: str) -> list[ScannedNetwork]:
    networks: list[ScannedNetwork] = []
    for line in output.splitlines():
        if not line.strip() or line.startswith(SCAN_HEADER_PREFIX):
            continue
        parts = line.split("\t", 4)
        if len(parts) < 4:
            continue
        bssid, freq, signal, flags = parts[:4]
        level = _int_or_none(signal)
        networks.append(
            ScannedNetwork(
                bssid=bssid.strip(),
                frequency=_int_or_none(freq) or 0,
                signal=level if level is not None else -100,
                flags=flags.strip(),
                ssid=decode_ssid(parts[4]) if len(parts) > 4 else "",
            )
        )
    return networks


def parse_network_list(output: str) -> list[SavedNetwork]:
    networks: list[SavedNetwork] = []
    for line in output.splitlines():
        if not line.strip() or line.startswith(NETWORKS_HEADER_PREFIX):
            continue
        parts = line.split("\t")
        network_id = _int_or_none(parts[0])
        if network_id is None:
            continue
        networks.append(
            SavedNetwork(
                network_id=network_id,
                ssid=decode_ssid(parts[1]) if len(parts) > 1 else "",
                bssid=parts[2] if len(parts) > 2 else "any",
                flags=parts[3] if len(parts) > 3 else "",
            )
        )
    return networks


def parse_eap_diagnostics(status_verbose: str, mib: str) -> EapDiagnostics:
    status = parse_key_values(status_verbose)
    counters = parse_key_values(mib)
    return EapDiagnostics(
        eap_state=status.get("EAP state"),
        decision=status.get("decision"),
        pae_state=status.get("Supplicant PAE state"),
        port_status=status.get("suppPortStatus"),
        method_state=status.get("methodState"),
        eapol_rx=_int_or_none(counters.get("dot1xSuppEapolFramesRx")),
        eapol_tx=_int_or_none(counters.get("dot1xSuppEapolFramesTx")),
        eapol_req_id_rx=_int_or_none(counters.get("dot1xSuppEapolReqIdFramesRx")),
        four_way_handshake_failures=_int_or_none(counters.get("dot11RSNA4WayHandshakeFailures")),
        controlled_port_status=counters.get("dot1xSuppSuppControlledPortStatus"),
    )


def network_fields(
    ssid: str,
    auth: NetworkAuth,
    mac_policy: MacPolicy | None = None,
) -> list[tuple[str, str]]:
    """Ordered (field, value) pairs for set_network."""
    fields = [("ssid", encode_ssid(ssid))]
    if isinstance(auth, OpenAuth):
        fields.append(("key_mgmt", "NONE"))
    elif isinstance(auth, PskAuth):
        fields.append(("key_mgmt", "WPA-PSK"))
        # 64 hex digits is a raw PSK and must stay unquoted
        psk = auth.psk if _HEX_PSK_RE.match(auth.psk) else quote(auth.psk)
        fields.append(("psk", psk))
    elif isinstance(auth, EapAuth):
        fields.append(("key_mgmt", "WPA-EAP"))
        fields.append(("eap", auth.method.value))
        fields.append(("identity", quote(auth.identity)))
        fields.append(("password", quote(auth.password)))
        if auth.method.uses_phase2:
            fields.append(("phase2", quote(f"auth={auth.phase2}")))
    elif isinstance(auth, TlsAuth):
        fields.append(("key_mgmt", "WPA-EAP"))
        fields.append(("eap", "TLS"))
        fields.append(("identity", quote(auth.identity)))
        fields.append(("client_cert", quote(auth.client_cert_path)))
        fields.append(("private_key", quote(auth.private_key_path)))
        if auth.ca_cert_path:
            fields.append(("ca_cert", quote(auth.ca_cert_path)))
        if auth.key_password:
            fields.append(("private_key_passwd", quote(auth.key_password)))
    else:
        raise TypeError(f"unsupported auth type: {type(auth).__name__}")

    if mac_policy is not None:
        fields.append(("mac_addr", mac_mode_to_network_value(mac_policy)))
        if mac_policy.address is not None:
            fields.append(("mac_value", mac_policy.address))
    return fields
