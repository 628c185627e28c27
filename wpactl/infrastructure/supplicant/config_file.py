"""
Supplicant config file editing.

All Hotspot 2.0 and global MAC changes go through `ConfigMutator`, which reads
the whole file, edits it structurally and replaces it atomically. Blocks such
as `network={...}` and `cred={...}` are located by brace matching, so values
containing braces inside quotes do not confuse the parser. Nothing here
restarts wpa_supplicant; callers restart the session for edits to apply.

Usage:
    mutator = ConfigMutator(Path("/etc/wpa_supplicant/wpa_supplicant.conf"))
    mutator.ensure_global_feature_flags()
    mutator.add_hs20_credential(cred)
"""

from __future__ import annotations

import contextlib
import logging
import os
import re
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from ...core.errors import ConfigWriteError
from ...domain.models import Hs20ConfigState, Hs20Credential, MacPolicy, quotable_value
from ..mac.policy_engine import GLOBAL_MAC_KEYS, mac_policy_to_global_values

logger = logging.getLogger(__name__)

DEFAULT_CTRL_INTERFACE = "/var/run/wpa_supplicant"

HS20_FLAGS = ("interworking", "auto_interworking", "hs20")

_BLOCK_START_RE = re.compile(r"^\s*(\w+)\s*=\s*\{")
_SETTING_RE = re.compile(r"^\s*(\w+)\s*=(.*)$")


def minimal_config(ctrl_interface: str = DEFAULT_CTRL_INTERFACE) -> str:
    return f"ctrl_interface={ctrl_interface}\nupdate_config=1\n"


@dataclass
class Section:
    """A top level setting line or a whole `name={...}` block."""

    lines: list[str] = field(default_factory=list)
    block: str | None = None

    @property
    def key(self) -> str | None:
        if self.block is not None or not self.lines:
            return None
        match = _SETTING_RE.match(self.lines[0])
        return match.group(1) if match else None

    def fields(self) -> dict[str, str]:
        """Unquoted key=value pairs inside a block."""
        values: dict[str, str] = {}
        for line in self.lines[1:]:
            match = _SETTING_RE.match(line)
            if not match:
                continue
            value = match.group(2).strip()
            if len(value) >= 2 and value[0] == value[-1] == '"':
                value = value[1:-1]
            values[match.group(1)] = value
        return values


def _brace_delta(line: str) -> int:
    delta = 0
    in_quotes = False
    for ch in line:
        if ch == '"':
            in_quotes = not in_quotes
        elif in_quotes:
            continue
        elif ch == "#":
            break
        elif ch == "{":
            delta += 1
        elif ch == "}":
            delta -= 1
    return delta


def parse_sections(content: str) -> list[Section]:
    """Split config text into setting lines and blocks. An unclosed block runs to EOF."""
    lines = content.splitlines()
    sections: list[Section] = []
    i = 0
    while i < len(lines):
        match = _BLOCK_START_RE.match(lines[i])
        if not match:
            sections.append(Section([lines[i]]))
            i += 1
            continue
        block = Section(block=match.group(1))
        depth = 0
        while i < len(lines):
            block.lines.append(lines[i])
            depth += _brace_delta(lines[i])
            i += 1
            if depth <= 0:
                break
        sections.append(block)
    return sections


def render_sections(sections: list[Section]) -> str:
    text = "\n".join(line for section in sections for line in section.lines)
    text = re.sub(r"\n{3,}", "\n\n", text).strip("\n")
    return text + "\n"


def _quoted(value: str) -> str:
    return f'"{value}"'


def credential_block(cred: Hs20Credential, key_password: str | None = None) -> Section:
    """Render a cred block. Raises ValueError for a key password that cannot be quoted."""
    if key_password:
        quotable_value(key_password)
    lines = [
        "cred={",
        f"\trealm={_quoted(cred.realm)}",
        f"\tdomain={_quoted(cred.domain)}",
        "\teap=TLS",
        f"\tusername={_quoted(cred.identity)}",
        f"\tclient_cert={_quoted(cred.client_cert_path)}",
        f"\tprivate_key={_quoted(cred.private_key_path)}",
    ]
    if cred.ca_cert_path:
        lines.append(f"\tca_cert={_quoted(cred.ca_cert_path)}")
    if key_password:
        lines.append(f"\tprivate_key_passwd={_quoted(key_password)}")
    if cred.priority is not None:
        lines.append(f"\tpriority={cred.priority}")
    lines.append("}")
    return Section(lines, block="cred")


class ConfigMutator:
    """Read-modify-atomic-write editor for a wpa_supplicant config file."""

    def __init__(self, path: Path, ctrl_interface: str = DEFAULT_CTRL_INTERFACE):
        self.path = Path(path)
        self.ctrl_interface = ctrl_interface

    # ---------------------------------------------------------------- io

    def read(self) -> str:
        try:
            return self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug("%s missing, using minimal config", self.path)
            return minimal_config(self.ctrl_interface)

    def write(self, content: str) -> None:
        """Replace the file atomically with mode 0600."""
        tmp_path: str | None = None
        try:
            fd, tmp_path = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
            )
            with os.fdopen(fd, "w", encoding="utf-8") as fp:
                fp.write(content)
                fp.flush()
                os.fsync(fp.fileno())
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        except OSError as e:
            if tmp_path is not None:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_path)
            raise ConfigWriteError(self.path, str(e)) from e
        logger.debug("Wrote %s (%d bytes)", self.path, len(content))

    def ensure_exists(self) -> bool:
        """Create the minimal config when the file is missing."""
        if self.path.exists():
            return False
        logger.info("Creating minimal supplicant config at %s", self.path)
        self.write(minimal_config(self.ctrl_interface))
        return True

    def _load(self) -> list[Section]:
        return parse_sections(self.read())

    def _store(self, sections: list[Section]) -> None:
        self.write(render_sections(sections))

    # ------------------------------------------------------ global settings

    @staticmethod
    def _find_setting(sections: list[Section], key: str) -> int | None:
        for idx, section in enumerate(sections):
            if section.key == key:
                return idx
        return None

    def _set_settings(self, sections: list[Section], settings: list[tuple[str, str]]) -> bool:
        """Update or insert top level settings; new ones go after ctrl_interface."""
        changed = False
        anchor = self._find_setting(sections, "ctrl_interface")
        for key, value in settings:
            line = f"{key}={value}"
            idx = self._find_setting(sections, key)
            if idx is not None:
                if sections[idx].lines != [line]:
                    sections[idx] = Section([line])
                    changed = True
                anchor = idx
                continue
            insert_at = 0 if anchor is None else anchor + 1
            sections.insert(insert_at, Section([line]))
            anchor = insert_at
            changed = True
        return changed

    @staticmethod
    def _remove_settings(sections: list[Section], keys: tuple[str, ...]) -> bool:
        kept = [s for s in sections if s.key not in keys]
        removed = len(kept) != len(sections)
        sections[:] = kept
        return removed

    def ensure_global_feature_flags(self) -> bool:
        sections = self._load()
        if not self._set_settings(sections, [(flag, "1") for flag in HS20_FLAGS]):
            return False
        self._store(sections)
        logger.info("Enabled interworking/hs20 in %s", self.path)
        return True

    def disable_auto_interworking(self) -> bool:
        sections = self._load()
        if not self._set_settings(sections, [("auto_interworking", "0")]):
            return False
        self._store(sections)
        return True

    def set_global_mac_policy(self, policy: MacPolicy) -> None:
        sections = self._load()
        self._remove_settings(sections, GLOBAL_MAC_KEYS)
        self._set_settings(sections, mac_policy_to_global_values(policy))
        self._store(sections)
        logger.info("Global MAC policy set to %s", policy.mode.value)

    def reset_global_mac_policy(self) -> bool:
        sections = self._load()
        if not self._remove_settings(sections, GLOBAL_MAC_KEYS):
            return False
        self._store(sections)
        logger.info("Global MAC policy reset")
        return True

    # ---------------------------------------------------------- credentials

    @staticmethod
    def _is_cred(section: Section, realm: str | None = None, domain: str | None = None) -> bool:
        if section.block != "cred":
            return False
        if realm is None and domain is None:
            return True
        values = section.fields()
        return values.get("realm") == realm and values.get("domain") == domain

    def add_hs20_credential(self, cred: Hs20Credential, key_password: str | None = None) -> None:
        """Append a credential block, replacing one with the same realm and domain."""
        sections = self._load()
        before = len(sections)
        sections = [s for s in sections if not self._is_cred(s, cred.realm, cred.domain)]
        if len(sections) != before:
            logger.info("Replacing existing credential for %s/%s", cred.realm, cred.domain)
        sections.append(Section([""]))
        sections.append(credential_block(cred, key_password))
        self._store(sections)
        logger.info("Added HS20 credential realm=%s domain=%s", cred.realm, cred.domain)

    def remove_hs20_credential(self, realm: str, domain: str) -> bool:
        sections = self._load()
        kept = [s for s in sections if not self._is_cred(s, realm, domain)]
        if len(kept) == len(sections):
            return False
        self._store(kept)
        logger.info("Removed HS20 credential realm=%s domain=%s", realm, domain)
        return True

    def clear_all_hs20_credentials(self) -> bool:
        """Drop every cred block and the global MAC keys in one write."""
        sections = self._load()
        kept = [s for s in sections if not self._is_cred(s)]
        removed_creds = len(sections) - len(kept)
        removed_mac = self._remove_settings(kept, GLOBAL_MAC_KEYS)
        if not removed_creds and not removed_mac:
            return False
        self._store(kept)
        logger.info("Cleared %d HS20 credential(s)", removed_creds)
        return True

    # ---------------------------------------------------------------- state

    def get_state(self) -> Hs20ConfigState:
        sections = self._load()
        flags = {}
        for section in sections:
            if section.key in HS20_FLAGS:
                flags[section.key] = section.lines[0].split("=", 1)[1].strip() == "1"
        return Hs20ConfigState(
            interworking=flags.get("interworking", False),
            auto_interworking=flags.get("auto_interworking", False),
            hs20=flags.get("hs20", False),
            credential_count=sum(1 for s in sections if s.block == "cred"),
        )

    def is_hs20_active(self) -> bool:
        """True when credentials or global MAC keys are left in the file."""
        sections = self._load()
        return any(s.block == "cred" or s.key in GLOBAL_MAC_KEYS for s in sections)
