"""
Credential lookup for certificate based connections.

The orchestrator only needs "credential id -> identity + certificate paths"
and the optional private key password. `FileCredentialStore` reads the layout
written by the credential management tooling:

    <base_dir>/<id>/meta.json
    <base_dir>/<id>/client.crt
    <base_dir>/<id>/client.key
    <base_dir>/<id>/ca.crt          (optional)
    <base_dir>/<id>/.key_password   (optional)
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from pathlib import Path
from typing import Protocol, runtime_checkable

from ...domain.models import StoredCredential

logger = logging.getLogger(__name__)

CREDENTIAL_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

META_FILE = "meta.json"
CLIENT_CERT_FILE = "client.crt"
PRIVATE_KEY_FILE = "client.key"
CA_CERT_FILE = "ca.crt"
KEY_PASSWORD_FILE = ".key_password"


def validate_credential_id(credential_id: str) -> str:
    if not CREDENTIAL_ID_RE.match(credential_id or ""):
        raise ValueError(
            f"Invalid credential id {credential_id!r}: use 1-64 letters, digits, '_' or '-'"
        )
    return credential_id


@runtime_checkable
class CredentialProvider(Protocol):
    async def get(self, credential_id: str) -> StoredCredential | None: ...

    async def get_key_password(self, credential_id: str) -> str | None: ...


class FileCredentialStore:
    """Read-only view of the on-disk credential directory."""

    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir).expanduser()

    def _dir(self, credential_id: str) -> Path:
        return self.base_dir / validate_credential_id(credential_id)

    def _load(self, credential_id: str) -> StoredCredential | None:
        cred_dir = self._dir(credential_id)
        meta_path = cred_dir / META_FILE
        try:
            meta = json.loads(meta_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Unreadable credential metadata %s: %s", meta_path, e)
            return None

        ca_path = cred_dir / CA_CERT_FILE
        has_ca = meta.get("has_ca_cert", ca_path.exists())
        return StoredCredential(
            id=credential_id,
            identity=meta.get("identity", ""),
            client_cert_path=str(cred_dir / CLIENT_CERT_FILE),
            private_key_path=str(cred_dir / PRIVATE_KEY_FILE),
            ca_cert_path=str(ca_path) if has_ca else None,
            description=meta.get("description"),
        )

    def _load_password(self, credential_id: str) -> str | None:
        path = self._dir(credential_id) / KEY_PASSWORD_FILE
        try:
            return path.read_text(encoding="utf-8").rstrip("\r\n") or None
        except FileNotFoundError:
            return None

    async def get(self, credential_id: str) -> StoredCredential | None:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._load, credential_id)

    async def get_key_password(self, credential_id: str) -> str | None:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._load_password, credential_id)


class MockCredentialStore:
    """Dict backed provider for mock mode and tests."""

    def __init__(self):
        self._creds: dict[str, StoredCredential] = {}
        self._passwords: dict[str, str] = {}

    def add(self, credential: StoredCredential, key_password: str | None = None) -> None:
        validate_credential_id(credential.id)
        self._creds[credential.id] = credential
        if key_password:
            self._passwords[credential.id] = key_password

    async def get(self, credential_id: str) -> StoredCredential | None:
        return self._creds.get(validate_credential_id(credential_id))

    async def get_key_password(self, credential_id: str) -> str | None:
        return self._passwords.get(validate_credential_id(credential_id))
