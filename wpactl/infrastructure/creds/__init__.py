"""Credential lookup."""

from .store import (
    CredentialProvider,
    FileCredentialStore,
    MockCredentialStore,
    validate_credential_id,
)

__all__ = [
    "CredentialProvider",
    "FileCredentialStore",
    "MockCredentialStore",
    "validate_credential_id",
]
