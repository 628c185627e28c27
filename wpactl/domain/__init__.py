"""wpactl domain models."""

from .models import (
    MAC_PATTERN,
    ConnectionState,
    ConnectionStatus,
    EapAuth,
    EapDiagnostics,
    EapMethod,
    Hs20ConfigState,
    Hs20Credential,
    MacMode,
    MacPolicy,
    NetworkAuth,
    OpenAuth,
    OperationResult,
    PreassocMacMode,
    PskAuth,
    SavedNetwork,
    ScannedNetwork,
    StateWaitResult,
    StoredCredential,
    TlsAuth,
    TlsCertPaths,
)

__all__ = [
    "MAC_PATTERN",
    "ConnectionState",
    "ConnectionStatus",
    "EapAuth",
    "EapDiagnostics",
    "EapMethod",
    "Hs20ConfigState",
    "Hs20Credential",
    "MacMode",
    "MacPolicy",
    "NetworkAuth",
    "OpenAuth",
    "OperationResult",
    "PreassocMacMode",
    "PskAuth",
    "SavedNetwork",
    "ScannedNetwork",
    "StateWaitResult",
    "StoredCredential",
    "TlsAuth",
    "TlsCertPaths",
]
