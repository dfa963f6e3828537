"""Passport: per-device keys guarded by local user verification."""

from .config import PassportSettings
from .models import (
    Attestation,
    AttestationStatus,
    AuthenticationResult,
    AuthenticationStatus,
    EnrollResult,
    PassportDevice,
    UserAccount,
)
from .relying_party import LocalRelyingParty, RelyingParty, RelyingPartyUnavailable
from .service import PassportManager
from .storage import CredentialStoreError, KeyringCredentialStore
from .touch import NoopVerifier, PromptVerifier, TouchIDVerifier

__all__ = [
    "Attestation",
    "AttestationStatus",
    "AuthenticationResult",
    "AuthenticationStatus",
    "CredentialStoreError",
    "EnrollResult",
    "KeyringCredentialStore",
    "LocalRelyingParty",
    "NoopVerifier",
    "PassportDevice",
    "PassportManager",
    "PassportSettings",
    "PromptVerifier",
    "RelyingParty",
    "RelyingPartyUnavailable",
    "TouchIDVerifier",
    "UserAccount",
]
