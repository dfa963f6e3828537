"""Models shared by the Passport client and the relying party."""

from __future__ import annotations

import base64
import json
import secrets
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.b64decode(data + padding, altchars=b"-_", validate=True)


# Platform store results ------------------------------------------------
class KeyCredentialStatus(str, Enum):
    SUCCESS = "success"
    USER_CANCELLED = "user_cancelled"
    NOT_FOUND = "not_found"
    DEVICE_LOCKED = "device_locked"
    UNKNOWN_ERROR = "unknown_error"


class AttestationStatus(str, Enum):
    SUCCESS = "success"
    TEMPORARY_FAILURE = "temporary_failure"
    NOT_SUPPORTED = "not_supported"


@dataclass(frozen=True)
class KeyHandle:
    """Reference to an opened key. Carries no private material."""

    username: str
    key_id: str
    algorithm: int


@dataclass
class KeyRetrievalResult:
    status: KeyCredentialStatus
    credential: Optional[KeyHandle] = None


@dataclass
class KeyOperationResult:
    status: KeyCredentialStatus
    result: Optional[bytes] = None


@dataclass
class KeyAttestationResult:
    status: AttestationStatus
    attestation_buffer: Optional[bytes] = None
    certificate_chain_buffer: Optional[bytes] = None


# Registry records ------------------------------------------------------
class Attestation(BaseModel):
    included: bool = False
    key_buffer: Optional[bytes] = None
    certificate_chain_buffer: Optional[bytes] = None
    retry_status: Optional[AttestationStatus] = None

    @model_validator(mode="after")
    def ensure_buffers_present(self) -> "Attestation":
        if self.included:
            if self.key_buffer is None or self.certificate_chain_buffer is None:
                raise ValueError("included attestation requires both buffers")
            if self.retry_status is not None:
                raise ValueError("included attestation cannot carry a retry status")
        return self

    @property
    def can_retry(self) -> bool:
        return self.retry_status == AttestationStatus.TEMPORARY_FAILURE

    @classmethod
    def from_result(cls, result: KeyAttestationResult) -> "Attestation":
        if result.status == AttestationStatus.SUCCESS:
            return cls(
                included=True,
                key_buffer=result.attestation_buffer,
                certificate_chain_buffer=result.certificate_chain_buffer,
            )
        return cls(included=False, retry_status=result.status)


class PassportDevice(BaseModel):
    device_id: str
    public_key: bytes
    algorithm: int
    attestation: Optional[Attestation] = None


class UserAccount(BaseModel):
    user_id: str
    username: str
    devices: List[PassportDevice] = Field(default_factory=list)

    def device(self, device_id: str) -> Optional[PassportDevice]:
        for entry in self.devices:
            if entry.device_id == device_id:
                return entry
        return None


# Manager results -------------------------------------------------------
class EnrollResult(str, Enum):
    SUCCESS = "success"
    USER_CANCELLED = "user_cancelled"
    NOT_FOUND = "not_found"
    REGISTRATION_FAILED = "registration_failed"


class AuthenticationStatus(str, Enum):
    VERIFIED = "verified"
    REJECTED = "rejected"
    USER_CANCELLED = "user_cancelled"
    KEY_MISSING = "key_missing"
    DEVICE_LOCKED = "device_locked"
    UNKNOWN_ERROR = "unknown_error"
    NOT_CONFIGURED = "not_configured"
    RELYING_PARTY_UNAVAILABLE = "relying_party_unavailable"


@dataclass
class AuthenticationResult:
    status: AuthenticationStatus
    re_enrolled: bool = False
    attempts: int = 1

    @property
    def verified(self) -> bool:
        return self.status == AuthenticationStatus.VERIFIED


# Key storage -----------------------------------------------------------
class KeyRecordModel(BaseModel):
    key_id: str
    username: str
    algorithm: int
    public_key: str
    private_key: str
    sign_count: int = 0

    def encode(self) -> str:
        return json.dumps(self.model_dump())

    @classmethod
    def decode(cls, data: str) -> "KeyRecordModel":
        return cls.model_validate_json(data)


@dataclass
class KeyRecord:
    key_id: str
    username: str
    algorithm: int
    public_key: str
    private_key: str
    sign_count: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_model(self) -> KeyRecordModel:
        return KeyRecordModel(
            key_id=self.key_id,
            username=self.username,
            algorithm=self.algorithm,
            public_key=self.public_key,
            private_key=self.private_key,
            sign_count=self.sign_count,
        )

    @classmethod
    def from_model(cls, model: KeyRecordModel) -> "KeyRecord":
        return cls(
            key_id=model.key_id,
            username=model.username,
            algorithm=model.algorithm,
            public_key=model.public_key,
            private_key=model.private_key,
            sign_count=model.sign_count,
        )

    @classmethod
    def new(
        cls,
        username: str,
        algorithm: int,
        public_key: bytes,
        private_key: bytes,
    ) -> "KeyRecord":
        return cls(
            key_id=b64url_encode(secrets.token_bytes(32)),
            username=username,
            algorithm=algorithm,
            public_key=b64url_encode(public_key),
            private_key=b64url_encode(private_key),
        )

    def handle(self) -> KeyHandle:
        return KeyHandle(username=self.username, key_id=self.key_id, algorithm=self.algorithm)
