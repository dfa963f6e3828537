"""Pydantic schemas for request/response payloads.

Byte fields travel as unpadded base64url strings.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from passport.models import (
    Attestation,
    AttestationStatus,
    PassportDevice,
    UserAccount,
    b64url_decode,
    b64url_encode,
)


class RegisterAccountRequest(BaseModel):
    username: str = Field(min_length=1)
    password: Optional[str] = None


class ValidateCredentialsRequest(BaseModel):
    username: str
    password: str


class AttestationPayload(BaseModel):
    included: bool = False
    key_buffer: Optional[str] = None
    certificate_chain_buffer: Optional[str] = None
    retry_status: Optional[AttestationStatus] = None

    def to_attestation(self) -> Attestation:
        return Attestation(
            included=self.included,
            key_buffer=b64url_decode(self.key_buffer) if self.key_buffer else None,
            certificate_chain_buffer=(
                b64url_decode(self.certificate_chain_buffer)
                if self.certificate_chain_buffer
                else None
            ),
            retry_status=self.retry_status,
        )

    @classmethod
    def from_attestation(cls, attestation: Attestation) -> "AttestationPayload":
        return cls(
            included=attestation.included,
            key_buffer=b64url_encode(attestation.key_buffer) if attestation.key_buffer else None,
            certificate_chain_buffer=(
                b64url_encode(attestation.certificate_chain_buffer)
                if attestation.certificate_chain_buffer
                else None
            ),
            retry_status=attestation.retry_status,
        )


class RegisterDeviceRequest(BaseModel):
    device_id: str = Field(min_length=1)
    public_key: str
    algorithm: int
    attestation: Optional[AttestationPayload] = None


class ChallengeRequest(BaseModel):
    device_id: str = Field(min_length=1)


class VerifyChallengeRequest(BaseModel):
    device_id: str
    signature: str


class DevicePayload(BaseModel):
    device_id: str
    public_key: str
    algorithm: int
    attestation: Optional[AttestationPayload] = None

    @classmethod
    def from_device(cls, device: PassportDevice) -> "DevicePayload":
        return cls(
            device_id=device.device_id,
            public_key=b64url_encode(device.public_key),
            algorithm=device.algorithm,
            attestation=(
                AttestationPayload.from_attestation(device.attestation)
                if device.attestation
                else None
            ),
        )


class AccountPayload(BaseModel):
    user_id: str
    username: str
    devices: List[DevicePayload] = Field(default_factory=list)

    @classmethod
    def from_account(cls, account: UserAccount) -> "AccountPayload":
        return cls(
            user_id=account.user_id,
            username=account.username,
            devices=[DevicePayload.from_device(device) for device in account.devices],
        )


class RPResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    data: Optional[dict] = None
