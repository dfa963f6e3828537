"""Binary structures for key attestation, encoded the WebAuthn way."""

from __future__ import annotations

import hashlib
from typing import Optional

from fido2 import cbor

FLAG_UP = 0x01
FLAG_UV = 0x04
FLAG_AT = 0x40
AAGUID = bytes(16)
ATTESTATION_FORMAT = "packed"

COSE_KTY = {-7: 2}


def build_credential_public_key(public_key: bytes, algorithm: int) -> bytes:
    """Encode the public key as a COSE_Key structure.

    The key bytes travel unmodified under -1 so the relying party can compare
    them with the registered key.
    """
    cose_key = {
        1: COSE_KTY.get(algorithm, 1),
        3: algorithm,
        -1: public_key,
    }
    return cbor.encode(cose_key)


def build_authenticator_data(
    rp_id: str,
    sign_count: int,
    credential_id: Optional[bytes] = None,
    credential_public_key: Optional[bytes] = None,
    user_verified: bool = True,
) -> bytes:
    rp_hash = hashlib.sha256(rp_id.encode("idna")).digest()
    flags = FLAG_UP
    if user_verified:
        flags |= FLAG_UV
    include_attestation = credential_id is not None and credential_public_key is not None
    if include_attestation:
        flags |= FLAG_AT

    data = bytearray()
    data.extend(rp_hash)
    data.append(flags)
    data.extend(sign_count.to_bytes(4, "big"))

    if include_attestation:
        data.extend(AAGUID)
        data.extend(len(credential_id).to_bytes(2, "big"))
        data.extend(credential_id)
        data.extend(credential_public_key)

    return bytes(data)


def attestation_payload(auth_data: bytes, public_key: bytes) -> bytes:
    """Bytes covered by the self-attestation signature."""
    return auth_data + hashlib.sha256(public_key).digest()


def build_attestation_object(auth_data: bytes, algorithm: int, signature: bytes) -> bytes:
    return cbor.encode(
        {
            "fmt": ATTESTATION_FORMAT,
            "authData": auth_data,
            "attStmt": {"alg": algorithm, "sig": signature},
        }
    )


def build_certificate_chain(public_key: bytes, algorithm: int) -> bytes:
    # Self attestation: the chain holds only the attested key itself.
    return cbor.encode([build_credential_public_key(public_key, algorithm)])
