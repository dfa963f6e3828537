"""Signature suites keyed by COSE algorithm identifier.

ES256 keys go through ``cryptography``. ML-DSA keys go through liboqs-python,
which is only loaded once a post-quantum key is actually requested since
importing ``oqs`` locates (or builds) the native liboqs library.
"""

from __future__ import annotations

import logging
from typing import Dict

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec

LOGGER = logging.getLogger(__name__)

COSE_ES256 = -7

COSE_ALG_TO_OQS: Dict[int, str] = {
    -48: "ML-DSA-44",
    -49: "ML-DSA-65",
    -50: "ML-DSA-87",
}

SUPPORTED_ALGORITHMS = (COSE_ES256, *COSE_ALG_TO_OQS)


class KeyPair:
    def __init__(self, public_key: bytes, private_key: bytes, algorithm: int):
        self.public_key = public_key
        self.private_key = private_key
        self.algorithm = algorithm


def _oqs():
    import oqs

    return oqs


class SignatureSuite:
    """Generates keys, signs and verifies for one COSE algorithm.

    Public keys are DER SubjectPublicKeyInfo for ES256 and raw bytes for
    ML-DSA. Private keys are PKCS#8 DER or the raw liboqs secret key.
    """

    def __init__(self, algorithm: int):
        if algorithm not in SUPPORTED_ALGORITHMS:
            raise ValueError(f"Unsupported COSE algorithm: {algorithm}")
        self.algorithm = algorithm
        self.oqs_name = COSE_ALG_TO_OQS.get(algorithm)

    def generate_keypair(self) -> KeyPair:
        if self.oqs_name is None:
            private = ec.generate_private_key(ec.SECP256R1())
            private_key = private.private_bytes(
                encoding=serialization.Encoding.DER,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption(),
            )
            public_key = private.public_key().public_bytes(
                encoding=serialization.Encoding.DER,
                format=serialization.PublicFormat.SubjectPublicKeyInfo,
            )
        else:
            with _oqs().Signature(self.oqs_name) as signer:
                public_key = signer.generate_keypair()
                private_key = signer.export_secret_key()
        LOGGER.debug("Generated keypair for COSE algorithm %s", self.algorithm)
        return KeyPair(public_key, private_key, self.algorithm)

    def sign(self, private_key: bytes, payload: bytes) -> bytes:
        if self.oqs_name is None:
            key = serialization.load_der_private_key(private_key, password=None)
            return key.sign(payload, ec.ECDSA(hashes.SHA256()))
        with _oqs().Signature(self.oqs_name, private_key) as signer:
            return signer.sign(payload)

    def verify(self, public_key: bytes, payload: bytes, signature: bytes) -> bool:
        if self.oqs_name is None:
            try:
                key = serialization.load_der_public_key(public_key)
                key.verify(signature, payload, ec.ECDSA(hashes.SHA256()))
            except (InvalidSignature, ValueError, TypeError):
                return False
            return True
        with _oqs().Signature(self.oqs_name) as verifier:
            return bool(verifier.verify(payload, signature, public_key))
