from __future__ import annotations

import cbor2

from passport.attestation import (
    build_attestation_object,
    build_authenticator_data,
    build_certificate_chain,
    build_credential_public_key,
)
from passport.models import Attestation
from rp_server.services import _parse_authenticator_data, verify_attestation


def test_build_credential_public_key_encodes_cose():
    encoded = build_credential_public_key(b"public", -7)
    decoded = cbor2.loads(encoded)
    assert decoded[1] == 2  # kty EC2
    assert decoded[3] == -7  # alg
    assert decoded[-1] == b"public"


def test_build_authenticator_data_contains_attested_key():
    auth_data = build_authenticator_data(
        rp_id="localhost",
        sign_count=5,
        credential_id=b"abc",
        credential_public_key=build_credential_public_key(b"public", -7),
        user_verified=True,
    )
    flags = auth_data[32]
    assert flags & 0x01
    assert flags & 0x04
    assert flags & 0x40
    assert int.from_bytes(auth_data[33:37], "big") == 5

    parsed = _parse_authenticator_data(auth_data)
    assert parsed["credential_id"] == b"abc"
    assert parsed["credential_public_key"][-1] == b"public"


def test_build_attestation_object_wraps_statement():
    auth_data = build_authenticator_data(rp_id="localhost", sign_count=0)
    decoded = cbor2.loads(build_attestation_object(auth_data, -7, b"sig"))
    assert decoded["fmt"] == "packed"
    assert decoded["authData"] == auth_data
    assert decoded["attStmt"] == {"alg": -7, "sig": b"sig"}


async def test_store_attestation_verifies_against_registered_key(store):
    created = await store.create_or_replace("alice")
    public_key = await store.retrieve_public_key(created.credential)
    attestation = Attestation.from_result(await store.get_attestation(created.credential))

    assert verify_attestation(attestation, public_key, -7, "localhost")
    assert not verify_attestation(attestation, public_key, -7, "example.com")

    other = await store.create_or_replace("bob")
    other_key = await store.retrieve_public_key(other.credential)
    assert not verify_attestation(attestation, other_key, -7, "localhost")


def test_forged_attestation_is_rejected():
    auth_data = build_authenticator_data(
        rp_id="localhost",
        sign_count=0,
        credential_id=b"id",
        credential_public_key=build_credential_public_key(b"key", -7),
    )
    attestation = Attestation(
        included=True,
        key_buffer=build_attestation_object(auth_data, -7, b"not-a-signature"),
        certificate_chain_buffer=build_certificate_chain(b"key", -7),
    )
    assert not verify_attestation(attestation, b"key", -7, "localhost")
    garbage = Attestation(included=True, key_buffer=b"\xff", certificate_chain_buffer=b"\xff")
    assert not verify_attestation(garbage, b"key", -7, "localhost")
