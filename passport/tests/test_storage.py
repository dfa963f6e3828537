from __future__ import annotations

import json

from keyring.backends import fail

from passport.crypto import SignatureSuite
from passport.models import AttestationStatus, KeyCredentialStatus
from passport.storage import KeyringCredentialStore


async def test_create_open_and_sign(store):
    created = await store.create_or_replace("alice")
    assert created.status == KeyCredentialStatus.SUCCESS

    opened = await store.open("alice")
    assert opened.status == KeyCredentialStatus.SUCCESS
    assert opened.credential == created.credential

    public_key = await store.retrieve_public_key(opened.credential)
    signed = await store.sign(opened.credential, b"challenge")
    assert signed.status == KeyCredentialStatus.SUCCESS
    assert SignatureSuite(opened.credential.algorithm).verify(public_key, b"challenge", signed.result)


async def test_replace_invalidates_previous_handle(store):
    first = await store.create_or_replace("alice")
    first_key = await store.retrieve_public_key(first.credential)
    second = await store.create_or_replace("alice")

    assert second.credential.key_id != first.credential.key_id
    assert await store.retrieve_public_key(second.credential) != first_key
    stale = await store.sign(first.credential, b"challenge")
    assert stale.status == KeyCredentialStatus.NOT_FOUND


async def test_open_missing_key(store):
    result = await store.open("nobody")
    assert result.status == KeyCredentialStatus.NOT_FOUND
    assert result.credential is None


async def test_unreadable_key_record_is_not_found(store, fake_keyring):
    created = await store.create_or_replace("alice")
    fake_keyring[("test-service", "alice")] = "not json"

    assert (await store.open("alice")).status == KeyCredentialStatus.NOT_FOUND
    signed = await store.sign(created.credential, b"challenge")
    assert signed.status == KeyCredentialStatus.NOT_FOUND


async def test_delete_is_idempotent(store, fake_keyring):
    await store.create_or_replace("alice")
    await store.delete("alice")
    await store.delete("alice")

    assert ("test-service", "alice") not in fake_keyring
    assert (await store.open("alice")).status == KeyCredentialStatus.NOT_FOUND
    assert "alice" not in store.list_metadata()


async def test_index_holds_no_key_material(store, temp_settings):
    await store.create_or_replace("alice")
    index = json.loads(open(temp_settings.key_index_path).read())
    assert set(index["alice"]) == {"key_id", "algorithm", "last_used"}


async def test_declined_verification_reports_cancel(temp_settings, fake_keyring, declining_verifier):
    store = KeyringCredentialStore(temp_settings, user_verifier=declining_verifier)
    result = await store.create_or_replace("alice")
    assert result.status == KeyCredentialStatus.USER_CANCELLED
    assert fake_keyring == {}


async def test_unsupported_backend(store, monkeypatch):
    monkeypatch.setattr("passport.storage.keyring.get_keyring", lambda: fail.Keyring())
    assert await store.is_supported() is False
    result = await store.create_or_replace("alice")
    assert result.status == KeyCredentialStatus.NOT_FOUND


async def test_attestation_formats(store, temp_settings):
    created = await store.create_or_replace("alice")
    attestation = await store.get_attestation(created.credential)
    assert attestation.status == AttestationStatus.SUCCESS
    assert attestation.attestation_buffer and attestation.certificate_chain_buffer

    temp_settings.attestation_format = "none"
    unsupported = await store.get_attestation(created.credential)
    assert unsupported.status == AttestationStatus.NOT_SUPPORTED


async def test_attestation_for_deleted_key_is_temporary(store):
    created = await store.create_or_replace("alice")
    await store.delete("alice")
    attestation = await store.get_attestation(created.credential)
    assert attestation.status == AttestationStatus.TEMPORARY_FAILURE
