from __future__ import annotations

import pytest

from passport.crypto import COSE_ES256, SignatureSuite
from passport.errors import DuplicateUsernameError
from passport.models import Attestation, AttestationStatus
from rp_server.challenges import ChallengeCache
from rp_server.services import RelyingPartyService


def _keypair():
    return SignatureSuite(COSE_ES256).generate_keypair()


def _usernames(accounts):
    return [account.username for account in accounts]


def test_register_and_lookup(rp_service):
    user_id = rp_service.register("alice")

    assert rp_service.lookup_user_id("alice") == user_id
    assert rp_service.lookup_user_id("bob") is None
    account = rp_service.get_account(user_id)
    assert account.username == "alice"
    assert account.devices == []
    assert rp_service.get_account("missing") is None


def test_duplicate_username_rejected(rp_service):
    rp_service.register("alice")
    with pytest.raises(DuplicateUsernameError):
        rp_service.register("alice")


def test_accounts_for_device_tracks_live_devices(rp_service):
    alice = rp_service.register("alice")
    bob = rp_service.register("bob")
    carol = rp_service.register("carol")
    key = _keypair().public_key

    assert rp_service.register_device(alice, "laptop", key, COSE_ES256, None)
    assert rp_service.register_device(bob, "laptop", key, COSE_ES256, None)
    assert rp_service.register_device(carol, "phone", key, COSE_ES256, None)
    assert _usernames(rp_service.accounts_for_device("laptop")) == ["alice", "bob"]

    rp_service.remove_device(alice, "laptop")
    assert _usernames(rp_service.accounts_for_device("laptop")) == ["bob"]
    rp_service.remove_device(alice, "laptop")
    rp_service.remove_device("missing-user", "laptop")
    assert _usernames(rp_service.accounts_for_device("laptop")) == ["bob"]
    assert _usernames(rp_service.accounts_for_device("phone")) == ["carol"]


def test_reregistering_device_replaces_key(rp_service):
    user_id = rp_service.register("alice")
    first, second = _keypair(), _keypair()

    rp_service.register_device(user_id, "laptop", first.public_key, COSE_ES256, None)
    rp_service.register_device(user_id, "laptop", second.public_key, COSE_ES256, None)

    account = rp_service.get_account(user_id)
    assert len(account.devices) == 1
    assert account.devices[0].public_key == second.public_key


def test_last_device_removal_leaves_empty_list(rp_service):
    user_id = rp_service.register("alice")
    rp_service.register_device(user_id, "laptop", _keypair().public_key, COSE_ES256, None)
    rp_service.register_device(user_id, "phone", _keypair().public_key, COSE_ES256, None)

    rp_service.remove_device(user_id, "laptop")
    assert [d.device_id for d in rp_service.get_account(user_id).devices] == ["phone"]
    rp_service.remove_device(user_id, "phone")
    assert rp_service.get_account(user_id).devices == []


def test_remove_user_cascades(rp_service):
    user_id = rp_service.register("alice")
    rp_service.register_device(user_id, "laptop", _keypair().public_key, COSE_ES256, None)

    rp_service.remove_user(user_id)
    rp_service.remove_user(user_id)

    assert rp_service.get_account(user_id) is None
    assert rp_service.lookup_user_id("alice") is None
    assert rp_service.accounts_for_device("laptop") == []


def test_register_device_rejections(rp_service):
    user_id = rp_service.register("alice")
    key = _keypair().public_key

    assert not rp_service.register_device("missing", "laptop", key, COSE_ES256, None)
    assert not rp_service.register_device(user_id, "laptop", key, -999, None)
    forged = Attestation(included=True, key_buffer=b"\xa0", certificate_chain_buffer=b"\x80")
    assert not rp_service.register_device(user_id, "laptop", key, COSE_ES256, forged)
    assert rp_service.get_account(user_id).devices == []


def test_attestation_status_round_trips(rp_service):
    user_id = rp_service.register("alice")
    attestation = Attestation(retry_status=AttestationStatus.TEMPORARY_FAILURE)
    rp_service.register_device(user_id, "laptop", _keypair().public_key, COSE_ES256, attestation)

    stored = rp_service.get_account(user_id).devices[0].attestation
    assert stored.included is False
    assert stored.can_retry


def test_validate_credentials(rp_service):
    rp_service.register("alice", "s3cret")
    rp_service.register("bob")

    assert rp_service.validate_credentials("alice", "s3cret")
    assert not rp_service.validate_credentials("alice", "wrong")
    assert not rp_service.validate_credentials("bob", "")
    assert not rp_service.validate_credentials("nobody", "s3cret")


def test_signed_challenge_verification(rp_service):
    user_id = rp_service.register("alice")
    suite = SignatureSuite(COSE_ES256)
    keypair = suite.generate_keypair()
    rp_service.register_device(user_id, "laptop", keypair.public_key, COSE_ES256, None)

    challenge = rp_service.request_challenge(user_id, "laptop")
    assert len(challenge) == 32
    signature = suite.sign(keypair.private_key, challenge)
    assert rp_service.verify_signed_challenge(user_id, "laptop", signature)
    # Consumed by the first submission.
    assert not rp_service.verify_signed_challenge(user_id, "laptop", signature)

    challenge = rp_service.request_challenge(user_id, "laptop")
    signature = suite.sign(keypair.private_key, challenge)
    assert not rp_service.verify_signed_challenge(user_id, "phone", signature)


def test_expired_challenge_rejected(rp_settings):
    now = [1000.0]
    cache = ChallengeCache(ttl=90.0, clock=lambda: now[0])
    service = RelyingPartyService(rp_settings, challenges=cache)
    user_id = service.register("alice")
    suite = SignatureSuite(COSE_ES256)
    keypair = suite.generate_keypair()
    service.register_device(user_id, "laptop", keypair.public_key, COSE_ES256, None)

    challenge = service.request_challenge(user_id, "laptop")
    now[0] += 91
    assert not service.verify_signed_challenge(
        user_id, "laptop", suite.sign(keypair.private_key, challenge)
    )


def test_devices_of_one_account_sign_in_concurrently(rp_service):
    user_id = rp_service.register("alice")
    suite = SignatureSuite(COSE_ES256)
    laptop, phone = suite.generate_keypair(), suite.generate_keypair()
    rp_service.register_device(user_id, "laptop", laptop.public_key, COSE_ES256, None)
    rp_service.register_device(user_id, "phone", phone.public_key, COSE_ES256, None)

    laptop_challenge = rp_service.request_challenge(user_id, "laptop")
    phone_challenge = rp_service.request_challenge(user_id, "phone")

    assert rp_service.verify_signed_challenge(
        user_id, "laptop", suite.sign(laptop.private_key, laptop_challenge)
    )
    assert rp_service.verify_signed_challenge(
        user_id, "phone", suite.sign(phone.private_key, phone_challenge)
    )


def test_challenge_cache_replaces_outstanding_challenge():
    cache = ChallengeCache()
    first = cache.issue("authenticate", "u1", "laptop")
    second = cache.issue("authenticate", "u1", "laptop")
    other = cache.issue("authenticate", "u1", "phone")
    assert first != second
    assert cache.pop("authenticate", "u1", "laptop") == second
    assert cache.pop("authenticate", "u1", "laptop") is None
    assert cache.pop("authenticate", "u1", "phone") == other

    cache.issue("authenticate", "u2", "laptop")
    cache.issue("authenticate", "u2", "phone")
    cache.discard("u2", "laptop")
    assert cache.pop("authenticate", "u2", "laptop") is None
    cache.discard("u2")
    assert cache.pop("authenticate", "u2", "phone") is None
