from __future__ import annotations

import pytest

from passport.crypto import COSE_ES256, SignatureSuite
from passport.models import b64url_decode, b64url_encode
from rp_server.app import create_app


@pytest.fixture
def client(rp_settings, rp_service):
    app = create_app(rp_settings, service=rp_service)
    app.config["TESTING"] = True
    return app.test_client()


def test_health(client):
    assert client.get("/health").get_json() == {"status": "ok"}


def test_account_device_challenge_flow(client):
    created = client.post("/accounts", json={"username": "alice"})
    assert created.status_code == 201
    user_id = created.get_json()["data"]["user_id"]

    suite = SignatureSuite(COSE_ES256)
    keypair = suite.generate_keypair()
    registered = client.post(
        f"/accounts/{user_id}/devices",
        json={
            "device_id": "laptop",
            "public_key": b64url_encode(keypair.public_key),
            "algorithm": COSE_ES256,
            "attestation": {"included": False, "retry_status": "not_supported"},
        },
    )
    assert registered.status_code == 201

    accounts = client.get("/devices/laptop/accounts").get_json()["data"]["accounts"]
    assert [a["username"] for a in accounts] == ["alice"]
    assert accounts[0]["devices"][0]["attestation"]["retry_status"] == "not_supported"

    challenge = client.post(
        f"/accounts/{user_id}/challenge", json={"device_id": "laptop"}
    ).get_json()["data"]["challenge"]
    signature = suite.sign(keypair.private_key, b64url_decode(challenge))
    verified = client.post(
        f"/accounts/{user_id}/verify",
        json={"device_id": "laptop", "signature": b64url_encode(signature)},
    )
    assert verified.get_json() == {"success": True, "message": None, "data": {"verified": True}}

    replay = client.post(
        f"/accounts/{user_id}/verify",
        json={"device_id": "laptop", "signature": b64url_encode(signature)},
    )
    assert replay.status_code == 400
    assert replay.get_json()["success"] is False

    assert client.delete(f"/accounts/{user_id}/devices/laptop").status_code == 200
    assert client.get(f"/accounts/{user_id}").get_json()["data"]["devices"] == []
    assert client.delete(f"/accounts/{user_id}").status_code == 200
    assert client.get(f"/accounts/{user_id}").status_code == 404


def test_lookup_and_credentials(client):
    client.post("/accounts", json={"username": "alice", "password": "s3cret"})

    found = client.get("/accounts/by-name/alice").get_json()
    assert found["success"] and found["data"]["user_id"]
    assert client.get("/accounts/by-name/bob").status_code == 404

    valid = client.post("/credentials/validate", json={"username": "alice", "password": "s3cret"})
    assert valid.get_json()["data"]["valid"] is True


def test_invalid_requests(client):
    assert client.post("/accounts", json={}).status_code == 400
    client.post("/accounts", json={"username": "alice"})
    duplicate = client.post("/accounts", json={"username": "alice"})
    assert duplicate.status_code == 409
    assert duplicate.get_json()["message"] == "Username already registered"

    user_id = client.get("/accounts/by-name/alice").get_json()["data"]["user_id"]
    bad_key = client.post(
        f"/accounts/{user_id}/devices",
        json={"device_id": "laptop", "public_key": "!!!", "algorithm": -7},
    )
    assert bad_key.status_code == 400
    assert client.post(f"/accounts/{user_id}/challenge", json={}).status_code == 400
