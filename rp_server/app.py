"""Flask application exposing the relying party over HTTP."""

from __future__ import annotations

import binascii
import logging

from flask import Flask, abort, jsonify, request
from flask_cors import CORS
from pydantic import ValidationError

from passport.errors import DuplicateUsernameError
from passport.models import b64url_decode, b64url_encode

from .config import RPSettings
from .schemas import (
    AccountPayload,
    ChallengeRequest,
    RegisterAccountRequest,
    RegisterDeviceRequest,
    RPResponse,
    ValidateCredentialsRequest,
    VerifyChallengeRequest,
)
from .services import RelyingPartyService

LOGGER = logging.getLogger(__name__)


def _ok(data: dict | None = None):
    return jsonify(RPResponse(success=True, data=data).model_dump(mode="json"))


def _fail(message: str, status: int):
    return jsonify(RPResponse(success=False, message=message).model_dump(mode="json")), status


def create_app(
    settings: RPSettings | None = None,
    service: RelyingPartyService | None = None,
) -> Flask:
    settings = settings or RPSettings()
    service = service or RelyingPartyService(settings)

    app = Flask(__name__)
    app.extensions["relying_party"] = service
    CORS(app)
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    logging.getLogger("werkzeug").setLevel(logging.WARNING)

    @app.post("/accounts")
    def register_account():
        payload = RegisterAccountRequest.model_validate(request.get_json() or {})
        user_id = service.register(payload.username, payload.password)
        return _ok({"user_id": user_id}), 201

    @app.get("/accounts/by-name/<username>")
    def lookup_user_id(username: str):
        user_id = service.lookup_user_id(username)
        if user_id is None:
            abort(404, "Unknown user")
        return _ok({"user_id": user_id})

    @app.get("/accounts/<user_id>")
    def get_account(user_id: str):
        account = service.get_account(user_id)
        if account is None:
            abort(404, "Unknown user")
        return _ok(AccountPayload.from_account(account).model_dump(mode="json"))

    @app.delete("/accounts/<user_id>")
    def remove_user(user_id: str):
        service.remove_user(user_id)
        return _ok()

    @app.post("/accounts/<user_id>/devices")
    def register_device(user_id: str):
        payload = RegisterDeviceRequest.model_validate(request.get_json() or {})
        registered = service.register_device(
            user_id,
            payload.device_id,
            b64url_decode(payload.public_key),
            payload.algorithm,
            payload.attestation.to_attestation() if payload.attestation else None,
        )
        if not registered:
            return _fail("Registration rejected", 400)
        return _ok(), 201

    @app.delete("/accounts/<user_id>/devices/<device_id>")
    def remove_device(user_id: str, device_id: str):
        service.remove_device(user_id, device_id)
        return _ok()

    @app.get("/devices/<device_id>/accounts")
    def accounts_for_device(device_id: str):
        accounts = service.accounts_for_device(device_id)
        return _ok(
            {"accounts": [AccountPayload.from_account(a).model_dump(mode="json") for a in accounts]}
        )

    @app.post("/accounts/<user_id>/challenge")
    def request_challenge(user_id: str):
        payload = ChallengeRequest.model_validate(request.get_json() or {})
        challenge = service.request_challenge(user_id, payload.device_id)
        return _ok({"challenge": b64url_encode(challenge)})

    @app.post("/accounts/<user_id>/verify")
    def verify_challenge(user_id: str):
        payload = VerifyChallengeRequest.model_validate(request.get_json() or {})
        verified = service.verify_signed_challenge(
            user_id, payload.device_id, b64url_decode(payload.signature)
        )
        if not verified:
            return _fail("Verification failed", 400)
        return _ok({"verified": True})

    @app.post("/credentials/validate")
    def validate_credentials():
        payload = ValidateCredentialsRequest.model_validate(request.get_json() or {})
        valid = service.validate_credentials(payload.username, payload.password)
        return _ok({"valid": valid})

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        return _fail(f"Invalid request: {error.error_count()} error(s)", 400)

    @app.errorhandler(binascii.Error)
    def handle_bad_encoding(_error):
        return _fail("Invalid base64url value", 400)

    @app.errorhandler(DuplicateUsernameError)
    def handle_duplicate(_error):
        return _fail("Username already registered", 409)

    @app.errorhandler(400)
    def handle_bad_request(error):
        return _fail(getattr(error, "description", "Bad Request"), 400)

    @app.errorhandler(404)
    def handle_not_found(error):
        return _fail(getattr(error, "description", "Not Found"), 404)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


if __name__ == "__main__":
    create_app().run(debug=True)
