"""Credential lifecycle manager: enrollment, sign-in and revocation."""

from __future__ import annotations

import json
import logging
import secrets
from typing import Optional

from keyring.errors import KeyringError

from .config import PassportSettings
from .device import get_device_id
from .models import (
    Attestation,
    AttestationStatus,
    AuthenticationResult,
    AuthenticationStatus,
    EnrollResult,
    KeyAttestationResult,
    KeyCredentialStatus,
    KeyHandle,
    UserAccount,
)
from .relying_party import RelyingParty, RelyingPartyUnavailable
from .storage import CredentialStoreError, KeyringCredentialStore, PlatformCredentialStore

LOGGER = logging.getLogger(__name__)

MAX_RE_ENROLLMENTS = 1

STAGE_LABELS = {
    "enroll": "Enroll",
    "authn": "Authenticate",
    "revoke": "Revoke",
    "attest": "Attestation",
}
EVENT_LABELS = {
    ("enroll", "start"): "Creating key",
    ("enroll", "key.failed"): "Key creation did not complete",
    ("enroll", "attestation"): "Attestation collected",
    ("enroll", "register.failed"): "Relying party rejected registration",
    ("enroll", "register.timeout"): "Relying party did not answer, local key kept",
    ("enroll", "rollback"): "Removed local key after failed registration",
    ("enroll", "success"): "Enrollment completed",
    ("authn", "start"): "Processing sign-in",
    ("authn", "key.missing"): "Key missing, re-enrolling",
    ("authn", "done"): "Sign-in finished",
    ("revoke", "device"): "Device registration removed",
    ("revoke", "account"): "Account removed",
    ("revoke", "key.failed"): "Local key could not be deleted",
    ("attest", "start"): "Retrying attestation",
    ("attest", "done"): "Attestation retry finished",
}

_ENROLL_STATUS = {
    KeyCredentialStatus.USER_CANCELLED: EnrollResult.USER_CANCELLED,
    KeyCredentialStatus.NOT_FOUND: EnrollResult.NOT_FOUND,
}

_KEY_STATUS = {
    KeyCredentialStatus.USER_CANCELLED: AuthenticationStatus.USER_CANCELLED,
    KeyCredentialStatus.NOT_FOUND: AuthenticationStatus.KEY_MISSING,
    KeyCredentialStatus.DEVICE_LOCKED: AuthenticationStatus.DEVICE_LOCKED,
    KeyCredentialStatus.UNKNOWN_ERROR: AuthenticationStatus.UNKNOWN_ERROR,
}

_RE_ENROLL_STATUS = {
    EnrollResult.USER_CANCELLED: AuthenticationStatus.USER_CANCELLED,
    EnrollResult.NOT_FOUND: AuthenticationStatus.NOT_CONFIGURED,
    EnrollResult.REGISTRATION_FAILED: AuthenticationStatus.KEY_MISSING,
}


def _truncate(value: str, limit: int = 64) -> str:
    if len(value) <= limit:
        return value
    half = limit // 2
    return f"{value[:half]}…{value[-half:]}"


def _build_payload(req: str, **fields: object) -> dict[str, object]:
    payload: dict[str, object] = {"request_id": req}
    for key, value in fields.items():
        if value is None:
            continue
        if isinstance(value, str):
            payload[key] = _truncate(value)
        else:
            payload[key] = value
    return payload


def _log(stage: str, event: str, req: str, level: int = logging.INFO, **fields: object) -> None:
    stage_label = STAGE_LABELS.get(stage, stage.title())
    event_label = EVENT_LABELS.get((stage, event), event)
    payload = json.dumps(_build_payload(req, **fields), indent=2, sort_keys=True)
    message = f"[Passport: {stage_label}]: {event_label}\n{payload}"
    LOGGER.log(level, message)


class PassportManager:
    """Drives the key lifecycle for accounts on this device.

    The relying party is injected so tests (and other deployments) can supply
    their own. Platform store failures never escape: they come back as
    ``EnrollResult`` or ``AuthenticationResult`` values.
    """

    def __init__(
        self,
        relying_party: RelyingParty,
        credential_store: Optional[PlatformCredentialStore] = None,
        settings: Optional[PassportSettings] = None,
        device_id: Optional[str] = None,
    ) -> None:
        self.settings = settings or PassportSettings()
        self.store = credential_store or KeyringCredentialStore(self.settings)
        self.relying_party = relying_party
        self.device_id = device_id or get_device_id(self.settings.device_id)

    # ------------------------------------------------------------------
    async def check_availability(self) -> bool:
        try:
            supported = await self.store.is_supported()
        except (CredentialStoreError, KeyringError) as exc:
            LOGGER.warning("Platform credential store check failed: %s", exc)
            return False
        if not supported:
            LOGGER.warning(
                "Passport is not set up. Configure a PIN or biometric sign-in to use it."
            )
        return supported

    # ------------------------------------------------------------------
    async def enroll(self, user_id: str, username: str) -> EnrollResult:
        req_id = secrets.token_hex(4)
        _log("enroll", "start", req_id, user=username, user_id=user_id, device_id=self.device_id)
        try:
            created = await self.store.create_or_replace(username)
            if created.status != KeyCredentialStatus.SUCCESS or created.credential is None:
                result = _ENROLL_STATUS.get(created.status, EnrollResult.NOT_FOUND)
                _log(
                    "enroll",
                    "key.failed",
                    req_id,
                    user=username,
                    status=created.status.value,
                    level=logging.WARNING,
                )
                return result
            handle = created.credential
            public_key = await self.store.retrieve_public_key(handle)
        except (CredentialStoreError, KeyringError) as exc:
            LOGGER.error("Key creation for %s failed: %s", username, exc)
            return EnrollResult.NOT_FOUND

        attestation = await self._fetch_attestation(handle, req_id)
        try:
            registered = await self._register(user_id, handle, public_key, attestation, req_id)
        except RelyingPartyUnavailable:
            # The registration may still be committed, so the local key stays.
            return EnrollResult.REGISTRATION_FAILED
        if not registered:
            if self.settings.rollback_key_on_registration_failure:
                await self._delete_local_key(username, req_id)
                _log("enroll", "rollback", req_id, user=username)
            return EnrollResult.REGISTRATION_FAILED

        _log(
            "enroll",
            "success",
            req_id,
            user=username,
            user_id=user_id,
            algorithm=handle.algorithm,
            attestation_included=attestation.included,
        )
        return EnrollResult.SUCCESS

    # ------------------------------------------------------------------
    async def authenticate(self, account: UserAccount) -> bool:
        return (await self.sign_in(account)).verified

    async def sign_in(self, account: UserAccount) -> AuthenticationResult:
        """Sign a fresh challenge with this device's key.

        A key reported missing by either ``open`` or ``sign`` is re-enrolled once
        and the attempt repeated; every other failure returns immediately.
        """
        req_id = secrets.token_hex(4)
        _log("authn", "start", req_id, user=account.username, user_id=account.user_id)
        re_enrolled = False
        attempt = 0
        for attempt in range(1, MAX_RE_ENROLLMENTS + 2):
            status = await self._attempt(account)
            if status != AuthenticationStatus.KEY_MISSING or re_enrolled:
                break
            _log("authn", "key.missing", req_id, user=account.username, level=logging.WARNING)
            enrolled = await self.enroll(account.user_id, account.username)
            if enrolled != EnrollResult.SUCCESS:
                status = _RE_ENROLL_STATUS[enrolled]
                break
            re_enrolled = True

        result = AuthenticationResult(status=status, re_enrolled=re_enrolled, attempts=attempt)
        _log(
            "authn",
            "done",
            req_id,
            user=account.username,
            status=result.status.value,
            re_enrolled=result.re_enrolled,
            attempts=result.attempts,
            level=logging.INFO if result.verified else logging.WARNING,
        )
        return result

    async def _attempt(self, account: UserAccount) -> AuthenticationStatus:
        try:
            opened = await self.store.open(account.username)
            if opened.status != KeyCredentialStatus.SUCCESS or opened.credential is None:
                return _KEY_STATUS.get(opened.status, AuthenticationStatus.UNKNOWN_ERROR)
            challenge = await self.relying_party.request_challenge(
                account.user_id, self.device_id
            )
            signed = await self.store.sign(opened.credential, challenge)
            if signed.status != KeyCredentialStatus.SUCCESS or signed.result is None:
                return _KEY_STATUS.get(signed.status, AuthenticationStatus.UNKNOWN_ERROR)
            verified = await self.relying_party.verify_signed_challenge(
                account.user_id, self.device_id, signed.result
            )
        except RelyingPartyUnavailable:
            return AuthenticationStatus.RELYING_PARTY_UNAVAILABLE
        except (CredentialStoreError, KeyringError) as exc:
            LOGGER.error("Platform store failed during sign-in: %s", exc)
            return AuthenticationStatus.UNKNOWN_ERROR
        return AuthenticationStatus.VERIFIED if verified else AuthenticationStatus.REJECTED

    # ------------------------------------------------------------------
    async def revoke_device(self, account: UserAccount, device_id: str) -> Optional[UserAccount]:
        """Drop ``device_id`` from the account and return the refreshed account.

        The local key is removed as well when ``device_id`` is this machine.
        """
        req_id = secrets.token_hex(4)
        await self.relying_party.remove_device(account.user_id, device_id)
        if device_id == self.device_id:
            await self._delete_local_key(account.username, req_id)
        refreshed = await self.relying_party.get_account(account.user_id)
        _log(
            "revoke",
            "device",
            req_id,
            user=account.username,
            device_id=device_id,
            remaining=len(refreshed.devices) if refreshed else 0,
        )
        return refreshed

    async def revoke_account(self, account: UserAccount) -> None:
        req_id = secrets.token_hex(4)
        # Relying party first: a crash in between leaves only an unusable local key.
        await self.relying_party.remove_user(account.user_id)
        await self._delete_local_key(account.username, req_id)
        _log("revoke", "account", req_id, user=account.username, user_id=account.user_id)

    # ------------------------------------------------------------------
    async def retry_attestation(self, account: UserAccount) -> bool:
        """Fetch attestation again for this device's key after a temporary failure."""
        req_id = secrets.token_hex(4)
        _log("attest", "start", req_id, user=account.username, device_id=self.device_id)
        try:
            current = await self.relying_party.get_account(account.user_id)
        except RelyingPartyUnavailable:
            return False
        entry = current.device(self.device_id) if current else None
        if entry is None:
            return False
        if entry.attestation is not None:
            if entry.attestation.included:
                return True
            if not entry.attestation.can_retry:
                return False

        try:
            opened = await self.store.open(account.username)
            if opened.status != KeyCredentialStatus.SUCCESS or opened.credential is None:
                return False
            handle = opened.credential
            public_key = await self.store.retrieve_public_key(handle)
        except (CredentialStoreError, KeyringError) as exc:
            LOGGER.warning("Cannot reopen key for %s: %s", account.username, exc)
            return False
        if public_key != entry.public_key:
            LOGGER.warning("Local key for %s differs from the registered key", account.username)
            return False

        attestation = await self._fetch_attestation(handle, req_id)
        included = False
        if attestation.included:
            try:
                included = await self._register(
                    account.user_id, handle, public_key, attestation, req_id
                )
            except RelyingPartyUnavailable:
                included = False
        _log("attest", "done", req_id, user=account.username, included=included)
        return included

    # Helpers -----------------------------------------------------------
    async def _fetch_attestation(self, handle: KeyHandle, req_id: str) -> Attestation:
        try:
            result = await self.store.get_attestation(handle)
            attestation = Attestation.from_result(result)
        except (CredentialStoreError, KeyringError, ValueError) as exc:
            LOGGER.warning("Attestation failed for %s: %s", handle.username, exc)
            attestation = Attestation.from_result(
                KeyAttestationResult(AttestationStatus.TEMPORARY_FAILURE)
            )
        _log(
            "enroll",
            "attestation",
            req_id,
            user=handle.username,
            included=attestation.included,
            retry_status=attestation.retry_status.value if attestation.retry_status else None,
        )
        return attestation

    async def _register(
        self,
        user_id: str,
        handle: KeyHandle,
        public_key: bytes,
        attestation: Attestation,
        req_id: str,
    ) -> bool:
        """Register this device's key. ``RelyingPartyUnavailable`` propagates."""
        try:
            registered = await self.relying_party.register_device(
                user_id, self.device_id, public_key, handle.algorithm, attestation
            )
        except RelyingPartyUnavailable:
            _log(
                "enroll",
                "register.timeout",
                req_id,
                user=handle.username,
                user_id=user_id,
                level=logging.WARNING,
            )
            raise
        if not registered:
            _log(
                "enroll",
                "register.failed",
                req_id,
                user=handle.username,
                user_id=user_id,
                level=logging.WARNING,
            )
        return registered

    async def _delete_local_key(self, username: str, req_id: str) -> None:
        try:
            await self.store.delete(username)
        except (CredentialStoreError, KeyringError) as exc:
            _log(
                "revoke",
                "key.failed",
                req_id,
                user=username,
                error=str(exc),
                level=logging.WARNING,
            )
