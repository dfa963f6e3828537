"""Account/device registry and challenge verification for the relying party."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import secrets
import string
import threading
from io import BytesIO
from typing import List, Optional

import cbor2
from sqlalchemy import select
from sqlalchemy.orm import Session

from passport.attestation import ATTESTATION_FORMAT, FLAG_AT, attestation_payload
from passport.crypto import SignatureSuite
from passport.errors import DuplicateUsernameError
from passport.models import Attestation, AttestationStatus, PassportDevice, UserAccount

from .challenges import ChallengeCache
from .config import RPSettings
from .database import Database
from .models import Account, Device

LOGGER = logging.getLogger(__name__)

ALPHABET = string.ascii_letters + string.digits
CHALLENGE_SCOPE = "authenticate"
PBKDF2_ITERATIONS = 240_000

STAGE_LABELS = {
    "account": "Account",
    "device": "Device",
    "authn": "Authenticate",
}

EVENT_LABELS = {
    ("account", "register"): "Account registered",
    ("account", "duplicate"): "Username already registered",
    ("account", "remove"): "Account removed",
    ("device", "register"): "Device registered",
    ("device", "unknown_user"): "Registration for unknown user",
    ("device", "algorithm"): "Unsupported key algorithm",
    ("device", "attestation.invalid"): "Attestation did not verify",
    ("device", "remove"): "Device removed",
    ("authn", "challenge"): "Issued challenge",
    ("authn", "verify.expired"): "Challenge missing or expired",
    ("authn", "verify.unknown_device"): "No registered device",
    ("authn", "verify.success"): "Signature verified",
    ("authn", "verify.rejected"): "Signature rejected",
}

__all__ = ["DuplicateUsernameError", "RelyingPartyService"]


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


def _log(stage: str, event: str, level: int = logging.INFO, **fields: object) -> None:
    stage_label = STAGE_LABELS.get(stage, stage.title())
    event_label = EVENT_LABELS.get((stage, event), event)
    payload = json.dumps(_build_payload(secrets.token_hex(4), **fields), indent=2, sort_keys=True)
    message = f"[RP Server: {stage_label}]: {event_label}\n{payload}"
    LOGGER.log(level, message)


# Passwords -------------------------------------------------------------
def hash_password(password: str, iterations: int = PBKDF2_ITERATIONS) -> str:
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode(), iterations)
    return f"pbkdf2_sha256${iterations}${salt}${digest.hex()}"


def check_password(password: str, encoded: str) -> bool:
    try:
        _, iterations, salt, expected = encoded.split("$")
    except ValueError:
        return False
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt.encode(), int(iterations)
    )
    return hmac.compare_digest(digest.hex(), expected)


# Session helpers -------------------------------------------------------
def _generate_user_id(length: int = 21) -> str:
    return "".join(secrets.choice(ALPHABET) for _ in range(length))


def create_account(session: Session, username: str, password: Optional[str] = None) -> Account:
    if get_account_by_username(session, username) is not None:
        raise DuplicateUsernameError(f"Username {username!r} is already registered")
    user_id = _generate_user_id()
    while get_account_by_user_id(session, user_id):
        user_id = _generate_user_id()
    account = Account(
        username=username,
        user_id=user_id,
        password_hash=hash_password(password) if password else None,
    )
    session.add(account)
    session.flush()
    return account


def get_account_by_username(session: Session, username: str) -> Account | None:
    return session.scalar(select(Account).where(Account.username == username))


def get_account_by_user_id(session: Session, user_id: str) -> Account | None:
    return session.scalar(select(Account).where(Account.user_id == user_id))


def get_device(session: Session, account: Account, device_id: str) -> Device | None:
    return session.scalar(
        select(Device).where(Device.account_id == account.id, Device.device_id == device_id)
    )


def store_device(
    session: Session,
    account: Account,
    device_id: str,
    public_key: bytes,
    algorithm: int,
    attestation: Optional[Attestation],
) -> Device:
    device = get_device(session, account, device_id)
    if device is None:
        device = Device(account_id=account.id, device_id=device_id)
        session.add(device)
    device.public_key = public_key
    device.algorithm = algorithm
    device.attestation_included = bool(attestation and attestation.included)
    device.attestation_buffer = attestation.key_buffer if attestation else None
    device.certificate_chain = attestation.certificate_chain_buffer if attestation else None
    device.attestation_retry = (
        attestation.retry_status.value if attestation and attestation.retry_status else None
    )
    session.flush()
    return device


def list_accounts_for_device(session: Session, device_id: str) -> List[Account]:
    statement = (
        select(Account)
        .join(Account.devices)
        .where(Device.device_id == device_id)
        .order_by(Account.id)
    )
    return list(session.scalars(statement))


def to_passport_device(device: Device) -> PassportDevice:
    attestation = None
    if device.attestation_included or device.attestation_retry:
        attestation = Attestation(
            included=device.attestation_included,
            key_buffer=device.attestation_buffer,
            certificate_chain_buffer=device.certificate_chain,
            retry_status=(
                AttestationStatus(device.attestation_retry) if device.attestation_retry else None
            ),
        )
    return PassportDevice(
        device_id=device.device_id,
        public_key=device.public_key,
        algorithm=device.algorithm,
        attestation=attestation,
    )


def to_user_account(account: Account) -> UserAccount:
    return UserAccount(
        user_id=account.user_id,
        username=account.username,
        devices=[to_passport_device(device) for device in account.devices],
    )


# Attestation -----------------------------------------------------------
def _parse_authenticator_data(data: bytes) -> dict:
    if len(data) < 37:
        raise ValueError("Authenticator data too short")
    idx = 0
    rp_id_hash = data[idx : idx + 32]
    idx += 32
    flags = data[idx]
    idx += 1
    sign_count = int.from_bytes(data[idx : idx + 4], "big")
    idx += 4

    credential_id = None
    credential_public_key = None

    if flags & FLAG_AT:
        if len(data) < idx + 18:
            raise ValueError("Malformed attested credential data")
        idx += 16  # skip AAGUID
        cred_len = int.from_bytes(data[idx : idx + 2], "big")
        idx += 2
        credential_id = data[idx : idx + cred_len]
        idx += cred_len
        stream = BytesIO(data[idx:])
        decoder = cbor2.CBORDecoder(stream)
        credential_public_key = decoder.decode()

    return {
        "rp_id_hash": rp_id_hash,
        "flags": flags,
        "sign_count": sign_count,
        "credential_id": credential_id,
        "credential_public_key": credential_public_key,
    }


def verify_attestation(
    attestation: Attestation,
    public_key: bytes,
    algorithm: int,
    rp_id: str,
) -> bool:
    """Check a packed self attestation against the key being registered."""
    if not attestation.included:
        return True
    try:
        statement = cbor2.loads(attestation.key_buffer)
        auth_data = bytes(statement["authData"])
        att_stmt = statement["attStmt"]
        parsed = _parse_authenticator_data(auth_data)
        chain = cbor2.loads(attestation.certificate_chain_buffer)
        chain_key = cbor2.loads(chain[0]) if chain else {}
    except (cbor2.CBORDecodeError, KeyError, TypeError, ValueError, IndexError) as exc:
        LOGGER.warning("Unreadable attestation: %s", exc)
        return False

    cose_key = parsed["credential_public_key"] or {}
    if statement.get("fmt") != ATTESTATION_FORMAT:
        return False
    if parsed["rp_id_hash"] != hashlib.sha256(rp_id.encode("idna")).digest():
        return False
    if att_stmt.get("alg") != algorithm or cose_key.get(3) != algorithm:
        return False
    if cose_key.get(-1) != public_key or chain_key.get(-1) != public_key:
        return False
    return SignatureSuite(algorithm).verify(
        public_key, attestation_payload(auth_data, public_key), bytes(att_stmt.get("sig", b""))
    )


class RelyingPartyService:
    """Local stand-in for a relying party.

    Registry mutations are serialized by a lock and each one commits in its
    own transaction.
    """

    def __init__(
        self,
        settings: RPSettings | None = None,
        database: Database | None = None,
        challenges: ChallengeCache | None = None,
    ) -> None:
        self.settings = settings or RPSettings()
        self.db = database or Database(self.settings)
        self.db.create_all()
        self.challenges = challenges or ChallengeCache(ttl=self.settings.challenge_ttl_seconds)
        self._lock = threading.Lock()

    # Accounts ----------------------------------------------------------
    def register(self, username: str, password: Optional[str] = None) -> str:
        with self._lock, self.db.session() as session:
            try:
                account = create_account(session, username, password)
            except DuplicateUsernameError:
                _log("account", "duplicate", user=username, level=logging.WARNING)
                raise
            _log("account", "register", user=username, user_id=account.user_id)
            return account.user_id

    def lookup_user_id(self, username: str) -> Optional[str]:
        with self.db.session() as session:
            account = get_account_by_username(session, username)
            return account.user_id if account else None

    def get_account(self, user_id: str) -> Optional[UserAccount]:
        with self.db.session() as session:
            account = get_account_by_user_id(session, user_id)
            return to_user_account(account) if account else None

    def accounts_for_device(self, device_id: str) -> List[UserAccount]:
        with self.db.session() as session:
            return [to_user_account(a) for a in list_accounts_for_device(session, device_id)]

    def validate_credentials(self, username: str, password: str) -> bool:
        with self.db.session() as session:
            account = get_account_by_username(session, username)
            if account is None or not account.password_hash:
                return False
            return check_password(password, account.password_hash)

    def remove_user(self, user_id: str) -> None:
        with self._lock, self.db.session() as session:
            account = get_account_by_user_id(session, user_id)
            if account is not None:
                session.delete(account)
                _log("account", "remove", user=account.username, user_id=user_id)
        self.challenges.discard(user_id)

    # Devices -----------------------------------------------------------
    def register_device(
        self,
        user_id: str,
        device_id: str,
        public_key: bytes,
        algorithm: int,
        attestation: Optional[Attestation],
    ) -> bool:
        if algorithm not in self.settings.accepted_algorithms:
            _log("device", "algorithm", user_id=user_id, algorithm=algorithm, level=logging.WARNING)
            return False
        if (
            attestation is not None
            and self.settings.require_valid_attestation
            and not verify_attestation(attestation, public_key, algorithm, self.settings.rp_id)
        ):
            _log("device", "attestation.invalid", user_id=user_id, device_id=device_id, level=logging.WARNING)
            return False
        with self._lock, self.db.session() as session:
            account = get_account_by_user_id(session, user_id)
            if account is None:
                _log("device", "unknown_user", user_id=user_id, level=logging.WARNING)
                return False
            store_device(session, account, device_id, public_key, algorithm, attestation)
            _log(
                "device",
                "register",
                user=account.username,
                device_id=device_id,
                algorithm=algorithm,
                attestation_included=bool(attestation and attestation.included),
            )
        return True

    def remove_device(self, user_id: str, device_id: str) -> None:
        with self._lock, self.db.session() as session:
            account = get_account_by_user_id(session, user_id)
            device = get_device(session, account, device_id) if account else None
            if device is not None:
                account.devices.remove(device)
                _log("device", "remove", user=account.username, device_id=device_id)
        self.challenges.discard(user_id, device_id)

    # Challenge/response ------------------------------------------------
    def request_challenge(self, user_id: str, device_id: str) -> bytes:
        challenge = self.challenges.issue(
            CHALLENGE_SCOPE, user_id, device_id, self.settings.challenge_size
        )
        _log("authn", "challenge", user_id=user_id, device_id=device_id)
        return challenge

    def verify_signed_challenge(self, user_id: str, device_id: str, signature: bytes) -> bool:
        challenge = self.challenges.pop(CHALLENGE_SCOPE, user_id, device_id)
        if challenge is None:
            _log(
                "authn",
                "verify.expired",
                user_id=user_id,
                device_id=device_id,
                level=logging.WARNING,
            )
            return False
        with self.db.session() as session:
            account = get_account_by_user_id(session, user_id)
            device = get_device(session, account, device_id) if account else None
            if device is None:
                _log(
                    "authn",
                    "verify.unknown_device",
                    user_id=user_id,
                    device_id=device_id,
                    level=logging.WARNING,
                )
                return False
            public_key, algorithm = device.public_key, device.algorithm
        try:
            valid = SignatureSuite(algorithm).verify(public_key, challenge, signature)
        except ValueError:
            valid = False
        _log(
            "authn",
            "verify.success" if valid else "verify.rejected",
            user_id=user_id,
            device_id=device_id,
            level=logging.INFO if valid else logging.WARNING,
        )
        return valid
