"""Platform credential store backed by the OS keyring.

Each username owns at most one key. The private key lives in the keyring
entry; a JSON index next to the package tracks which usernames are enrolled on
this device without holding any key material.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from pathlib import Path
from typing import Callable, Dict, Optional, Protocol, TypeVar

import keyring
from keyring.backends import fail
from keyring.errors import KeyringError, KeyringLocked, PasswordDeleteError
from pydantic import ValidationError

from .attestation import (
    attestation_payload,
    build_attestation_object,
    build_authenticator_data,
    build_certificate_chain,
    build_credential_public_key,
)
from .config import PassportSettings
from .crypto import SignatureSuite
from .models import (
    AttestationStatus,
    KeyAttestationResult,
    KeyCredentialStatus,
    KeyHandle,
    KeyOperationResult,
    KeyRecord,
    KeyRecordModel,
    KeyRetrievalResult,
    b64url_decode,
)
from .touch import UserVerificationError, UserVerifier, build_verifier

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class CredentialStoreError(RuntimeError):
    pass


class PlatformCredentialStore(Protocol):
    async def is_supported(self) -> bool:
        ...

    async def create_or_replace(self, username: str) -> KeyRetrievalResult:
        ...

    async def open(self, username: str) -> KeyRetrievalResult:
        ...

    async def retrieve_public_key(self, handle: KeyHandle) -> bytes:
        ...

    async def get_attestation(self, handle: KeyHandle) -> KeyAttestationResult:
        ...

    async def sign(self, handle: KeyHandle, challenge: bytes) -> KeyOperationResult:
        ...

    async def delete(self, username: str) -> None:
        ...


class KeyringCredentialStore:
    def __init__(
        self,
        settings: PassportSettings,
        user_verifier: Optional[UserVerifier] = None,
    ):
        self.settings = settings
        self.service = settings.keyring_service
        self.index_path = Path(settings.key_index_path).expanduser()
        self.user_verifier = user_verifier or build_verifier(settings.user_verifier)
        self._lock = threading.Lock()
        self._key_locks: Dict[str, asyncio.Lock] = {}
        self._sequence = 0
        self.index_path.parent.mkdir(parents=True, exist_ok=True)
        if not self.index_path.exists():
            self._write_index({})
        self._initialize_sequence()

    # Index helpers -----------------------------------------------------
    def _read_index(self) -> Dict[str, Dict[str, object]]:
        if not self.index_path.exists():
            return {}
        return json.loads(self.index_path.read_text())

    def _write_index(self, data: Dict[str, Dict[str, object]]) -> None:
        self.index_path.write_text(json.dumps(data, indent=2))

    def _update_index(self, record: KeyRecord) -> None:
        with self._lock:
            index = self._read_index()
            index[record.username] = {
                "key_id": record.key_id,
                "algorithm": record.algorithm,
                "last_used": self._next_sequence(),
            }
            self._write_index(index)

    def _remove_from_index(self, username: str) -> None:
        with self._lock:
            index = self._read_index()
            if username in index:
                index.pop(username)
                self._write_index(index)

    def _initialize_sequence(self) -> None:
        with self._lock:
            index = self._read_index()
            max_seq = 0
            for metadata in index.values():
                seq = metadata.get("last_used")
                if isinstance(seq, int) and seq > max_seq:
                    max_seq = seq
            self._sequence = max_seq

    def _next_sequence(self) -> int:
        self._sequence += 1
        return self._sequence

    def list_metadata(self) -> Dict[str, Dict[str, object]]:
        with self._lock:
            index = self._read_index()
            return {username: dict(metadata) for username, metadata in index.items()}

    # Blocking keyring access --------------------------------------------
    def _save(self, record: KeyRecord) -> KeyRecord:
        keyring.set_password(self.service, record.username, record.to_model().encode())
        self._update_index(record)
        return record

    def _load(self, username: str) -> KeyRecord:
        serialized = keyring.get_password(self.service, username)
        if serialized is None:
            raise CredentialStoreError(f"No key enrolled for {username}")
        try:
            model = KeyRecordModel.decode(serialized)
        except ValidationError as exc:
            raise CredentialStoreError(f"Unreadable key record for {username}") from exc
        return KeyRecord.from_model(model)

    def _load_current(self, handle: KeyHandle) -> KeyRecord:
        record = self._load(handle.username)
        if record.key_id != handle.key_id:
            raise CredentialStoreError(f"Key for {handle.username} was replaced")
        return record

    def _create(self, username: str) -> KeyRecord:
        keypair = SignatureSuite(self.settings.key_algorithm).generate_keypair()
        record = KeyRecord.new(
            username=username,
            algorithm=keypair.algorithm,
            public_key=keypair.public_key,
            private_key=keypair.private_key,
        )
        return self._save(record)

    def _attest(self, handle: KeyHandle) -> KeyAttestationResult:
        record = self._load_current(handle)
        public_key = b64url_decode(record.public_key)
        auth_data = build_authenticator_data(
            rp_id=self.settings.rp_id,
            sign_count=record.sign_count,
            credential_id=b64url_decode(record.key_id),
            credential_public_key=build_credential_public_key(public_key, record.algorithm),
        )
        signature = SignatureSuite(record.algorithm).sign(
            b64url_decode(record.private_key), attestation_payload(auth_data, public_key)
        )
        return KeyAttestationResult(
            status=AttestationStatus.SUCCESS,
            attestation_buffer=build_attestation_object(auth_data, record.algorithm, signature),
            certificate_chain_buffer=build_certificate_chain(public_key, record.algorithm),
        )

    def _sign(self, handle: KeyHandle, challenge: bytes) -> bytes:
        record = self._load_current(handle)
        signature = SignatureSuite(record.algorithm).sign(
            b64url_decode(record.private_key), challenge
        )
        record.sign_count += 1
        self._save(record)
        return signature

    def _delete(self, username: str) -> None:
        try:
            keyring.delete_password(self.service, username)
        except PasswordDeleteError:
            LOGGER.debug("No keyring entry to delete for %s", username)
        self._remove_from_index(username)

    # Async capability --------------------------------------------------
    async def _run(self, func: Callable[..., T], *args) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    def _key_lock(self, username: str) -> asyncio.Lock:
        lock = self._key_locks.get(username)
        if lock is None:
            lock = self._key_locks[username] = asyncio.Lock()
        return lock

    async def _verify_user(self, prompt: str) -> bool:
        try:
            await self._run(self.user_verifier.verify_user, prompt)
        except UserVerificationError as exc:
            LOGGER.info("User verification not completed: %s", exc)
            return False
        return True

    async def is_supported(self) -> bool:
        if isinstance(keyring.get_keyring(), fail.Keyring):
            LOGGER.warning("No usable keyring backend is configured")
            return False
        return await self._run(self.user_verifier.is_available)

    async def create_or_replace(self, username: str) -> KeyRetrievalResult:
        async with self._key_lock(username):
            if not await self.is_supported():
                return KeyRetrievalResult(KeyCredentialStatus.NOT_FOUND)
            if not await self._verify_user(f"Verify to create a key for {username}"):
                return KeyRetrievalResult(KeyCredentialStatus.USER_CANCELLED)
            try:
                record = await self._run(self._create, username)
            except KeyringLocked:
                return KeyRetrievalResult(KeyCredentialStatus.DEVICE_LOCKED)
            except KeyringError as exc:
                LOGGER.error("Key creation failed for %s: %s", username, exc)
                return KeyRetrievalResult(KeyCredentialStatus.UNKNOWN_ERROR)
            return KeyRetrievalResult(KeyCredentialStatus.SUCCESS, record.handle())

    async def open(self, username: str) -> KeyRetrievalResult:
        try:
            record = await self._run(self._load, username)
        except CredentialStoreError as exc:
            LOGGER.info("No usable key for %s: %s", username, exc)
            return KeyRetrievalResult(KeyCredentialStatus.NOT_FOUND)
        except KeyringLocked:
            return KeyRetrievalResult(KeyCredentialStatus.DEVICE_LOCKED)
        except KeyringError as exc:
            LOGGER.error("Opening key failed for %s: %s", username, exc)
            return KeyRetrievalResult(KeyCredentialStatus.UNKNOWN_ERROR)
        return KeyRetrievalResult(KeyCredentialStatus.SUCCESS, record.handle())

    async def retrieve_public_key(self, handle: KeyHandle) -> bytes:
        record = await self._run(self._load_current, handle)
        return b64url_decode(record.public_key)

    async def get_attestation(self, handle: KeyHandle) -> KeyAttestationResult:
        if self.settings.attestation_format == "none":
            return KeyAttestationResult(AttestationStatus.NOT_SUPPORTED)
        try:
            return await self._run(self._attest, handle)
        except (CredentialStoreError, KeyringError) as exc:
            LOGGER.warning("Attestation unavailable for %s: %s", handle.username, exc)
            return KeyAttestationResult(AttestationStatus.TEMPORARY_FAILURE)

    async def sign(self, handle: KeyHandle, challenge: bytes) -> KeyOperationResult:
        async with self._key_lock(handle.username):
            if not await self._verify_user(f"Verify to sign in as {handle.username}"):
                return KeyOperationResult(KeyCredentialStatus.USER_CANCELLED)
            try:
                signature = await self._run(self._sign, handle, challenge)
            except CredentialStoreError:
                return KeyOperationResult(KeyCredentialStatus.NOT_FOUND)
            except KeyringLocked:
                return KeyOperationResult(KeyCredentialStatus.DEVICE_LOCKED)
            except KeyringError as exc:
                LOGGER.error("Signing failed for %s: %s", handle.username, exc)
                return KeyOperationResult(KeyCredentialStatus.UNKNOWN_ERROR)
            return KeyOperationResult(KeyCredentialStatus.SUCCESS, signature)

    async def delete(self, username: str) -> None:
        async with self._key_lock(username):
            await self._run(self._delete, username)
