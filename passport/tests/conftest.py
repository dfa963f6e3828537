from __future__ import annotations

from pathlib import Path
from typing import Dict, Tuple
import sys

import pytest
from keyring.errors import PasswordDeleteError

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from passport.config import PassportSettings
from passport.relying_party import LocalRelyingParty
from passport.service import PassportManager
from passport.storage import KeyringCredentialStore
from passport.touch import NoopVerifier, UserVerificationError
from rp_server.config import RPSettings
from rp_server.services import RelyingPartyService

DEVICE_ID = "device-a"


class DecliningVerifier:
    def is_available(self) -> bool:
        return True

    def verify_user(self, prompt: str | None = None) -> bool:
        raise UserVerificationError("User declined")


@pytest.fixture(autouse=True)
def fake_keyring(monkeypatch):
    storage: Dict[Tuple[str, str], str] = {}

    def set_password(service: str, username: str, password: str) -> None:
        storage[(service, username)] = password

    def get_password(service: str, username: str) -> str | None:
        return storage.get((service, username))

    def delete_password(service: str, username: str) -> None:
        if (service, username) not in storage:
            raise PasswordDeleteError("Password not found")
        storage.pop((service, username))

    monkeypatch.setattr("passport.storage.keyring.set_password", set_password)
    monkeypatch.setattr("passport.storage.keyring.get_password", get_password)
    monkeypatch.setattr("passport.storage.keyring.delete_password", delete_password)
    monkeypatch.setattr("passport.storage.keyring.get_keyring", lambda: object())
    yield storage


@pytest.fixture
def declining_verifier() -> DecliningVerifier:
    return DecliningVerifier()


@pytest.fixture
def temp_settings(tmp_path: Path) -> PassportSettings:
    return PassportSettings(
        keyring_service="test-service",
        key_index_path=str(tmp_path / "index.json"),
        user_verifier="noop",
        device_id=DEVICE_ID,
        relying_party_timeout=5.0,
    )


@pytest.fixture
def rp_settings(tmp_path: Path) -> RPSettings:
    return RPSettings(database_url=f"sqlite:///{tmp_path / 'rp.db'}")


@pytest.fixture
def rp_service(rp_settings: RPSettings) -> RelyingPartyService:
    return RelyingPartyService(rp_settings)


@pytest.fixture
def relying_party(rp_service: RelyingPartyService) -> LocalRelyingParty:
    return LocalRelyingParty(rp_service, timeout=5.0)


@pytest.fixture
def store(temp_settings: PassportSettings) -> KeyringCredentialStore:
    return KeyringCredentialStore(temp_settings, user_verifier=NoopVerifier())


@pytest.fixture
def manager(relying_party, store, temp_settings) -> PassportManager:
    return PassportManager(relying_party, store, temp_settings, device_id=DEVICE_ID)
