"""Configuration for the Passport client."""

from __future__ import annotations

from pathlib import Path
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PassportSettings(BaseSettings):
    """Runtime settings for the credential lifecycle manager and key store."""

    model_config = SettingsConfigDict(env_prefix="PASSPORT_")

    keyring_service: str = Field(
        default="passport-login",
        description="Service name used for keyring entries holding user keys",
    )
    key_index_path: str = Field(
        default=str(
            (Path(__file__).resolve().parent / "data" / "key_index.json").resolve()
        ),
        description="Path to the index of enrolled usernames on this device",
    )
    key_algorithm: int = Field(
        default=-7,
        description="COSE algorithm used for newly created keys (-7 ES256, -48/-49/-50 ML-DSA)",
    )
    rp_id: str = Field(default="localhost", description="Relying Party identifier")
    attestation_format: Literal["packed", "none"] = Field(
        default="packed",
        description="'packed' produces self attestation, 'none' reports attestation as unsupported",
    )
    user_verifier: Literal["auto", "touchid", "prompt", "noop"] = Field(
        default="auto",
        description="How the platform store gates key creation and signing",
    )
    device_id: Optional[str] = Field(
        default=None,
        description="Override for the locally derived device identifier",
    )
    relying_party_timeout: Optional[float] = Field(
        default=30.0,
        description="Seconds to wait for a relying party call before giving up",
    )
    rollback_key_on_registration_failure: bool = Field(
        default=False,
        description="Delete the freshly created local key when the relying party rejects it",
    )
