"""Pydantic based configuration for the relying party."""

from __future__ import annotations

from pathlib import Path
from typing import List

from pydantic import BaseModel, Field

DATA_DIR = Path(__file__).resolve().parent / "data"
DEFAULT_DB_PATH = DATA_DIR / "rp.db"


class RPSettings(BaseModel):
    database_url: str = Field(
        default=f"sqlite:///{DEFAULT_DB_PATH}",
        description="SQLAlchemy connection string holding accounts and devices",
    )
    rp_id: str = Field(default="localhost", description="Relying Party identifier")
    challenge_ttl_seconds: float = Field(
        default=90.0,
        description="Seconds a sign-in challenge stays valid",
    )
    challenge_size: int = Field(default=32, description="Challenge length in bytes")
    accepted_algorithms: List[int] = Field(
        default_factory=lambda: [-7, -48, -49, -50],
        description="COSE algorithm identifiers the RP will accept",
    )
    require_valid_attestation: bool = Field(
        default=True,
        description="Reject registrations whose included attestation does not verify",
    )
