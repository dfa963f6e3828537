"""Relying party stand-in: account/device registry and challenge verification."""

from .app import create_app
from .config import RPSettings
from .services import RelyingPartyService

__all__ = ["create_app", "RPSettings", "RelyingPartyService"]
