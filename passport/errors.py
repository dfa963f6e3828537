"""Failure categories surfaced to callers and their user-facing wording."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from .models import AuthenticationStatus, EnrollResult


class FailureKind(str, Enum):
    USER_DECLINED = "user_declined"
    NOT_CONFIGURED = "not_configured"
    KEY_MISSING = "key_missing"
    DEVICE_UNAVAILABLE = "device_unavailable"
    REGISTRATION_FAILED = "registration_failed"
    INVALID_CREDENTIALS = "invalid_credentials"


USER_MESSAGES = {
    FailureKind.USER_DECLINED: "Sign-in was cancelled. You can try again at any time.",
    FailureKind.NOT_CONFIGURED: "Set up a PIN or biometric sign-in on this device first.",
    FailureKind.KEY_MISSING: "This device needs to be set up again.",
    FailureKind.DEVICE_UNAVAILABLE: "The security device is unavailable. Try again or restart.",
    FailureKind.REGISTRATION_FAILED: "Account Creation Failed",
    FailureKind.INVALID_CREDENTIALS: "Invalid Credentials",
}

_ENROLL_KINDS = {
    EnrollResult.USER_CANCELLED: FailureKind.USER_DECLINED,
    EnrollResult.NOT_FOUND: FailureKind.NOT_CONFIGURED,
    EnrollResult.REGISTRATION_FAILED: FailureKind.REGISTRATION_FAILED,
}

_AUTHENTICATION_KINDS = {
    AuthenticationStatus.USER_CANCELLED: FailureKind.USER_DECLINED,
    AuthenticationStatus.NOT_CONFIGURED: FailureKind.NOT_CONFIGURED,
    AuthenticationStatus.KEY_MISSING: FailureKind.KEY_MISSING,
    AuthenticationStatus.DEVICE_LOCKED: FailureKind.DEVICE_UNAVAILABLE,
    AuthenticationStatus.UNKNOWN_ERROR: FailureKind.DEVICE_UNAVAILABLE,
    AuthenticationStatus.RELYING_PARTY_UNAVAILABLE: FailureKind.DEVICE_UNAVAILABLE,
    AuthenticationStatus.REJECTED: FailureKind.INVALID_CREDENTIALS,
}


def enroll_failure(result: EnrollResult) -> Optional[FailureKind]:
    return _ENROLL_KINDS.get(result)


def authentication_failure(status: AuthenticationStatus) -> Optional[FailureKind]:
    return _AUTHENTICATION_KINDS.get(status)


def user_message(kind: FailureKind) -> str:
    return USER_MESSAGES[kind]


class DuplicateUsernameError(ValueError):
    """Raised by the relying party when a username is already registered."""
