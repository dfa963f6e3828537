"""User verification gates (Touch ID, console PIN prompt, no-op)."""

from __future__ import annotations

import getpass
import logging
import sys
import threading
from typing import Protocol

LOGGER = logging.getLogger(__name__)


class UserVerificationError(RuntimeError):
    pass


class UserVerifier(Protocol):
    def is_available(self) -> bool:
        ...

    def verify_user(self, prompt: str | None = None) -> bool:
        ...


class TouchIDVerifier:
    """Device owner authentication through LocalAuthentication.

    Falls back to the account password when no biometric is enrolled.
    """

    def __init__(self, reason: str = "Sign in to your account", timeout: float = 60.0) -> None:
        self.reason = reason
        self.timeout = timeout

    @staticmethod
    def _load():
        try:
            from LocalAuthentication import LAContext, LAPolicyDeviceOwnerAuthentication
        except ImportError as exc:  # pragma: no cover - only hit on non-macOS
            raise UserVerificationError("LocalAuthentication is not installed") from exc
        return LAContext.alloc().init(), LAPolicyDeviceOwnerAuthentication

    def is_available(self) -> bool:
        try:
            context, policy = self._load()
        except UserVerificationError:
            return False
        available, _error = context.canEvaluatePolicy_error_(policy, None)
        return bool(available)

    def verify_user(self, prompt: str | None = None) -> bool:
        context, policy = self._load()
        available, error = context.canEvaluatePolicy_error_(policy, None)
        if not available:
            raise UserVerificationError(f"Device owner authentication unavailable: {error}")

        # The reply arrives on a LocalAuthentication queue, not this thread.
        replied = threading.Event()
        outcome = {"approved": False}

        def reply(approved: bool, _error) -> None:
            outcome["approved"] = bool(approved)
            replied.set()

        context.evaluatePolicy_localizedReason_reply_(policy, prompt or self.reason, reply)
        if not replied.wait(self.timeout):
            context.invalidate()
            raise UserVerificationError("Verification timed out")
        if not outcome["approved"]:
            raise UserVerificationError("User declined")
        return True


class NoopVerifier:
    """User verifier that unconditionally succeeds (useful for tests and CI)."""

    def is_available(self) -> bool:
        return True

    def verify_user(self, prompt: str | None = None) -> bool:
        LOGGER.debug("User verification skipped for %r", prompt)
        return True


class PromptVerifier:
    """Asks for confirmation on the console, PIN-style."""

    def is_available(self) -> bool:
        return sys.stdin is not None and sys.stdin.isatty()

    def verify_user(self, prompt: str | None = None) -> bool:
        msg = prompt or "Confirm with your PIN"
        answer = getpass.getpass(f"{msg} (type 'y' to continue): ")
        if answer.strip().lower() == "y":
            return True
        raise UserVerificationError("User declined")


def build_verifier(kind: str = "auto") -> UserVerifier:
    if kind == "touchid":
        return TouchIDVerifier()
    if kind == "prompt":
        return PromptVerifier()
    if kind == "noop":
        return NoopVerifier()
    if sys.platform == "darwin":
        return TouchIDVerifier()
    return PromptVerifier()
