"""Sign-in flows a front end drives: register, log in, pick or forget accounts."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from .errors import (
    DuplicateUsernameError,
    FailureKind,
    authentication_failure,
    enroll_failure,
    user_message,
)
from .models import EnrollResult, UserAccount
from .relying_party import RelyingParty
from .service import PassportManager

LOGGER = logging.getLogger(__name__)


@dataclass
class FlowResult:
    account: Optional[UserAccount] = None
    message: Optional[str] = None


async def _enroll_new(
    manager: PassportManager,
    relying_party: RelyingParty,
    user_id: str,
    username: str,
    rollback: bool,
) -> FlowResult:
    result = await manager.enroll(user_id, username)
    if result != EnrollResult.SUCCESS:
        if rollback:
            # A freshly registered account is useless without a key.
            await relying_party.remove_user(user_id)
        LOGGER.info("Enrollment for %s ended with %s", username, result.value)
        kind = enroll_failure(result) or FailureKind.REGISTRATION_FAILED
        if kind == FailureKind.USER_DECLINED:
            return FlowResult(message=user_message(kind))
        return FlowResult(message=user_message(FailureKind.REGISTRATION_FAILED))
    return FlowResult(account=await relying_party.get_account(user_id))


async def register_account(
    manager: PassportManager,
    relying_party: RelyingParty,
    username: str,
    password: Optional[str] = None,
) -> FlowResult:
    if not username:
        return FlowResult(message="Please enter a username")
    try:
        user_id = await relying_party.register(username, password)
    except DuplicateUsernameError:
        return FlowResult(message="That username is already taken")
    return await _enroll_new(manager, relying_party, user_id, username, rollback=True)


async def sign_in_with_password(
    manager: PassportManager,
    relying_party: RelyingParty,
    username: str,
    password: str,
) -> FlowResult:
    """Legacy path: a password account gets its first key on this device.

    The account predates the key, so it is kept when enrollment fails.
    """
    if not await relying_party.validate_credentials(username, password):
        return FlowResult(message=user_message(FailureKind.INVALID_CREDENTIALS))
    user_id = await relying_party.lookup_user_id(username)
    if user_id is None:
        return FlowResult(message=user_message(FailureKind.INVALID_CREDENTIALS))
    return await _enroll_new(manager, relying_party, user_id, username, rollback=False)


async def sign_in_existing(manager: PassportManager, account: UserAccount) -> FlowResult:
    if not await manager.check_availability():
        return FlowResult(message=user_message(FailureKind.NOT_CONFIGURED))
    result = await manager.sign_in(account)
    if result.verified:
        return FlowResult(account=await manager.relying_party.get_account(account.user_id))
    kind = authentication_failure(result.status) or FailureKind.DEVICE_UNAVAILABLE
    return FlowResult(account=None, message=user_message(kind))


async def accounts_on_device(relying_party: RelyingParty, device_id: str) -> List[UserAccount]:
    return await relying_party.accounts_for_device(device_id)


async def forget_device(
    manager: PassportManager, account: UserAccount, device_id: str
) -> FlowResult:
    refreshed = await manager.revoke_device(account, device_id)
    return FlowResult(account=refreshed)


async def forget_account(manager: PassportManager, account: UserAccount) -> FlowResult:
    await manager.revoke_account(account)
    LOGGER.info("User %s deleted", account.username)
    return FlowResult()
