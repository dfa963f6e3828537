"""Command-line entry point wiring the manager to a local relying party."""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import List, Optional

from rp_server import RelyingPartyService, RPSettings

from . import LocalRelyingParty, PassportManager, PassportSettings
from .flows import (
    FlowResult,
    accounts_on_device,
    forget_account,
    forget_device,
    register_account,
    sign_in_existing,
    sign_in_with_password,
)
from .models import UserAccount


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Passport sign-in")
    parser.add_argument("--database-url", help="SQLAlchemy URL of the relying party registry")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Check whether key-based sign-in is available")
    register = sub.add_parser("register", help="Create an account and enroll this device")
    register.add_argument("username")
    register.add_argument("--password", help="Optional password for the legacy sign-in path")
    login = sub.add_parser("login", help="Sign in with this device's key")
    login.add_argument("username")
    login.add_argument("--password", help="Enroll this device for a password account")
    sub.add_parser("accounts", help="List accounts enrolled on this device")
    device = sub.add_parser("forget-device", help="Remove a device from an account")
    device.add_argument("username")
    device.add_argument("--device-id", help="Device to remove (defaults to this one)")
    user = sub.add_parser("forget-user", help="Remove an account and its local key")
    user.add_argument("username")
    return parser.parse_args(argv)


def _describe(account: UserAccount) -> str:
    devices = ", ".join(device.device_id for device in account.devices) or "no devices"
    return f"{account.username} ({account.user_id}): {devices}"


def _report(result: FlowResult) -> int:
    if result.message:
        print(result.message)
        return 1
    if result.account is not None:
        print(f"Welcome {_describe(result.account)}")
    return 0


async def _find_account(relying_party: LocalRelyingParty, username: str) -> Optional[UserAccount]:
    user_id = await relying_party.lookup_user_id(username)
    if user_id is None:
        return None
    return await relying_party.get_account(user_id)


async def run(
    args: argparse.Namespace,
    manager: PassportManager,
    relying_party: LocalRelyingParty,
) -> int:
    if args.command == "status":
        available = await manager.check_availability()
        print(f"Device {manager.device_id}: {'ready' if available else 'not set up'}")
        return 0 if available else 1

    if args.command == "register":
        return _report(
            await register_account(manager, relying_party, args.username, args.password)
        )

    if args.command == "accounts":
        accounts = await accounts_on_device(relying_party, manager.device_id)
        if not accounts:
            print("No accounts on this device")
        for account in accounts:
            print(_describe(account))
        return 0

    if args.command == "login" and args.password:
        return _report(
            await sign_in_with_password(manager, relying_party, args.username, args.password)
        )

    account = await _find_account(relying_party, args.username)
    if account is None:
        print("Unknown user")
        return 1
    if args.command == "login":
        return _report(await sign_in_existing(manager, account))
    if args.command == "forget-device":
        result = await forget_device(manager, account, args.device_id or manager.device_id)
        if result.account is not None and not result.account.devices:
            print(f"{account.username} has no devices left")
        return 0
    if args.command == "forget-user":
        await forget_account(manager, account)
        print(f"User {account.username} deleted")
        return 0
    return 2


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    settings = PassportSettings()
    rp_settings = RPSettings(rp_id=settings.rp_id)
    if args.database_url:
        rp_settings.database_url = args.database_url
    relying_party = LocalRelyingParty(
        RelyingPartyService(rp_settings), timeout=settings.relying_party_timeout
    )
    manager = PassportManager(relying_party, settings=settings)
    try:
        return asyncio.run(run(args, manager, relying_party))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
