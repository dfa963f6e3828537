"""Client-side view of the relying party."""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import TYPE_CHECKING, Callable, List, Optional, Protocol, TypeVar

from .models import Attestation, UserAccount

if TYPE_CHECKING:  # pragma: no cover
    from rp_server.services import RelyingPartyService

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class RelyingPartyUnavailable(RuntimeError):
    pass


class RelyingParty(Protocol):
    async def register(self, username: str, password: Optional[str] = None) -> str:
        ...

    async def lookup_user_id(self, username: str) -> Optional[str]:
        ...

    async def get_account(self, user_id: str) -> Optional[UserAccount]:
        ...

    async def accounts_for_device(self, device_id: str) -> List[UserAccount]:
        ...

    async def validate_credentials(self, username: str, password: str) -> bool:
        ...

    async def register_device(
        self,
        user_id: str,
        device_id: str,
        public_key: bytes,
        algorithm: int,
        attestation: Optional[Attestation],
    ) -> bool:
        ...

    async def request_challenge(self, user_id: str, device_id: str) -> bytes:
        ...

    async def verify_signed_challenge(
        self, user_id: str, device_id: str, signature: bytes
    ) -> bool:
        ...

    async def remove_device(self, user_id: str, device_id: str) -> None:
        ...

    async def remove_user(self, user_id: str) -> None:
        ...


class LocalRelyingParty:
    """Runs an in-process ``RelyingPartyService`` off the event loop.

    Every call is bounded by ``timeout`` seconds. A call that times out raises
    ``RelyingPartyUnavailable`` but keeps running in its worker thread, so its
    outcome is unknown to the caller. Each service call commits in a single
    transaction and never leaves a partial write.
    """

    def __init__(self, service: "RelyingPartyService", timeout: Optional[float] = 30.0):
        self.service = service
        self.timeout = timeout

    async def _call(self, func: Callable[..., T], *args) -> T:
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, functools.partial(func, *args)),
                self.timeout,
            )
        except asyncio.TimeoutError as exc:
            LOGGER.warning("Relying party call %s timed out", func.__name__)
            raise RelyingPartyUnavailable(f"{func.__name__} timed out") from exc

    async def register(self, username: str, password: Optional[str] = None) -> str:
        return await self._call(self.service.register, username, password)

    async def lookup_user_id(self, username: str) -> Optional[str]:
        return await self._call(self.service.lookup_user_id, username)

    async def get_account(self, user_id: str) -> Optional[UserAccount]:
        return await self._call(self.service.get_account, user_id)

    async def accounts_for_device(self, device_id: str) -> List[UserAccount]:
        return await self._call(self.service.accounts_for_device, device_id)

    async def validate_credentials(self, username: str, password: str) -> bool:
        return await self._call(self.service.validate_credentials, username, password)

    async def register_device(
        self,
        user_id: str,
        device_id: str,
        public_key: bytes,
        algorithm: int,
        attestation: Optional[Attestation],
    ) -> bool:
        return await self._call(
            self.service.register_device, user_id, device_id, public_key, algorithm, attestation
        )

    async def request_challenge(self, user_id: str, device_id: str) -> bytes:
        return await self._call(self.service.request_challenge, user_id, device_id)

    async def verify_signed_challenge(
        self, user_id: str, device_id: str, signature: bytes
    ) -> bool:
        return await self._call(
            self.service.verify_signed_challenge, user_id, device_id, signature
        )

    async def remove_device(self, user_id: str, device_id: str) -> None:
        await self._call(self.service.remove_device, user_id, device_id)

    async def remove_user(self, user_id: str) -> None:
        await self._call(self.service.remove_user, user_id)
