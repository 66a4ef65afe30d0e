"""
Credential resolution.

Sources are tried in order and the first one holding a credential wins:
a host-managed selection facility, the manually stored key, then the
environment default.
"""
import logging
from typing import Awaitable, Callable, List, Optional, Protocol, runtime_checkable

from .kv_storage import KVStorage, API_KEY_KEY, ACTIVATED_KEY
from .models import ActivationResult, ConnectionResult
from .settings import default_api_key

logger = logging.getLogger(__name__)

Validator = Callable[[str], Awaitable[ConnectionResult]]


@runtime_checkable
class HostCredentialFacility(Protocol):
    async def has_active_credential(self) -> bool: ...

    async def active_credential(self) -> Optional[str]: ...

    async def open_credential_picker(self) -> None: ...


class CredentialProvider(Protocol):
    name: str

    async def fetch(self) -> Optional[str]: ...


class HostCredentialProvider:
    name = "host"

    def __init__(self, host: Optional[HostCredentialFacility]):
        self.host = host

    async def fetch(self) -> Optional[str]:
        if self.host is None or not await self.host.has_active_credential():
            return None
        return await self.host.active_credential() or None


class StoredCredentialProvider:
    name = "stored"

    def __init__(self, kv: KVStorage):
        self.kv = kv

    async def fetch(self) -> Optional[str]:
        value = await self.kv.get(API_KEY_KEY)
        return value.strip() if value and value.strip() else None


class EnvironmentCredentialProvider:
    name = "environment"

    async def fetch(self) -> Optional[str]:
        return default_api_key() or None


def default_providers(kv: KVStorage, host: Optional[HostCredentialFacility] = None) -> List[CredentialProvider]:
    return [HostCredentialProvider(host), StoredCredentialProvider(kv), EnvironmentCredentialProvider()]


class CredentialResolver:
    def __init__(
        self,
        kv: KVStorage,
        validator: Validator,
        providers: Optional[List[CredentialProvider]] = None,
        host: Optional[HostCredentialFacility] = None,
    ):
        self.kv = kv
        self.validator = validator
        self.host = host
        self.providers = providers if providers is not None else default_providers(kv, host)
        self.is_active = False

    async def resolve(self) -> Optional[str]:
        for provider in self.providers:
            credential = await provider.fetch()
            if credential:
                logger.debug(f"Credential resolved from {provider.name} source")
                return credential
        return None

    async def refresh(self) -> bool:
        self.is_active = (await self.resolve()) is not None
        logger.info(f"Credential active: {self.is_active}")
        return self.is_active

    async def ensure_active(self) -> bool:
        """Pre-flight check; lets a host facility prompt for a selection first."""
        if self.is_active:
            return True
        if self.host is not None:
            await self.host.open_credential_picker()
        return await self.refresh()

    async def activate(self, candidate: str) -> ActivationResult:
        candidate = (candidate or "").strip()
        if not candidate:
            return ActivationResult(accepted=False, message="Please enter an API key.")

        result = await self.validator(candidate)
        if not result.success:
            logger.warning(f"Credential rejected: {result.message}")
            return ActivationResult(accepted=False, message=result.message)

        await self.kv.set(API_KEY_KEY, candidate)
        await self.kv.set(ACTIVATED_KEY, "true")
        self.is_active = True
        logger.info("Credential validated and activated")
        return ActivationResult(accepted=True, message=result.message)

    async def clear(self) -> bool:
        await self.kv.delete(API_KEY_KEY)
        await self.kv.set(ACTIVATED_KEY, "false")
        return await self.refresh()
