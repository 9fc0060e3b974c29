"""Claim-voucher signing key resolution utilities."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Mapping, Protocol, Sequence

import httpx
from eth_account import Account
from loguru import logger

from rewardledger_api.core.settings import settings
from rewardledger_api.services.rewards.app_day import ensure_utc


class VaultRequestError(RuntimeError):
    """Raised when Vault returns an unexpected response."""


class SigningKeyUnavailableError(RuntimeError):
    """Raised when no usable claim signing key can be resolved."""


class VaultClientProtocol(Protocol):
    """Protocol describing the subset of Vault client interactions we require."""

    async def read_secret(self, path: str) -> Mapping[str, Any] | None:
        """Retrieve a secret from Vault, returning ``None`` when it is missing."""


class HttpVaultClient(VaultClientProtocol):
    """Minimal Vault client backed by ``httpx`` for KV v2 secret retrieval."""

    def __init__(
        self,
        *,
        base_url: str,
        token: str,
        namespace: str | None = None,
        timeout_seconds: float = 5.0,
    ) -> None:
        if not base_url:
            raise ValueError("Vault base URL must be configured")
        if not token:
            raise ValueError("Vault token must be configured")
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._namespace = namespace
        self._timeout_seconds = timeout_seconds

    async def read_secret(self, path: str) -> Mapping[str, Any] | None:  # pragma: no cover - thin HTTP wrapper
        url = f"{self._base_url}/v1/{path.lstrip('/')}"
        headers = {"X-Vault-Token": self._token}
        if self._namespace:
            headers["X-Vault-Namespace"] = self._namespace
        async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
            response = await client.get(url, headers=headers)
        if response.status_code == 200:
            return response.json()
        if response.status_code in (204, 404):
            return None
        raise VaultRequestError(
            f"Vault responded with unexpected status {response.status_code} for path '{path}'"
        )


@dataclass(slots=True)
class SigningKeyMaterial:
    """Resolved signer; ``private_key`` never leaves this process boundary."""

    private_key: str = field(repr=False)
    address: str
    refreshed_at: datetime
    expires_at: datetime | None = None


def signing_key_from_private_key(private_key: str, *, expires_at: datetime | None = None) -> SigningKeyMaterial:
    account = Account.from_key(private_key)
    return SigningKeyMaterial(
        private_key=private_key,
        address=account.address,
        refreshed_at=datetime.now(timezone.utc),
        expires_at=expires_at,
    )


class SigningKeySource(Protocol):
    """Protocol for implementations capable of fetching the claim signer."""

    async def fetch(self) -> SigningKeyMaterial | None:
        """Return the signer or ``None`` when this source has none configured."""


class VaultSigningKeySource(SigningKeySource):
    """Retrieve the claim signer from a Vault KV v2 secret."""

    def __init__(self, client: VaultClientProtocol, *, secret_path: str) -> None:
        self._client = client
        self._secret_path = secret_path.strip("/")

    async def fetch(self) -> SigningKeyMaterial | None:
        try:
            payload = await self._client.read_secret(self._secret_path)
        except (VaultRequestError, httpx.HTTPError):
            logger.exception("vault.claim_signer.read_failed", path=self._secret_path)
            return None
        if not payload:
            return None

        data = payload.get("data") or {}
        if "data" in data:
            data = data["data"] or {}
        private_key = data.get("private_key")
        if not private_key:
            logger.warning("vault.claim_signer.missing_private_key", path=self._secret_path)
            return None

        rotation_hint = data.get("rotation_expires_at")
        expires_at: datetime | None = None
        if rotation_hint:
            try:
                expires_at = ensure_utc(datetime.fromisoformat(rotation_hint))
            except ValueError:
                logger.warning(
                    "vault.claim_signer.invalid_rotation_hint",
                    path=self._secret_path,
                    rotation_expires_at=rotation_hint,
                )
        try:
            return signing_key_from_private_key(str(private_key), expires_at=expires_at)
        except (ValueError, TypeError):
            logger.error("vault.claim_signer.invalid_private_key", path=self._secret_path)
            return None


class SettingsSigningKeySource(SigningKeySource):
    """Fallback source that returns the globally configured signer."""

    def __init__(self, private_key: str | None = None) -> None:
        self._private_key = private_key if private_key is not None else settings.claim_signer_private_key

    async def fetch(self) -> SigningKeyMaterial | None:
        if not self._private_key:
            return None
        try:
            return signing_key_from_private_key(self._private_key)
        except (ValueError, TypeError):
            logger.error("settings.claim_signer.invalid_private_key")
            return None


class CompositeSigningKeySource(SigningKeySource):
    """Attempts multiple key sources in sequence until one returns a signer."""

    def __init__(self, sources: Sequence[SigningKeySource]) -> None:
        self._sources = list(sources)

    async def fetch(self) -> SigningKeyMaterial | None:
        for source in self._sources:
            material = await source.fetch()
            if material is not None:
                return material
        return None


class SigningKeyResolver:
    """Caches the resolved signer and enforces the optional signer allow-list."""

    def __init__(
        self,
        source: SigningKeySource,
        *,
        cache_ttl: timedelta | None = None,
        allowed_addresses: Sequence[str] | None = None,
    ) -> None:
        self._source = source
        self._cache_ttl = cache_ttl or timedelta(seconds=settings.claim_signer_cache_ttl_seconds)
        allowed = settings.claim_signer_allowed_addresses if allowed_addresses is None else allowed_addresses
        self._allowed = {address.lower() for address in allowed}
        self._cached: SigningKeyMaterial | None = None
        self._cached_until: datetime | None = None
        self._lock = asyncio.Lock()

    async def get(self) -> SigningKeyMaterial:
        """Return the signer, raising ``SigningKeyUnavailableError`` when none is usable."""

        now = datetime.now(timezone.utc)
        if self._cached is not None and self._cached_until and now < self._cached_until:
            return self._cached

        async with self._lock:
            now = datetime.now(timezone.utc)
            if self._cached is not None and self._cached_until and now < self._cached_until:
                return self._cached

            material = await self._source.fetch()
            if material is None:
                self.invalidate()
                raise SigningKeyUnavailableError("No claim signing key is configured")
            if self._allowed and material.address.lower() not in self._allowed:
                self.invalidate()
                logger.error("Claim signer is not in the allowed signer list", signer=material.address)
                raise SigningKeyUnavailableError("Resolved claim signer is not an allowed signer")

            cached_until = now + self._cache_ttl
            if material.expires_at and material.expires_at < cached_until:
                cached_until = material.expires_at
            self._cached = material
            self._cached_until = cached_until
            logger.info("Claim signer resolved", signer=material.address)
            return material

    def invalidate(self) -> None:
        self._cached = None
        self._cached_until = None


def build_default_signing_key_source() -> SigningKeySource:
    """Construct the default key source hierarchy."""

    sources: list[SigningKeySource] = []
    if settings.vault_addr and settings.vault_token and settings.claim_signer_vault_path:
        client = HttpVaultClient(
            base_url=settings.vault_addr,
            token=settings.vault_token,
            namespace=settings.vault_namespace,
            timeout_seconds=settings.vault_timeout_seconds,
        )
        sources.append(VaultSigningKeySource(client, secret_path=settings.claim_signer_vault_path))
    sources.append(SettingsSigningKeySource())
    return CompositeSigningKeySource(sources)


@lru_cache(maxsize=1)
def build_default_signing_key_resolver() -> SigningKeyResolver:
    """Factory that wires the resolver with the configured key sources."""

    return SigningKeyResolver(build_default_signing_key_source())


__all__ = [
    "CompositeSigningKeySource",
    "HttpVaultClient",
    "SettingsSigningKeySource",
    "SigningKeyMaterial",
    "SigningKeyResolver",
    "SigningKeySource",
    "SigningKeyUnavailableError",
    "VaultClientProtocol",
    "VaultRequestError",
    "VaultSigningKeySource",
    "build_default_signing_key_resolver",
    "build_default_signing_key_source",
    "signing_key_from_private_key",
]
