from datetime import datetime, timedelta, timezone

import pytest
from eth_account import Account

from rewardledger_api.services.secrets.signing_keys import (
    CompositeSigningKeySource,
    SettingsSigningKeySource,
    SigningKeyResolver,
    SigningKeyUnavailableError,
    VaultRequestError,
    VaultSigningKeySource,
    signing_key_from_private_key,
)


class _StubVaultClient:
    def __init__(self, payload=None, error: Exception | None = None) -> None:
        self.payload = payload
        self.error = error
        self.paths: list[str] = []

    async def read_secret(self, path: str):
        self.paths.append(path)
        if self.error is not None:
            raise self.error
        return self.payload


class _CountingSource:
    def __init__(self, private_key: str | None) -> None:
        self.private_key = private_key
        self.calls = 0

    async def fetch(self):
        self.calls += 1
        if not self.private_key:
            return None
        return signing_key_from_private_key(self.private_key)


@pytest.mark.asyncio
async def test_settings_source_resolves_address(signer_key) -> None:
    material = await SettingsSigningKeySource(signer_key).fetch()

    assert material is not None
    assert material.address == Account.from_key(signer_key).address
    assert signer_key not in repr(material)


@pytest.mark.asyncio
async def test_settings_source_without_key_returns_none() -> None:
    assert await SettingsSigningKeySource("").fetch() is None


@pytest.mark.asyncio
async def test_vault_source_reads_kv2_payload(signer_key) -> None:
    client = _StubVaultClient(
        {"data": {"data": {"private_key": signer_key, "rotation_expires_at": "2030-01-01T00:00:00+00:00"}}}
    )
    source = VaultSigningKeySource(client, secret_path="/secret/data/claims/signer/")

    material = await source.fetch()

    assert client.paths == ["secret/data/claims/signer"]
    assert material.address == Account.from_key(signer_key).address
    assert material.expires_at == datetime(2030, 1, 1, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_composite_falls_back_when_vault_fails(signer_key) -> None:
    vault = VaultSigningKeySource(_StubVaultClient(error=VaultRequestError("boom")), secret_path="secret/x")
    composite = CompositeSigningKeySource([vault, SettingsSigningKeySource(signer_key)])

    material = await composite.fetch()

    assert material.address == Account.from_key(signer_key).address


@pytest.mark.asyncio
async def test_resolver_caches_until_ttl(signer_key) -> None:
    source = _CountingSource(signer_key)
    resolver = SigningKeyResolver(source, cache_ttl=timedelta(minutes=5), allowed_addresses=[])

    first = await resolver.get()
    second = await resolver.get()
    assert first is second
    assert source.calls == 1

    resolver.invalidate()
    await resolver.get()
    assert source.calls == 2


@pytest.mark.asyncio
async def test_resolver_raises_without_signer() -> None:
    resolver = SigningKeyResolver(_CountingSource(None), allowed_addresses=[])

    with pytest.raises(SigningKeyUnavailableError):
        await resolver.get()


@pytest.mark.asyncio
async def test_resolver_enforces_allow_list(signer_key) -> None:
    signer = Account.from_key(signer_key).address
    allowed = SigningKeyResolver(_CountingSource(signer_key), allowed_addresses=[signer.lower()])
    assert (await allowed.get()).address == signer

    blocked = SigningKeyResolver(
        _CountingSource(signer_key),
        allowed_addresses=["0x0000000000000000000000000000000000000001"],
    )
    with pytest.raises(SigningKeyUnavailableError):
        await blocked.get()


@pytest.mark.asyncio
async def test_naive_rotation_hint_is_read_as_utc(signer_key) -> None:
    client = _StubVaultClient({"data": {"private_key": signer_key, "rotation_expires_at": "2030-01-01T00:00:00"}})
    resolver = SigningKeyResolver(VaultSigningKeySource(client, secret_path="secret/claims"), allowed_addresses=[])

    material = await resolver.get()

    assert material.expires_at == datetime(2030, 1, 1, tzinfo=timezone.utc)
    assert (await resolver.get()).address == material.address
    assert len(client.paths) == 1
