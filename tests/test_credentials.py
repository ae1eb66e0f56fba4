from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from mailroom.core.credentials import (
    CredentialCache,
    SsmSecretStore,
    StaticSecretStore,
    TokenCache,
    build_secret_store,
)
from mailroom.core.exceptions import CredentialError


class CountingStore(StaticSecretStore):
    def __init__(self, values):
        super().__init__(values)
        self.fetches = 0

    async def fetch(self, name):
        self.fetches += 1
        return await super().fetch(name)


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.mark.asyncio
async def test_credential_cache_memoizes():
    store = CountingStore({"/k": "secret"})
    cache = CredentialCache(store)

    assert await cache.get("/k") == "secret"
    assert await cache.get("/k") == "secret"
    assert store.fetches == 1


@pytest.mark.asyncio
async def test_credential_cache_missing_secret():
    cache = CredentialCache(StaticSecretStore({}))
    with pytest.raises(CredentialError):
        await cache.get("/missing")


@pytest.mark.asyncio
async def test_ssm_store_reads_parameter():
    client = MagicMock()
    client.get_parameter.return_value = {"Parameter": {"Value": "abc"}}

    store = SsmSecretStore(client=client)

    assert await store.fetch("/mailroom/key") == "abc"
    client.get_parameter.assert_called_once_with(Name="/mailroom/key", WithDecryption=True)


@pytest.mark.asyncio
async def test_ssm_store_parameter_not_found_is_none():
    client = MagicMock()
    client.get_parameter.side_effect = ClientError(
        {"Error": {"Code": "ParameterNotFound", "Message": "nope"}}, "GetParameter"
    )

    assert await SsmSecretStore(client=client).fetch("/missing") is None


@pytest.mark.asyncio
async def test_ssm_store_other_errors_raise_credential_error():
    client = MagicMock()
    client.get_parameter.side_effect = ClientError(
        {"Error": {"Code": "AccessDeniedException", "Message": "denied"}}, "GetParameter"
    )

    with pytest.raises(CredentialError):
        await SsmSecretStore(client=client).fetch("/denied")


@pytest.mark.asyncio
async def test_token_cache_reuses_until_refresh_margin():
    clock = FakeClock()
    tokens = TokenCache(clock=clock, refresh_margin=300)
    issued = []

    async def fetch():
        issued.append(len(issued) + 1)
        return f"token-{len(issued)}", 3600

    assert await tokens.get_or_fetch("usps", fetch) == "token-1"

    clock.now = 3299
    assert await tokens.get_or_fetch("usps", fetch) == "token-1"

    clock.now = 3300
    assert await tokens.get_or_fetch("usps", fetch) == "token-2"
    assert issued == [1, 2]


@pytest.mark.asyncio
async def test_token_cache_invalidate_and_empty_token():
    tokens = TokenCache(clock=FakeClock())

    async def fetch():
        return "t", 3600

    await tokens.get_or_fetch("usps", fetch)
    tokens.invalidate("usps")

    async def empty():
        return "", 3600

    with pytest.raises(CredentialError):
        await tokens.get_or_fetch("usps", empty)


def test_build_secret_store():
    assert isinstance(build_secret_store("static", None, {"a": "b"}), StaticSecretStore)
    with pytest.raises(ValueError):
        build_secret_store("vault", None, {})
