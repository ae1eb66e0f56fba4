"""Process-lifetime caches for provider secrets and OAuth tokens.

One ``CredentialCache`` and one ``TokenCache`` are built per process (API lifespan
or arq worker startup) and handed to the provider adapters. Two coroutines racing
on the first fetch may both hit the secret store; the last write wins and both
values are identical.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from mailroom.core.exceptions import CredentialError

logger = logging.getLogger(__name__)


class SecretStore(Protocol):
    async def fetch(self, name: str) -> str | None: ...


class SsmSecretStore:
    def __init__(
        self,
        region_name: str | None = None,
        connect_timeout: float = 5,
        read_timeout: float = 10,
        client=None,
    ) -> None:
        self._client = client or boto3.client(
            "ssm",
            region_name=region_name,
            config=Config(
                connect_timeout=connect_timeout,
                read_timeout=read_timeout,
                retries={"max_attempts": 2, "mode": "standard"},
            ),
        )

    def _get_parameter(self, name: str) -> str | None:
        try:
            response = self._client.get_parameter(Name=name, WithDecryption=True)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == "ParameterNotFound":
                return None
            raise
        return (response.get("Parameter") or {}).get("Value")

    async def fetch(self, name: str) -> str | None:
        try:
            return await asyncio.to_thread(self._get_parameter, name)
        except (BotoCoreError, ClientError) as exc:
            logger.error("SSM lookup failed for %s: %s", name, exc)
            raise CredentialError(f"Failed to retrieve secret {name}") from exc


class StaticSecretStore:
    def __init__(self, values: Mapping[str, str]) -> None:
        self._values = dict(values)

    async def fetch(self, name: str) -> str | None:
        return self._values.get(name)


class CredentialCache:
    def __init__(self, store: SecretStore) -> None:
        self._store = store
        self._values: dict[str, str] = {}

    async def get(self, name: str) -> str:
        cached = self._values.get(name)
        if cached:
            return cached

        value = await self._store.fetch(name)
        if not value:
            raise CredentialError(f"Secret {name} not found in secret store")

        self._values[name] = value
        return value


@dataclass
class CachedToken:
    value: str
    expires_at: float


TokenFetcher = Callable[[], Awaitable[tuple[str, float]]]


class TokenCache:
    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        refresh_margin: float = 300,
    ) -> None:
        self._clock = clock
        self._refresh_margin = refresh_margin
        self._tokens: dict[str, CachedToken] = {}

    async def get_or_fetch(self, key: str, fetch: TokenFetcher) -> str:
        cached = self._tokens.get(key)
        if cached is not None and self._clock() < cached.expires_at:
            return cached.value

        token, expires_in = await fetch()
        if not token:
            raise CredentialError(f"No access token received for {key}")

        self._tokens[key] = CachedToken(
            value=token,
            expires_at=self._clock() + max(float(expires_in) - self._refresh_margin, 0.0),
        )
        return token

    def invalidate(self, key: str) -> None:
        self._tokens.pop(key, None)


def build_secret_store(backend: str, region_name: str | None, values: Mapping[str, str]) -> SecretStore:
    if backend == "ssm":
        return SsmSecretStore(region_name=region_name)
    if backend == "static":
        return StaticSecretStore(values)
    raise ValueError(f"Unknown secret backend: {backend}")
