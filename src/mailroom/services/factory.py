import httpx

from mailroom.core.config import Settings
from mailroom.core.credentials import CredentialCache, TokenCache, build_secret_store
from mailroom.services.orchestrator import ValidationOrchestrator
from mailroom.services.providers.registry import build_providers
from mailroom.services.retry import RetryPolicy


def new_http_client(settings: Settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=settings.http_timeout_seconds)


def new_credential_cache(settings: Settings) -> CredentialCache:
    return CredentialCache(build_secret_store(settings.secret_backend, settings.aws_region, settings.secrets))


def queue_retry_policy(settings: Settings) -> RetryPolicy:
    return RetryPolicy.from_settings(settings.retry_max_attempts, settings.retry_backoff)


def proxy_retry_policy(settings: Settings) -> RetryPolicy:
    return RetryPolicy.from_settings(settings.proxy_retry_max_attempts, settings.proxy_retry_backoff)


def build_orchestrator(
    settings: Settings,
    client: httpx.AsyncClient,
    credentials: CredentialCache,
    tokens: TokenCache | None = None,
) -> ValidationOrchestrator:
    providers = build_providers(settings, client, credentials, tokens or TokenCache())
    return ValidationOrchestrator(
        providers,
        international=settings.international_provider,
        domestic=settings.domestic_provider,
        fallback=settings.fallback_provider,
        home_country=settings.home_country,
        policy=queue_retry_policy(settings),
    )
