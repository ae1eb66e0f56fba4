import httpx

from mailroom.core.config import Settings
from mailroom.core.credentials import CredentialCache, TokenCache
from mailroom.services.providers.addresszen import AddressZenAdapter
from mailroom.services.providers.base import ProviderAdapter
from mailroom.services.providers.geoapify import GeoapifyAdapter
from mailroom.services.providers.googlemaps import GoogleMapsAdapter
from mailroom.services.providers.usps import UspsAdapter

PROVIDER_NAMES = (UspsAdapter.name, GoogleMapsAdapter.name, GeoapifyAdapter.name, AddressZenAdapter.name)


def build_providers(
    settings: Settings,
    client: httpx.AsyncClient,
    credentials: CredentialCache,
    tokens: TokenCache | None = None,
) -> dict[str, ProviderAdapter]:
    timeout = settings.http_timeout_seconds
    adapters: list[ProviderAdapter] = [
        UspsAdapter(
            client,
            credentials,
            base_url=settings.usps_base_url,
            consumer_key_param=settings.usps_consumer_key_param,
            consumer_secret_param=settings.usps_consumer_secret_param,
            tokens=tokens,
            timeout=timeout,
        ),
        GoogleMapsAdapter(
            client,
            credentials,
            base_url=settings.googlemaps_base_url,
            api_key_param=settings.googlemaps_api_key_param,
            home_country=settings.home_country,
            timeout=timeout,
        ),
        GeoapifyAdapter(
            client,
            credentials,
            base_url=settings.geoapify_base_url,
            api_key_param=settings.geoapify_api_key_param,
            timeout=timeout,
        ),
        AddressZenAdapter(
            client,
            credentials,
            base_url=settings.addresszen_base_url,
            api_key_param=settings.addresszen_api_key_param,
            timeout=timeout,
        ),
    ]
    return {adapter.name: adapter for adapter in adapters}
