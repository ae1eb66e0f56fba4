import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from mailroom.crud.recipients import RecipientCRUD
from mailroom.schemas.addresses import AddressInput, AddressValidationRequest, Suggestion, ValidationResult
from mailroom.services.normalizer import is_home_country, map_country_to_code, state_name_to_abbreviation
from mailroom.services.providers.base import ProviderAdapter
from mailroom.services.retry import RetryPolicy, run_validation, with_retry

logger = logging.getLogger(__name__)


class UnknownProviderError(KeyError):
    pass


class ValidationOrchestrator:
    """Routes an address to a provider, runs it under the retry policy and persists the outcome."""

    def __init__(
        self,
        providers: Mapping[str, ProviderAdapter],
        *,
        international: str,
        domestic: str | None = None,
        fallback: str | None = None,
        home_country: str = "US",
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        for name in (international, domestic, fallback):
            if name is not None and name not in providers:
                raise UnknownProviderError(name)

        self.providers = dict(providers)
        self.international = international
        self.domestic = domestic
        self.fallback = fallback
        self.home_country = home_country.upper()
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    def provider(self, name: str) -> ProviderAdapter:
        try:
            return self.providers[name]
        except KeyError:
            raise UnknownProviderError(name) from None

    def is_home(self, address: AddressInput) -> bool:
        return is_home_country(address.country, self.home_country)

    def prepare(self, address: AddressInput) -> AddressInput:
        # blank means home; unrecognized free text is dropped rather than sent to a provider
        home = self.is_home(address)
        country_code = map_country_to_code(address.country)
        if home and country_code is None:
            country_code = self.home_country
        state = address.state
        if state and home:
            state = state_name_to_abbreviation(state)
        return address.model_copy(update={"country": country_code, "state": state})

    def select_providers(self, address: AddressInput) -> list[ProviderAdapter]:
        chain: list[str] = []
        if self.domestic and self.is_home(address):
            chain.append(self.domestic)
        chain.append(self.international)
        if self.fallback:
            chain.append(self.fallback)

        seen: list[str] = []
        for name in chain:
            if name not in seen:
                seen.append(name)
        # only the first entry runs unless it errors out
        return [self.providers[name] for name in seen]

    async def _run(self, adapter: ProviderAdapter, prepared: AddressInput, policy: RetryPolicy) -> ValidationResult:
        return await run_validation(lambda: adapter.validate(prepared), policy, adapter.name, sleep=self._sleep)

    async def validate(self, address: AddressInput) -> ValidationResult:
        prepared = self.prepare(address)
        chain = self.select_providers(address)

        result = ValidationResult.failure("No address provider configured")
        for adapter in chain:
            result = await self._run(adapter, prepared, self.policy)
            if result.status != "error":
                return result
            logger.warning("[%s] returned error for %r: %s", adapter.name, prepared.address1, result.message)

        return result

    async def validate_with(
        self,
        provider_name: str,
        address: AddressInput,
        policy: RetryPolicy | None = None,
    ) -> ValidationResult:
        adapter = self.provider(provider_name)
        return await self._run(adapter, self.prepare(address), policy or self.policy)

    async def autocomplete(self, provider_name: str, query: str, policy: RetryPolicy | None = None) -> list[Suggestion]:
        adapter = self.provider(provider_name)
        outcome = await with_retry(
            lambda: adapter.autocomplete(query),
            policy or self.policy,
            sleep=self._sleep,
            label=f"{adapter.name} autocomplete",
        )
        if outcome.error is not None:
            raise outcome.error
        return outcome.value or []

    async def resolve(self, provider_name: str, suggestion_id: str, policy: RetryPolicy | None = None) -> ValidationResult:
        adapter = self.provider(provider_name)
        return await run_validation(
            lambda: adapter.resolve(suggestion_id), policy or self.policy, adapter.name, sleep=self._sleep
        )

    async def process(self, session: AsyncSession, request: AddressValidationRequest) -> ValidationResult:
        result = await self.validate(request.address_input())

        async with session.begin():
            updated = await RecipientCRUD(session).apply_validation_result(
                request.recipient_id,
                result,
                original_country=request.country,
            )

        if updated:
            logger.info("Recipient %s address validation: %s", request.recipient_id, result.status)
        else:
            logger.info("Recipient %s not updated (missing or overridden)", request.recipient_id)
        return result
