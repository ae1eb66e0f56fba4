import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from mailroom.core.credentials import CredentialCache, StaticSecretStore
from mailroom.core.db.database import init_models
from mailroom.crud.recipients import RecipientCRUD
from mailroom.schemas.addresses import ValidatedAddress, ValidationResult
from mailroom.schemas.recipients import RecipientCreate
from mailroom.services.providers.base import ProviderAdapter, RequestShape

SECRETS = {
    "usps-key": "consumer-key",
    "usps-secret": "consumer-secret",
    "google-key": "google-api-key",
    "geoapify-key": "geoapify-api-key",
    "addresszen-key": "addresszen-api-key",
}


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'mailroom.db'}")
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
def credentials():
    return CredentialCache(StaticSecretStore(SECRETS))


@pytest.fixture
def sleeps():
    """Records backoff delays instead of sleeping."""
    recorded: list[float] = []

    async def fake_sleep(delay: float) -> None:
        recorded.append(delay)

    fake_sleep.calls = recorded
    return fake_sleep


@pytest.fixture
def make_recipient(session_factory):
    async def _make(**overrides):
        data = {
            "firstName": "Ada",
            "lastName": "Lovelace",
            "address1": "123 Main St",
            "city": "Springfield",
            "state": "Illinois",
            "zipcode": "62701",
            "country": "United States",
            **overrides,
        }
        async with session_factory() as session:
            async with session.begin():
                recipient = await RecipientCRUD(session).create(RecipientCreate.model_validate(data))
        return recipient

    return _make


class StubAdapter(ProviderAdapter):
    """Adapter that replays canned results (or raises canned exceptions)."""

    shape = RequestShape.ADDRESS_LINES
    field_map = {}

    def __init__(self, name, *results, supports=("validate",), required_fields=("address1",), suggestions=()):
        self.name = name
        self.display_name = name.title()
        self.supports = frozenset(supports)
        self.required_fields = tuple(required_fields)
        self.results = list(results)
        self.suggestions = list(suggestions)
        self.seen = []

    def _next(self):
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, BaseException):
            raise result
        return result

    async def validate(self, address):
        self.seen.append(address)
        return self._next()

    async def autocomplete(self, query):
        self.seen.append(query)
        return self.suggestions

    async def resolve(self, suggestion_id):
        self.seen.append(suggestion_id)
        return self._next()


def valid_result(provider="stub", **address):
    fields = {
        "address1": "1 MAIN ST",
        "address2": "APT 2",
        "city": "SPRINGFIELD",
        "state": "IL",
        "zipcode": "62701-1234",
        "country": "United States",
        **address,
    }
    return ValidationResult(
        status="valid",
        message="Address validated",
        validated_address=ValidatedAddress(**fields),
        country_code="US",
        provider=provider,
    )


@pytest.fixture
def stub_adapter():
    return StubAdapter


@pytest.fixture
def make_valid_result():
    return valid_result
