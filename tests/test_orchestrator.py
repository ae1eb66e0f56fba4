import uuid

import httpx
import pytest

from mailroom.core.credentials import TokenCache
from mailroom.core.exceptions import ProviderHTTPError
from mailroom.crud.recipients import RecipientCRUD
from mailroom.models.recipient import Recipient
from mailroom.schemas.addresses import AddressInput, AddressValidationRequest, ValidationResult
from mailroom.schemas.recipients import RecipientAddressUpdate
from mailroom.services.orchestrator import UnknownProviderError, ValidationOrchestrator
from mailroom.services.providers.googlemaps import GoogleMapsAdapter
from mailroom.services.providers.usps import UspsAdapter
from mailroom.services.retry import RetryPolicy

VALIDATED_FIELDS = (
    "validated_address1",
    "validated_address2",
    "validated_city",
    "validated_state",
    "validated_zipcode",
    "validated_country",
)


def orchestrator_for(providers, sleeps, **kwargs):
    kwargs.setdefault("international", "intl")
    return ValidationOrchestrator(
        {p.name: p for p in providers},
        policy=RetryPolicy(3, (1, 5, 30)),
        sleep=sleeps,
        **kwargs,
    )


def test_unknown_configured_provider_is_rejected(stub_adapter, make_valid_result):
    with pytest.raises(UnknownProviderError):
        ValidationOrchestrator({"intl": stub_adapter("intl", make_valid_result())}, international="intl", domestic="usps")


def test_prepare_normalizes_home_address(stub_adapter, make_valid_result, sleeps):
    orchestrator = orchestrator_for([stub_adapter("intl", make_valid_result())], sleeps)

    prepared = orchestrator.prepare(AddressInput(address1="1 Main St", state="Illinois", country="USA"))

    assert prepared.country == "US"
    assert prepared.state == "IL"


def test_prepare_leaves_foreign_region_alone(stub_adapter, make_valid_result, sleeps):
    orchestrator = orchestrator_for([stub_adapter("intl", make_valid_result())], sleeps)

    prepared = orchestrator.prepare(AddressInput(address1="Marienplatz 1", state="Bavaria", country="Deutschland"))
    unknown = orchestrator.prepare(AddressInput(address1="1 Coral Way", state="Deep", country="Atlantis"))

    assert (prepared.country, prepared.state) == ("DE", "Bavaria")
    assert (unknown.country, unknown.state) == (None, "Deep")


def test_prepare_fills_blank_country_with_home(stub_adapter, make_valid_result, sleeps):
    orchestrator = orchestrator_for([stub_adapter("intl", make_valid_result())], sleeps)

    prepared = orchestrator.prepare(AddressInput(address1="1 Main St", state="Illinois"))

    assert (prepared.country, prepared.state) == ("US", "IL")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "country, expected",
    [("USA", "domestic"), (None, "domestic"), ("Germany", "intl"), ("Atlantis", "intl")],
)
async def test_routing(stub_adapter, make_valid_result, sleeps, country, expected):
    domestic = stub_adapter("domestic", make_valid_result("domestic"))
    intl = stub_adapter("intl", make_valid_result("intl"))
    orchestrator = orchestrator_for([domestic, intl], sleeps, domestic="domestic")

    result = await orchestrator.validate(AddressInput(address1="1 Main St", country=country))

    assert result.provider == expected
    assert len(domestic.seen) + len(intl.seen) == 1


@pytest.mark.asyncio
async def test_error_falls_through_to_next_provider(stub_adapter, make_valid_result, sleeps):
    domestic = stub_adapter("domestic", ProviderHTTPError("domestic", 503, "", "down"))
    intl = stub_adapter("intl", make_valid_result("intl"))
    orchestrator = orchestrator_for([domestic, intl], sleeps, domestic="domestic")

    result = await orchestrator.validate(AddressInput(address1="1 Main St", country="US"))

    assert result.status == "valid"
    assert result.provider == "intl"
    assert len(domestic.seen) == 3
    assert sleeps.calls == [1, 5]


@pytest.mark.asyncio
async def test_invalid_result_does_not_fall_through(stub_adapter, sleeps):
    domestic = stub_adapter("domestic", ValidationResult.rejected("nope", provider="domestic"))
    intl = stub_adapter("intl", ValidationResult.rejected("nope", provider="intl"))
    orchestrator = orchestrator_for([domestic, intl], sleeps, domestic="domestic")

    result = await orchestrator.validate(AddressInput(address1="1 Main St"))

    assert result.status == "invalid"
    assert intl.seen == []


@pytest.mark.asyncio
async def test_illinois_address_is_validated_and_persisted(credentials, session_factory, make_recipient, sleeps):
    recipient = await make_recipient(state="Illinois", country="USA", address1="1 Main St")
    usps_requests = []

    def handler(request):
        if request.url.path == "/oauth2/v3/token":
            return httpx.Response(200, json={"access_token": "tok", "expires_in": 3600})
        usps_requests.append(request)
        return httpx.Response(
            200,
            json={
                "address": {
                    "streetAddress": "1 MAIN ST",
                    "secondaryAddress": "APT 2",
                    "city": "SPRINGFIELD",
                    "state": "IL",
                    "ZIPCode": "62701",
                    "ZIPPlus4": "1234",
                },
                "additionalInfo": {"DPVConfirmation": "Y"},
            },
        )

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    usps = UspsAdapter(
        client,
        credentials,
        base_url="https://usps.test",
        consumer_key_param="usps-key",
        consumer_secret_param="usps-secret",
        tokens=TokenCache(),
    )
    google = GoogleMapsAdapter(client, credentials, base_url="https://google.test", api_key_param="google-key")
    orchestrator = ValidationOrchestrator(
        {usps.name: usps, google.name: google},
        international="googlemaps",
        domestic="usps",
        sleep=sleeps,
    )

    request = AddressValidationRequest(
        recipient_id=recipient.id,
        address1="1 Main St",
        city="Springfield",
        state="Illinois",
        zipcode="62701",
        country="USA",
    )
    async with session_factory() as session:
        result = await orchestrator.process(session, request)

    assert result.status == "valid"
    assert usps_requests[0].url.params["state"] == "IL"

    async with session_factory() as session:
        stored = await session.get(Recipient, recipient.id)
    assert stored.address_validation_status == "valid"
    assert stored.address_validated_at is not None
    assert all(getattr(stored, name) for name in VALIDATED_FIELDS)
    assert stored.validated_state == "IL"
    assert stored.validated_zipcode == "62701-1234"


@pytest.mark.asyncio
async def test_overridden_record_is_not_overwritten(stub_adapter, make_valid_result, session_factory, make_recipient, sleeps):
    recipient = await make_recipient()
    async with session_factory() as session:
        async with session.begin():
            await RecipientCRUD(session).override(recipient.id, "Approved by admin")

    orchestrator = orchestrator_for([stub_adapter("intl", make_valid_result())], sleeps)
    request = AddressValidationRequest(recipient_id=recipient.id, address1="1 Main St")
    async with session_factory() as session:
        await orchestrator.process(session, request)

    async with session_factory() as session:
        stored = await session.get(Recipient, recipient.id)
    assert stored.address_validation_status == "overridden"
    assert stored.address_validation_message == "Approved by admin"
    assert stored.validated_address1 is None


@pytest.mark.asyncio
async def test_error_after_address_edit_leaves_no_stale_validated_fields(
    stub_adapter, make_valid_result, session_factory, make_recipient, sleeps
):
    recipient = await make_recipient()
    good = orchestrator_for([stub_adapter("intl", make_valid_result())], sleeps)
    bad = orchestrator_for([stub_adapter("intl", ValidationResult.failure("provider down", "intl"))], sleeps)

    async with session_factory() as session:
        await good.process(session, AddressValidationRequest(recipient_id=recipient.id, address1="123 Main St"))
    async with session_factory() as session:
        async with session.begin():
            edited = await RecipientCRUD(session).update_address(
                recipient.id, RecipientAddressUpdate(address1="99 Elm Ave", city="Chicago")
            )
    assert edited.address_validation_status == "pending"
    assert all(getattr(edited, name) is None for name in VALIDATED_FIELDS)

    async with session_factory() as session:
        await good.process(session, AddressValidationRequest(recipient_id=recipient.id, address1="99 Elm Ave"))
    async with session_factory() as session:
        await bad.process(session, AddressValidationRequest(recipient_id=recipient.id, address1="99 Elm Ave"))

    async with session_factory() as session:
        stored = await session.get(Recipient, recipient.id)
    assert (stored.address1, stored.city) == ("99 Elm Ave", "Chicago")
    assert stored.address_validation_status == "error"
    assert stored.address_validation_message == "provider down"
    assert all(getattr(stored, name) is None for name in VALIDATED_FIELDS)


@pytest.mark.asyncio
async def test_missing_recipient_is_a_no_op(stub_adapter, make_valid_result, session_factory, sleeps):
    orchestrator = orchestrator_for([stub_adapter("intl", make_valid_result())], sleeps)

    async with session_factory() as session:
        result = await orchestrator.process(
            session, AddressValidationRequest(recipient_id=uuid.uuid4(), address1="1 Main St")
        )

    assert result.status == "valid"


@pytest.mark.asyncio
async def test_proxy_helpers(stub_adapter, make_valid_result, sleeps):
    suggestions_adapter = stub_adapter("intl", make_valid_result(), supports=("validate", "autocomplete", "resolve"))
    orchestrator = orchestrator_for([suggestions_adapter], sleeps)

    result = await orchestrator.validate_with("intl", AddressInput(address1="1 Main St", country="USA"))
    assert result.status == "valid"
    assert suggestions_adapter.seen[0].country == "US"

    assert await orchestrator.autocomplete("intl", "1 main") == []
    assert (await orchestrator.resolve("intl", "abc")).status == "valid"

    with pytest.raises(UnknownProviderError):
        orchestrator.provider("nope")


@pytest.mark.asyncio
async def test_autocomplete_raises_after_retries(stub_adapter, make_valid_result, sleeps):
    class DownAdapter(stub_adapter):
        async def autocomplete(self, query):
            self.seen.append(query)
            raise ProviderHTTPError("intl", 503, "", "down")

    adapter = DownAdapter("intl", make_valid_result(), supports=("validate", "autocomplete"))
    orchestrator = orchestrator_for([adapter], sleeps)

    with pytest.raises(ProviderHTTPError):
        await orchestrator.autocomplete("intl", "1 main")
    assert adapter.seen == ["1 main"] * 3
