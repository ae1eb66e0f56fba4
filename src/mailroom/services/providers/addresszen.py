import logging

import httpx
from pydantic import Field, ValidationError

from mailroom.core.credentials import CredentialCache
from mailroom.schemas.addresses import AddressInput, Suggestion, ValidatedAddress, ValidationResult
from mailroom.services.normalizer import code_to_country_name
from mailroom.services.providers.base import (
    CarrierSignal,
    ErrorEntry,
    ProviderAdapter,
    RawModel,
    RequestShape,
    decide_deliverability,
    format_validated,
)

logger = logging.getLogger(__name__)

FOUND_MARKER = "delivery address was found"


class AddressZenMatch(RawModel):
    dpv: str | None = None
    address1: str | None = None
    address2: str | None = None
    city: str | None = None
    state: str | None = None
    country_code: str | None = None


class AddressZenAddress(RawModel):
    address_line_one: str | None = None
    address_line_two: str | None = None
    address1: str | None = None
    address2: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    zipcode: str | None = None
    country: str | None = None
    country_iso_2: str | None = None
    formatted: str | None = None
    match: AddressZenMatch | None = None
    match_information: str | None = None
    confidence: float | None = None
    count: int | None = None


class AddressZenResponse(RawModel):
    result: AddressZenAddress | None = None
    code: int | None = None
    message: str | None = None


class AddressZenHit(RawModel):
    id: str | None = None
    place_id: str | None = None
    formatted: str | None = None
    suggestion: str | None = None


class AddressZenAutocompleteResponse(RawModel):
    suggestions: list[AddressZenHit] = Field(default_factory=list)


class AddressZenAdapter(ProviderAdapter):
    name = "addresszen"
    display_name = "AddressZen"

    shape = RequestShape.FREE_TEXT
    field_map = {
        "address1": "query",
        "address2": "query",
        "city": "query",
        "state": "query",
        "zipcode": "query",
    }
    supports = frozenset({"validate", "autocomplete", "resolve"})

    error_table = {
        (402, 4020): ErrorEntry("AddressZen API key balance depleted. Please purchase more lookups."),
        (402, 4021): ErrorEntry(
            "AddressZen daily limit reached. Please wait for the limit to reset or increase your limit."
        ),
        (401, 4010): ErrorEntry("Invalid AddressZen API key. Please check your API key configuration."),
        (401, 4011): ErrorEntry(
            "Requesting URL not on whitelist. Please update allowed URLs in your API key settings."
        ),
        (400, None): ErrorEntry(None, "invalid"),
        (404, None): ErrorEntry(None, "invalid"),
        (500, None): ErrorEntry("AddressZen server error. Please try again later or contact support."),
        (503, None): ErrorEntry(
            "AddressZen rate limit exceeded (30 requests/second). Please slow down your requests."
        ),
    }

    def __init__(
        self,
        client: httpx.AsyncClient,
        credentials: CredentialCache,
        *,
        base_url: str,
        api_key_param: str,
        timeout: float = 20.0,
    ) -> None:
        super().__init__(client, credentials, base_url=base_url, timeout=timeout)
        self.api_key_param = api_key_param

    async def _api_key(self) -> str:
        return await self.credentials.get(self.api_key_param)

    def _parse(self, response: httpx.Response) -> AddressZenResponse | ValidationResult:
        data = self._json(response)
        if not isinstance(data, dict):
            return self._malformed("body is not a JSON object")
        try:
            return AddressZenResponse.model_validate(data)
        except ValidationError as exc:
            return self._malformed(str(exc.errors()[0]["msg"]))

    async def validate(self, address: AddressInput) -> ValidationResult:
        api_key = await self._api_key()
        body = self.shape_request(address)
        body.setdefault("query", address.address1)

        response = await self._send(
            "POST",
            "/v1/verify/addresses",
            params={"api_key": api_key},
            json=body,
            headers={"Accept": "application/json"},
        )
        parsed = self._parse(response)
        if isinstance(parsed, ValidationResult):
            return parsed

        if parsed.result is None:
            return ValidationResult.rejected(
                parsed.message or "Address not found or could not be verified", provider=self.name
            )
        return self.verified_to_result(parsed.result, address)

    def verified_to_result(self, result: AddressZenAddress, original: AddressInput) -> ValidationResult:
        match = result.match or AddressZenMatch()
        country_code = (result.country_iso_2 or match.country_code or "US").upper()

        validated = ValidatedAddress(
            address1=result.address_line_one or match.address1 or original.address1,
            address2=result.address_line_two or match.address2 or original.address2,
            city=result.city or match.city or original.city or "",
            state=result.state or match.state or original.state or "",
            zipcode=result.zip_code or original.zipcode or "",
            country=code_to_country_name(country_code) or original.country or "",
        )

        info = result.match_information or ""
        deliverable = decide_deliverability(
            CarrierSignal.from_dpv(match.dpv, present=result.match is not None),
            FOUND_MARKER in info.lower(),
        )

        if result.confidence is not None:
            confidence = min(max(result.confidence, 0.0), 1.0)
        else:
            confidence = 1.0 if result.count == 1 else 0.0

        if deliverable:
            message = "Address validated by AddressZen"
        elif "not found" in info.lower():
            message = info
        else:
            message = "Address found but may not be deliverable"

        return ValidationResult(
            status="valid" if deliverable else "invalid",
            message=message,
            validated_address=validated,
            confidence=confidence,
            country_code=country_code,
            formatted=format_validated(validated),
            provider=self.name,
        )

    async def autocomplete(self, query: str) -> list[Suggestion]:
        api_key = await self._api_key()
        response = await self._send(
            "GET",
            "/v1/autocomplete/addresses",
            params={"api_key": api_key, "query": query},
            headers={"Accept": "application/json"},
        )

        data = self._json(response)
        if not isinstance(data, dict):
            return []
        try:
            parsed = AddressZenAutocompleteResponse.model_validate(data.get("result") or data)
        except ValidationError:
            logger.warning("[addresszen] autocomplete body did not match the expected shape")
            return []

        suggestions = []
        for hit in parsed.suggestions:
            suggestion_id = hit.id or hit.place_id
            text = hit.suggestion or hit.formatted
            if suggestion_id and text:
                suggestions.append(Suggestion(id=suggestion_id, text=text))
        return suggestions

    async def resolve(self, suggestion_id: str) -> ValidationResult:
        api_key = await self._api_key()
        response = await self._send(
            "GET",
            "/v1/resolve/addresses",
            params={"api_key": api_key, "place_id": suggestion_id},
            headers={"Accept": "application/json"},
        )
        parsed = self._parse(response)
        if isinstance(parsed, ValidationResult):
            return parsed

        if parsed.result is None:
            return ValidationResult.rejected("Address not found or could not be resolved", provider=self.name)

        result = parsed.result
        address1 = result.address_line_one or result.address1
        if not address1:
            return ValidationResult.rejected("Resolved address has no street line", provider=self.name)

        country_code = (result.country_iso_2 or "").upper() or None
        validated = ValidatedAddress(
            address1=address1,
            address2=result.address_line_two or result.address2,
            city=result.city or "",
            state=result.state or "",
            zipcode=result.zip_code or result.zipcode or "",
            country=result.country or code_to_country_name(country_code) or country_code or "",
        )
        return ValidationResult(
            status="valid",
            message="Address resolved by AddressZen",
            validated_address=validated,
            confidence=min(max(result.confidence if result.confidence is not None else 1.0, 0.0), 1.0),
            country_code=country_code,
            formatted=result.formatted or format_validated(validated),
            provider=self.name,
        )
