import logging

import httpx
from pydantic import Field, ValidationError

from mailroom.core.credentials import CredentialCache
from mailroom.schemas.addresses import AddressInput, Suggestion, ValidatedAddress, ValidationResult
from mailroom.services.providers.base import ErrorEntry, ProviderAdapter, RawModel, RequestShape, join_parts

logger = logging.getLogger(__name__)

CONFIDENCE_THRESHOLD = 0.5
MAX_ALTERNATIVES = 4


class GeoapifyRank(RawModel):
    confidence: float | None = None
    match_type: str | None = None


class GeoapifyPlace(RawModel):
    place_id: str | None = None
    formatted: str | None = None
    address_line1: str | None = None
    housenumber: str | None = None
    street: str | None = None
    city: str | None = None
    state: str | None = None
    state_code: str | None = None
    postcode: str | None = None
    country: str | None = None
    country_code: str | None = None
    rank: GeoapifyRank | None = None


class GeoapifyResponse(RawModel):
    results: list[GeoapifyPlace] = Field(default_factory=list)


class GeoapifyAdapter(ProviderAdapter):
    name = "geoapify"
    display_name = "Geoapify"

    shape = RequestShape.FREE_TEXT
    field_map = {
        "address1": "text",
        "address2": "text",
        "city": "text",
        "state": "text",
        "zipcode": "text",
        "country": "text",
    }
    supports = frozenset({"validate", "autocomplete"})

    error_table = {
        (400, None): ErrorEntry(None, "invalid"),
        (401, None): ErrorEntry("Invalid Geoapify API key. Please check your API key configuration."),
        (403, None): ErrorEntry("Geoapify API key is not allowed to call this API."),
        (429, None): ErrorEntry("Geoapify daily request limit reached"),
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

    async def _search(self, path: str, params: dict) -> GeoapifyResponse | ValidationResult:
        api_key = await self.credentials.get(self.api_key_param)
        response = await self._send("GET", path, params={**params, "apiKey": api_key, "format": "json"})

        data = self._json(response)
        if not isinstance(data, dict):
            return self._malformed("body is not a JSON object")
        try:
            return GeoapifyResponse.model_validate(data)
        except ValidationError as exc:
            return self._malformed(str(exc.errors()[0]["msg"]))

    async def validate(self, address: AddressInput) -> ValidationResult:
        params = self.shape_request(address)
        if address.country and len(address.country) == 2:
            params["filter"] = f"countrycode:{address.country.lower()}"

        parsed = await self._search("/v1/geocode/search", params)
        if isinstance(parsed, ValidationResult):
            return parsed

        if not parsed.results:
            return ValidationResult.rejected("Address not found or could not be validated", provider=self.name)

        primary, *rest = [self.place_to_result(place, address) for place in parsed.results]
        primary.alternatives = rest[:MAX_ALTERNATIVES]
        return primary

    async def autocomplete(self, query: str) -> list[Suggestion]:
        parsed = await self._search("/v1/geocode/autocomplete", {"text": query})
        if isinstance(parsed, ValidationResult):
            logger.warning("[geoapify] autocomplete returned an unusable body: %s", parsed.message)
            return []

        suggestions: list[Suggestion] = []
        for index, place in enumerate(parsed.results):
            validated = self.place_to_address(place)
            suggestions.append(
                Suggestion(
                    id=place.place_id or str(index),
                    text=place.formatted or join_parts(validated.address1, validated.city, validated.country),
                    address=validated,
                )
            )
        return suggestions

    def place_to_address(self, place: GeoapifyPlace, original: AddressInput | None = None) -> ValidatedAddress:
        street = join_parts(place.housenumber, place.street, sep=" ") or place.address_line1
        return ValidatedAddress(
            address1=street or (original.address1 if original else ""),
            address2=original.address2 if original else None,
            city=place.city or (original.city if original else None) or "",
            state=place.state_code or place.state or (original.state if original else None) or "",
            zipcode=place.postcode or (original.zipcode if original else None) or "",
            country=place.country or (original.country if original else None) or "",
        )

    def place_to_result(self, place: GeoapifyPlace, original: AddressInput) -> ValidationResult:
        confidence = min(max((place.rank.confidence if place.rank else None) or 0.0, 0.0), 1.0)
        validated = self.place_to_address(place, original)
        deliverable = confidence >= CONFIDENCE_THRESHOLD

        return ValidationResult(
            status="valid" if deliverable else "invalid",
            message=(
                "Address validated by Geoapify"
                if deliverable
                else f"Low confidence match ({confidence:.2f}) from Geoapify"
            ),
            validated_address=validated,
            confidence=confidence,
            country_code=(place.country_code or "").upper() or None,
            formatted=place.formatted,
            provider=self.name,
        )
