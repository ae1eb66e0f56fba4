"""Google Maps Address Validation API adapter.

For US addresses the request enables USPS CASS, so the response can carry
``uspsData.dpvConfirmation`` next to Google's own verdict.
"""

import logging
import re

import httpx
from pydantic import Field, ValidationError

from mailroom.core.credentials import CredentialCache
from mailroom.schemas.addresses import AddressInput, ValidatedAddress, ValidationResult
from mailroom.services.normalizer import code_to_country_name, map_country_to_code
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

_UNIT_PREFIX = re.compile(r"\b(apt|apartment|unit|ste|suite)\b\.?|#", re.IGNORECASE)
STANDARDIZED_GRANULARITIES = frozenset({"PREMISE", "SUB_PREMISE", "RANGE_INTERPOLATED"})


class GoogleVerdict(RawModel):
    address_complete: bool | None = Field(default=None, alias="addressComplete")
    validation_granularity: str | None = Field(default=None, alias="validationGranularity")
    has_unconfirmed_components: bool | None = Field(default=None, alias="hasUnconfirmedComponents")
    has_inferred_components: bool | None = Field(default=None, alias="hasInferredComponents")


class GooglePostalAddress(RawModel):
    address_lines: list[str] = Field(default_factory=list, alias="addressLines")
    locality: str | None = None
    administrative_area: str | None = Field(default=None, alias="administrativeArea")
    postal_code: str | None = Field(default=None, alias="postalCode")
    region_code: str | None = Field(default=None, alias="regionCode")


class GoogleAddress(RawModel):
    formatted_address: str | None = Field(default=None, alias="formattedAddress")
    postal_address: GooglePostalAddress | None = Field(default=None, alias="postalAddress")


class GoogleUspsData(RawModel):
    dpv_confirmation: str | None = Field(default=None, alias="dpvConfirmation")


class GoogleResult(RawModel):
    verdict: GoogleVerdict | None = None
    address: GoogleAddress | None = None
    usps_data: GoogleUspsData | None = Field(default=None, alias="uspsData")


class GoogleResponse(RawModel):
    result: GoogleResult | None = None


def verdict_confidence(verdict: GoogleVerdict) -> float:
    if verdict.address_complete is True:
        return 0.9
    if verdict.has_unconfirmed_components is False and verdict.has_inferred_components is False:
        return 0.8
    if verdict.has_inferred_components is True:
        return 0.6
    return 0.5


def unit_already_in_line(unit: str, line: str) -> bool:
    number = _UNIT_PREFIX.sub(" ", unit).strip().lower()
    return not number or number in line.lower()


class GoogleMapsAdapter(ProviderAdapter):
    name = "googlemaps"
    display_name = "Google Maps"

    shape = RequestShape.ADDRESS_LINES
    field_map = {
        "address1": "addressLines[]",
        "address2": "addressLines[]",
        "city": "locality",
        "state": "administrativeArea",
        "zipcode": "postalCode",
        "country": "regionCode",
    }
    field_transforms = {"country": map_country_to_code}

    error_table = {
        (400, None): ErrorEntry(None, "invalid"),
        (401, None): ErrorEntry("Google Maps API key is invalid."),
        (403, None): ErrorEntry(
            "Google Maps API key is not authorized for the Address Validation API. Check the key restrictions."
        ),
        (429, None): ErrorEntry("Google Maps quota exceeded"),
    }

    def __init__(
        self,
        client: httpx.AsyncClient,
        credentials: CredentialCache,
        *,
        base_url: str,
        api_key_param: str,
        home_country: str = "US",
        timeout: float = 20.0,
    ) -> None:
        super().__init__(client, credentials, base_url=base_url, timeout=timeout)
        self.api_key_param = api_key_param
        self.home_country = home_country

    def build_body(self, address: AddressInput) -> dict:
        shaped = self.shape_request(address)
        shaped.setdefault("addressLines", [])
        # CASS only applies to addresses known to be in the home country
        return {
            "address": shaped,
            "enableUspsCass": shaped.get("regionCode") == self.home_country,
        }

    async def validate(self, address: AddressInput) -> ValidationResult:
        api_key = await self.credentials.get(self.api_key_param)

        response = await self._send(
            "POST",
            "/v1:validateAddress",
            json=self.build_body(address),
            headers={"X-Goog-Api-Key": api_key},
        )

        data = self._json(response)
        if not isinstance(data, dict):
            return self._malformed("body is not a JSON object")

        try:
            parsed = GoogleResponse.model_validate(data)
        except ValidationError as exc:
            return self._malformed(str(exc.errors()[0]["msg"]))

        return self.to_result(parsed, address)

    def to_result(self, parsed: GoogleResponse, original: AddressInput) -> ValidationResult:
        if parsed.result is None:
            return ValidationResult.rejected(
                "Address validation failed - no result from Google Maps", provider=self.name
            )

        result = parsed.result
        verdict = result.verdict or GoogleVerdict()
        postal = (result.address.postal_address if result.address else None) or GooglePostalAddress()

        generic = verdict.address_complete is True and verdict.validation_granularity != "OTHER"
        carrier = CarrierSignal.from_dpv(
            result.usps_data.dpv_confirmation if result.usps_data else None,
            present=result.usps_data is not None,
        )
        deliverable = decide_deliverability(carrier, generic)

        lines = postal.address_lines
        address1 = lines[0] if lines else original.address1
        address2 = lines[1] if len(lines) > 1 else None
        if address2 is None and original.address2 and not unit_already_in_line(original.address2, address1):
            address2 = original.address2

        country_code = (postal.region_code or "").upper() or None
        country = code_to_country_name(country_code) or country_code or original.country or ""

        validated = ValidatedAddress(
            address1=address1,
            address2=address2,
            city=postal.locality or original.city or "",
            state=postal.administrative_area or original.state or "",
            zipcode=postal.postal_code or original.zipcode or "",
            country=country,
        )

        if deliverable:
            message = "Address validated by Google Maps"
        else:
            message = "Address found but may not be deliverable"

        return ValidationResult(
            status="valid" if deliverable else "invalid",
            message=message,
            validated_address=validated,
            confidence=verdict_confidence(verdict),
            country_code=country_code,
            formatted=(result.address.formatted_address if result.address else None) or format_validated(validated),
            provider=self.name,
        )
