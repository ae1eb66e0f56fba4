import logging

import httpx
from pydantic import Field, ValidationError

from mailroom.core.credentials import CredentialCache, TokenCache
from mailroom.core.exceptions import CredentialError, ProviderHTTPError
from mailroom.schemas.addresses import AddressInput, ValidatedAddress, ValidationResult
from mailroom.services.normalizer import state_name_to_abbreviation
from mailroom.services.providers.base import (
    CarrierSignal,
    ErrorEntry,
    ProviderAdapter,
    RawModel,
    RequestShape,
    format_validated,
)

logger = logging.getLogger(__name__)


class UspsAddress(RawModel):
    street_address: str | None = Field(default=None, alias="streetAddress")
    secondary_address: str | None = Field(default=None, alias="secondaryAddress")
    city: str | None = None
    state: str | None = None
    zip_code: str | None = Field(default=None, alias="ZIPCode")
    zip_plus4: str | None = Field(default=None, alias="ZIPPlus4")


class UspsAdditionalInfo(RawModel):
    dpv_confirmation: str | None = Field(default=None, alias="DPVConfirmation")
    vacant: str | None = None


class UspsErrorBody(RawModel):
    message: str | None = None


class UspsResponse(RawModel):
    address: UspsAddress | None = None
    additional_info: UspsAdditionalInfo | None = Field(default=None, alias="additionalInfo")
    error: UspsErrorBody | None = None


class UspsAdapter(ProviderAdapter):
    name = "usps"
    display_name = "USPS"

    shape = RequestShape.QUERY_PARAMS
    field_map = {
        "address1": "streetAddress",
        "address2": "secondaryAddress",
        "city": "city",
        "state": "state",
        "zipcode": "ZIPCode",
    }
    field_transforms = {"state": state_name_to_abbreviation}
    required_fields = ("address1", "city", "state")

    error_table = {
        (400, None): ErrorEntry(None, "invalid"),
        (401, None): ErrorEntry("USPS rejected the OAuth token. Check the consumer key and secret."),
        (403, None): ErrorEntry("USPS API access denied for this application."),
        (404, None): ErrorEntry("Address not found", "invalid"),
        (429, None): ErrorEntry("USPS rate limit exceeded"),
        (503, None): ErrorEntry("USPS service unavailable. Please try again later."),
    }

    TOKEN_KEY = "usps"

    def __init__(
        self,
        client: httpx.AsyncClient,
        credentials: CredentialCache,
        *,
        base_url: str,
        consumer_key_param: str,
        consumer_secret_param: str,
        tokens: TokenCache | None = None,
        timeout: float = 20.0,
    ) -> None:
        super().__init__(client, credentials, base_url=base_url, timeout=timeout)
        self.consumer_key_param = consumer_key_param
        self.consumer_secret_param = consumer_secret_param
        self.tokens = tokens or TokenCache()

    async def _fetch_token(self) -> tuple[str, float]:
        consumer_key = await self.credentials.get(self.consumer_key_param)
        consumer_secret = await self.credentials.get(self.consumer_secret_param)

        logger.info("Requesting OAuth token from USPS")
        response = await self.client.post(
            f"{self.base_url}/oauth2/v3/token",
            data={
                "grant_type": "client_credentials",
                "client_id": consumer_key,
                "client_secret": consumer_secret,
            },
            timeout=self.timeout,
        )
        if not response.is_success:
            if response.status_code >= 500 or response.status_code == 429:
                raise ProviderHTTPError(
                    self.name,
                    response.status_code,
                    response.text[:500],
                    f"USPS OAuth token request failed ({response.status_code})",
                )
            raise CredentialError(f"USPS OAuth token request failed: {response.status_code} - {response.text[:200]}")

        data = self._json(response) or {}
        return data.get("access_token") or "", float(data.get("expires_in") or 0)

    async def validate(self, address: AddressInput) -> ValidationResult:
        token = await self.tokens.get_or_fetch(self.TOKEN_KEY, self._fetch_token)

        try:
            response = await self._send(
                "GET",
                "/addresses/v3/address",
                params=self.shape_request(address),
                headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
            )
        except ProviderHTTPError as exc:
            if exc.status_code == 401:
                self.tokens.invalidate(self.TOKEN_KEY)
            raise

        data = self._json(response)
        if not isinstance(data, dict):
            return self._malformed("body is not a JSON object")

        try:
            parsed = UspsResponse.model_validate(data)
        except ValidationError as exc:
            return self._malformed(str(exc.errors()[0]["msg"]))

        return self.to_result(parsed, address)

    def to_result(self, parsed: UspsResponse, original: AddressInput) -> ValidationResult:
        if parsed.address is None:
            message = parsed.error.message if parsed.error and parsed.error.message else None
            return ValidationResult.rejected(message or "Address validation failed - no result from USPS", provider=self.name)

        addr = parsed.address
        zipcode = addr.zip_code or original.zipcode or ""
        if addr.zip_code and addr.zip_plus4:
            zipcode = f"{addr.zip_code}-{addr.zip_plus4}"

        validated = ValidatedAddress(
            address1=addr.street_address or original.address1,
            address2=addr.secondary_address or original.address2,
            city=addr.city or original.city or "",
            state=addr.state or state_name_to_abbreviation(original.state),
            zipcode=zipcode,
            country="United States",
        )

        info = parsed.additional_info
        signal = CarrierSignal.from_dpv(info.dpv_confirmation if info else None, present=info is not None)

        if signal.deliverable:
            status, message = "valid", "Address validated by USPS"
        elif signal is CarrierSignal.NOT_DELIVERABLE:
            status, message = "invalid", "USPS reports this address is not deliverable"
        else:
            status, message = "invalid", "USPS could not confirm deliverability"

        return ValidationResult(
            status=status,
            message=message,
            validated_address=validated,
            country_code="US",
            confidence=1.0 if status == "valid" else 0.0,
            formatted=format_validated(validated),
            provider=self.name,
        )
