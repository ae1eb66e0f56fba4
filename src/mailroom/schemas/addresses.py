import uuid
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

ValidationStatus = Literal["valid", "invalid", "error"]
RecordValidationStatus = Literal["pending", "queued", "valid", "invalid", "error", "overridden"]
ProxyAction = Literal["validate", "autocomplete", "resolve"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _strip_or_none(v: Any) -> Any:
    if isinstance(v, str):
        v = v.strip()
        return v or None
    return v


class PartialAddress(CamelModel):
    address1: str | None = None
    address2: str | None = None
    city: str | None = None
    state: str | None = None
    zipcode: str | None = None
    country: str | None = None

    @field_validator("address1", "address2", "city", "state", "zipcode", "country", mode="before")
    @classmethod
    def strip_blank(cls, v: Any) -> Any:
        if isinstance(v, int):
            v = str(v)
        return _strip_or_none(v)

    def missing(self, required: tuple[str, ...]) -> list[str]:
        return [name for name in required if not getattr(self, name)]


class AddressInput(PartialAddress):
    address1: str = Field(min_length=1)


class ValidatedAddress(CamelModel):
    address1: str = ""
    address2: str | None = None
    city: str = ""
    state: str = ""
    zipcode: str = ""
    country: str = ""


class ValidationResult(CamelModel):
    status: ValidationStatus
    message: str = ""
    validated_address: ValidatedAddress | None = None
    confidence: float | None = Field(default=None, ge=0, le=1)
    country_code: str | None = None
    formatted: str | None = None
    provider: str | None = None
    alternatives: list["ValidationResult"] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_status_invariants(self) -> "ValidationResult":
        if self.status == "valid" and self.validated_address is None:
            raise ValueError("a valid result must carry validated_address")
        if self.status == "error" and not self.message:
            raise ValueError("an error result must carry a message")
        return self

    @classmethod
    def failure(cls, message: str, provider: str | None = None) -> "ValidationResult":
        return cls(status="error", message=message, provider=provider)

    @classmethod
    def rejected(
        cls,
        message: str,
        provider: str | None = None,
        validated_address: ValidatedAddress | None = None,
    ) -> "ValidationResult":
        return cls(status="invalid", message=message, provider=provider, validated_address=validated_address)


class Suggestion(CamelModel):
    id: str
    text: str
    address: ValidatedAddress | None = None


class AddressValidationRequest(AddressInput):
    recipient_id: uuid.UUID

    def address_input(self) -> AddressInput:
        return AddressInput.model_validate(self.model_dump(exclude={"recipient_id"}))


class ProxyRequest(CamelModel):
    action: ProxyAction = "validate"
    address: PartialAddress | None = None
    query: str | None = None
    text: str | None = None
    place_id: str | None = None

    @property
    def search_text(self) -> str | None:
        return _strip_or_none(self.query or self.text)


class EnqueueResponse(BaseModel):
    success: bool = True
    queued: int


class ErrorResponse(BaseModel):
    error: str
    details: Any | None = None
