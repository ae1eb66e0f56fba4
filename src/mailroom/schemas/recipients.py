import uuid
from datetime import datetime

from pydantic import ConfigDict, Field

from mailroom.schemas.addresses import CamelModel, PartialAddress, RecordValidationStatus


class RecipientCreate(PartialAddress):
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    mailing_name: str | None = None
    email: str | None = None


class RecipientAddressUpdate(PartialAddress):
    pass


class RecipientOverride(CamelModel):
    message: str | None = None


class RecipientOut(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    first_name: str
    last_name: str
    mailing_name: str | None = None
    email: str | None = None

    address1: str | None = None
    address2: str | None = None
    city: str | None = None
    state: str | None = None
    zipcode: str | None = None
    country: str | None = None

    address_validation_status: RecordValidationStatus
    address_validation_message: str | None = None
    address_validated_at: datetime | None = None

    validated_address1: str | None = None
    validated_address2: str | None = None
    validated_city: str | None = None
    validated_state: str | None = None
    validated_zipcode: str | None = None
    validated_country: str | None = None
