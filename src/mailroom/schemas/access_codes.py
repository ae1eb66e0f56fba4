import uuid
from datetime import datetime

from pydantic import ConfigDict, Field

from mailroom.schemas.addresses import CamelModel


class AccessCodeLookup(CamelModel):
    valid: bool
    exists: bool
    used: bool | None = None
    message: str
    code_id: uuid.UUID | None = None


class AccessCodeCreate(CamelModel):
    count: int = Field(default=1, ge=1, le=10_000)
    recipient_name: str = Field(min_length=1)
    recipient_address: str | None = None


class AccessCodeOut(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    code: str
    recipient_name: str
    used: bool
    used_at: datetime | None = None


class AccessCodeRedeem(CamelModel):
    code: str
    user_id: uuid.UUID | None = None


class AccessCodeRedeemResult(CamelModel):
    redeemed: bool
