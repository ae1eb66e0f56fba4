import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Literal

import httpx
from pydantic import BaseModel, ConfigDict

from mailroom.core.credentials import CredentialCache
from mailroom.core.exceptions import ProviderHTTPError, UnsupportedOperationError
from mailroom.schemas.addresses import AddressInput, Suggestion, ValidatedAddress, ValidationResult

logger = logging.getLogger(__name__)

MAX_ERROR_BODY = 500


class RequestShape(str, Enum):
    ADDRESS_LINES = "address_lines"
    FREE_TEXT = "free_text"
    QUERY_PARAMS = "query_params"


class CarrierSignal(Enum):
    CONFIRMED = "Y"
    CONFIRMED_DROP = "D"
    CONFIRMED_STREET = "S"
    NOT_DELIVERABLE = "N"
    AMBIGUOUS = "?"
    ABSENT = ""

    @classmethod
    def from_dpv(cls, code: str | None, present: bool = True) -> "CarrierSignal":
        if not present:
            return cls.ABSENT
        if not code:
            return cls.AMBIGUOUS
        try:
            return cls(code.strip().upper())
        except ValueError:
            return cls.AMBIGUOUS

    @property
    def decisive(self) -> bool:
        return self not in (CarrierSignal.AMBIGUOUS, CarrierSignal.ABSENT)

    @property
    def deliverable(self) -> bool:
        return self in (CarrierSignal.CONFIRMED, CarrierSignal.CONFIRMED_DROP, CarrierSignal.CONFIRMED_STREET)


def decide_deliverability(carrier: CarrierSignal, generic: bool) -> bool:
    """Carrier confirmation wins when it says Y/D/S/N; otherwise use the generic verdict."""
    if carrier.decisive:
        return carrier.deliverable
    return generic


@dataclass(frozen=True)
class ErrorEntry:
    message: str | None
    status: Literal["invalid", "error"] = "error"


class RawModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


def join_parts(*parts: str | None, sep: str = ", ") -> str:
    return sep.join(p for p in parts if p)


def format_validated(address: ValidatedAddress) -> str:
    region = join_parts(address.state, address.zipcode, sep=" ")
    return join_parts(address.address1, address.address2, address.city, region, address.country)


class ProviderAdapter(ABC):
    name: ClassVar[str]
    display_name: ClassVar[str]

    shape: ClassVar[RequestShape]
    # AddressInput field -> provider parameter; a "[]" suffix collects into a list
    field_map: ClassVar[dict[str, str]]
    field_transforms: ClassVar[dict[str, Callable[[str], str | None]]] = {}

    required_fields: ClassVar[tuple[str, ...]] = ("address1",)
    supports: ClassVar[frozenset[str]] = frozenset({"validate"})
    # (http status, provider error code or None) -> message/status
    error_table: ClassVar[dict[tuple[int, int | None], ErrorEntry]] = {}

    def __init__(
        self,
        client: httpx.AsyncClient,
        credentials: CredentialCache,
        *,
        base_url: str,
        timeout: float = 20.0,
    ) -> None:
        self.client = client
        self.credentials = credentials
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def shape_request(self, address: AddressInput) -> dict[str, Any]:
        values = address.model_dump()
        payload: dict[str, Any] = {}

        for field, target in self.field_map.items():
            value = values.get(field)
            transform = self.field_transforms.get(field)
            if value and transform is not None:
                value = transform(value)
            if not value:
                continue

            if target.endswith("[]"):
                payload.setdefault(target[:-2], []).append(value)
            elif self.shape is RequestShape.FREE_TEXT and target in payload:
                payload[target] = f"{payload[target]}, {value}"
            else:
                payload[target] = value

        return payload

    def describe_error(self, status_code: int, body: str) -> ErrorEntry:
        data = _parse_json(body)
        code = data.get("code") if isinstance(data, dict) else None
        if not isinstance(code, int):
            code = None

        entry = self.error_table.get((status_code, code)) or self.error_table.get((status_code, None))
        payload_message = self._payload_message(data)

        if entry is not None:
            message = entry.message or payload_message or f"{self.display_name} API error ({status_code})"
            return ErrorEntry(message, entry.status)

        return ErrorEntry(f"{self.display_name} API error ({status_code}): {body[:MAX_ERROR_BODY]}")

    def _payload_message(self, data: Any) -> str | None:
        if not isinstance(data, dict):
            return None
        error = data.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
        if isinstance(error, str):
            return error
        message = data.get("message")
        return message if isinstance(message, str) else None

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        response = await self.client.request(method, f"{self.base_url}{path}", timeout=self.timeout, **kwargs)
        if response.is_success:
            return response

        body = response.text
        entry = self.describe_error(response.status_code, body)
        raise ProviderHTTPError(
            self.name,
            response.status_code,
            body[:MAX_ERROR_BODY],
            entry.message or f"{self.display_name} API error ({response.status_code})",
            entry.status,
        )

    def _json(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            logger.warning("[%s] response body is not JSON", self.name)
            return None

    def _malformed(self, detail: str) -> ValidationResult:
        return ValidationResult.failure(f"Unexpected response from {self.display_name}: {detail}", provider=self.name)

    @abstractmethod
    async def validate(self, address: AddressInput) -> ValidationResult: ...

    async def autocomplete(self, query: str) -> list[Suggestion]:
        raise UnsupportedOperationError(self.name, f"{self.display_name} does not support autocomplete")

    async def resolve(self, suggestion_id: str) -> ValidationResult:
        raise UnsupportedOperationError(self.name, f"{self.display_name} does not support resolve")


def _parse_json(body: str) -> Any:
    try:
        return json.loads(body)
    except ValueError:
        return None
