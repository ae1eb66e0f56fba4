import uuid
from collections.abc import Iterable
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mailroom.models.recipient import ADDRESS_FIELDS, Recipient
from mailroom.schemas.addresses import ValidationResult
from mailroom.schemas.recipients import RecipientAddressUpdate, RecipientCreate

OVERRIDDEN = "overridden"

VALIDATED_FIELDS = (
    "validated_address1",
    "validated_address2",
    "validated_city",
    "validated_state",
    "validated_zipcode",
    "validated_country",
)


class RecipientCRUD:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(self, data: RecipientCreate) -> Recipient:
        recipient = Recipient(**data.model_dump(), address_validation_status="pending")
        self.session.add(recipient)
        await self.session.flush()
        return recipient

    async def get(self, recipient_id: uuid.UUID) -> Recipient | None:
        return await self.session.get(Recipient, recipient_id)

    async def list_by_status(self, status: str, *, limit: int = 50, offset: int = 0) -> list[Recipient]:
        stmt = (
            select(Recipient)
            .where(Recipient.address_validation_status == status)
            .order_by(Recipient.created_at)
            .limit(limit)
            .offset(offset)
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def update_address(self, recipient_id: uuid.UUID, changes: RecipientAddressUpdate) -> Recipient | None:
        recipient = await self.session.get(Recipient, recipient_id)
        if recipient is None:
            return None

        fields = changes.model_dump(exclude_unset=True)
        changed = False
        for name in ADDRESS_FIELDS:
            if name in fields and getattr(recipient, name) != fields[name]:
                setattr(recipient, name, fields[name])
                changed = True

        # any raw address edit invalidates the previous validation, override included
        if changed:
            recipient.address_validation_status = "pending"
            recipient.address_validation_message = None
            recipient.address_validated_at = None
            for name in VALIDATED_FIELDS:
                setattr(recipient, name, None)

        await self.session.flush()
        return recipient

    async def override(self, recipient_id: uuid.UUID, message: str | None = None) -> bool:
        result = await self.session.execute(
            update(Recipient)
            .where(Recipient.id == recipient_id)
            .values(
                address_validation_status=OVERRIDDEN,
                address_validation_message=message or "Address manually approved",
                address_validated_at=datetime.now(timezone.utc),
            )
        )
        return result.rowcount > 0

    async def mark_queued(self, recipient_ids: Iterable[uuid.UUID], message: str = "Queued for validation") -> int:
        ids = list(recipient_ids)
        if not ids:
            return 0

        result = await self.session.execute(
            update(Recipient)
            .where(Recipient.id.in_(ids), Recipient.address_validation_status != OVERRIDDEN)
            .values(address_validation_status="queued", address_validation_message=message)
        )
        return result.rowcount

    async def release_queued(self, recipient_ids: Iterable[uuid.UUID]) -> int:
        """Put records whose job never reached the queue back to pending."""
        ids = list(recipient_ids)
        if not ids:
            return 0

        result = await self.session.execute(
            update(Recipient)
            .where(Recipient.id.in_(ids), Recipient.address_validation_status == "queued")
            .values(address_validation_status="pending", address_validation_message=None)
        )
        return result.rowcount

    async def apply_validation_result(
        self,
        recipient_id: uuid.UUID,
        result: ValidationResult,
        *,
        original_country: str | None = None,
        validated_at: datetime | None = None,
    ) -> bool:
        """Write status, message, timestamp and the validated address in one UPDATE.

        A result without an address clears the validated columns.
        """
        values: dict = {
            "address_validation_status": result.status,
            "address_validation_message": result.message or "",
            "address_validated_at": validated_at or datetime.now(timezone.utc),
        }

        validated = result.validated_address
        if validated is None:
            values.update(dict.fromkeys(VALIDATED_FIELDS))
        else:
            values.update(
                validated_address1=validated.address1,
                validated_address2=validated.address2 or "",
                validated_city=validated.city,
                validated_state=validated.state,
                validated_zipcode=validated.zipcode,
                validated_country=validated.country or original_country or "",
            )

        stmt = (
            update(Recipient)
            .where(Recipient.id == recipient_id, Recipient.address_validation_status != OVERRIDDEN)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return (await self.session.execute(stmt)).rowcount > 0
