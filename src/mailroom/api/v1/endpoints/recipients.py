import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from mailroom.core.db.database import get_db
from mailroom.crud.recipients import RecipientCRUD
from mailroom.schemas.addresses import RecordValidationStatus
from mailroom.schemas.recipients import (
    RecipientAddressUpdate,
    RecipientCreate,
    RecipientOut,
    RecipientOverride,
)

logger = logging.getLogger(__name__)


class RecipientsAPI:
    def __init__(self) -> None:
        self.router = APIRouter(prefix="/v1/recipients", tags=["recipients"])
        self._register_routes()

    def _register_routes(self) -> None:
        self.router.post(
            "",
            response_model=RecipientOut,
            status_code=status.HTTP_201_CREATED,
        )(self.create_recipient)

        self.router.get(
            "",
            response_model=list[RecipientOut],
        )(self.list_recipients)

        self.router.get(
            "/{recipient_id}",
            response_model=RecipientOut,
        )(self.get_recipient)

        self.router.patch(
            "/{recipient_id}/address",
            response_model=RecipientOut,
        )(self.update_address)

        self.router.post(
            "/{recipient_id}/override",
            status_code=status.HTTP_204_NO_CONTENT,
        )(self.override)

    async def create_recipient(
        self,
        payload: RecipientCreate,
        db: AsyncSession = Depends(get_db),
    ) -> RecipientOut:
        async with db.begin():
            recipient = await RecipientCRUD(db).create(payload)
        return RecipientOut.model_validate(recipient)

    async def list_recipients(
        self,
        validation_status: RecordValidationStatus = Query(..., alias="status"),
        limit: int = Query(50, ge=1, le=500),
        offset: int = Query(0, ge=0),
        db: AsyncSession = Depends(get_db),
    ) -> list[RecipientOut]:
        recipients = await RecipientCRUD(db).list_by_status(validation_status, limit=limit, offset=offset)
        return [RecipientOut.model_validate(r) for r in recipients]

    async def get_recipient(
        self,
        recipient_id: uuid.UUID,
        db: AsyncSession = Depends(get_db),
    ) -> RecipientOut:
        recipient = await RecipientCRUD(db).get(recipient_id)
        if recipient is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Recipient not found")
        return RecipientOut.model_validate(recipient)

    async def update_address(
        self,
        recipient_id: uuid.UUID,
        payload: RecipientAddressUpdate,
        db: AsyncSession = Depends(get_db),
    ) -> RecipientOut:
        async with db.begin():
            recipient = await RecipientCRUD(db).update_address(recipient_id, payload)
        if recipient is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Recipient not found")
        return RecipientOut.model_validate(recipient)

    async def override(
        self,
        recipient_id: uuid.UUID,
        payload: RecipientOverride | None = None,
        db: AsyncSession = Depends(get_db),
    ) -> Response:
        async with db.begin():
            found = await RecipientCRUD(db).override(recipient_id, payload.message if payload else None)
        if not found:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Recipient not found")

        logger.info("Recipient %s address manually approved", recipient_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)


recipients_api = RecipientsAPI()
router = recipients_api.router
