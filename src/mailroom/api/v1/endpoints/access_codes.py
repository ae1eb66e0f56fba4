import logging

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from mailroom.core.db.database import get_db
from mailroom.schemas.access_codes import (
    AccessCodeCreate,
    AccessCodeLookup,
    AccessCodeOut,
    AccessCodeRedeem,
    AccessCodeRedeemResult,
)
from mailroom.services.access_codes import AccessCodeService

logger = logging.getLogger(__name__)

MSG_INTERNAL = "Unable to validate access code. Please try again later."


class AccessCodesAPI:
    def __init__(self, service: AccessCodeService | None = None) -> None:
        self.service = service or AccessCodeService()
        self.router = APIRouter(prefix="/v1/access-codes", tags=["access-codes"])
        self._register_routes()

    def _register_routes(self) -> None:
        self.router.post(
            "/validate",
            response_model=AccessCodeLookup,
            response_model_exclude_none=True,
        )(self.validate_code)

        self.router.post(
            "/redeem",
            response_model=AccessCodeRedeemResult,
        )(self.redeem_code)

        self.router.post(
            "",
            response_model=list[AccessCodeOut],
            status_code=status.HTTP_201_CREATED,
        )(self.create_codes)

    async def validate_code(
        self,
        request: Request,
        db: AsyncSession = Depends(get_db),
    ) -> AccessCodeLookup | JSONResponse:
        # malformed bodies are answered like a blank code, never with a 4xx
        try:
            body = await request.json()
        except ValueError:
            body = None

        raw = body.get("code") if isinstance(body, dict) else None
        if raw is not None and not isinstance(raw, str):
            raw = str(raw)

        try:
            return await self.service.lookup(db, raw)
        except Exception:
            logger.exception("Error validating access code")
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"valid": False, "exists": False, "message": MSG_INTERNAL},
            )

    async def redeem_code(
        self,
        payload: AccessCodeRedeem,
        db: AsyncSession = Depends(get_db),
    ) -> AccessCodeRedeemResult:
        redeemed = await self.service.redeem(db, payload.code, payload.user_id)
        return AccessCodeRedeemResult(redeemed=redeemed)

    async def create_codes(
        self,
        payload: AccessCodeCreate,
        db: AsyncSession = Depends(get_db),
    ) -> list[AccessCodeOut]:
        rows = await self.service.create_codes(
            db,
            payload.count,
            recipient_name=payload.recipient_name,
            recipient_address=payload.recipient_address,
        )
        logger.info("Created %d access codes for %s", len(rows), payload.recipient_name)
        return [AccessCodeOut.model_validate(row) for row in rows]


access_codes_api = AccessCodesAPI()
router = access_codes_api.router
