from fastapi import APIRouter

from mailroom.api.v1.endpoints.access_codes import router as access_codes_router
from mailroom.api.v1.endpoints.addresses import router as addresses_router
from mailroom.api.v1.endpoints.recipients import router as recipients_router

router = APIRouter()
router.include_router(addresses_router)
router.include_router(access_codes_router)
router.include_router(recipients_router)
