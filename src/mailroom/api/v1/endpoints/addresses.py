import logging

import httpx
from fastapi import APIRouter, Body, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from mailroom.api.deps import error_response, get_orchestrator, get_proxy_policy, get_queue
from mailroom.core.db.database import get_db
from mailroom.core.exceptions import ProviderError, QueueError
from mailroom.schemas.addresses import (
    AddressInput,
    AddressValidationRequest,
    EnqueueResponse,
    ErrorResponse,
    ProxyRequest,
    ValidationResult,
)
from mailroom.services.address_queue import AddressValidationQueue
from mailroom.services.orchestrator import UnknownProviderError, ValidationOrchestrator
from mailroom.services.retry import RetryPolicy

logger = logging.getLogger(__name__)


class AddressesAPI:
    def __init__(self) -> None:
        self.router = APIRouter(tags=["addresses"])
        self._register_routes()

    def _register_routes(self) -> None:
        self.router.post(
            "/v1/address-validation/queue",
            response_model=EnqueueResponse,
            responses={
                status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
                status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
            },
        )(self.queue_validation)

        self.router.post(
            "/v1/proxy/{provider}",
            response_model=ValidationResult,
            response_model_exclude_none=True,
            responses={
                status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
                status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
                status.HTTP_502_BAD_GATEWAY: {"model": ErrorResponse},
            },
        )(self.proxy)

    async def queue_validation(
        self,
        payload: AddressValidationRequest | list[AddressValidationRequest] = Body(...),
        db: AsyncSession = Depends(get_db),
        queue: AddressValidationQueue = Depends(get_queue),
    ) -> EnqueueResponse | JSONResponse:
        requests = payload if isinstance(payload, list) else [payload]
        if not requests:
            return error_response(status.HTTP_400_BAD_REQUEST, "No validation requests provided")

        try:
            queued = await queue.enqueue(db, requests)
        except QueueError as exc:
            logger.error("Partial queue failure (%d queued): %s", exc.queued, exc)
            return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to queue validation", str(exc))
        except Exception as exc:
            logger.exception("Error queuing validation")
            return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to queue validation", str(exc))

        return EnqueueResponse(queued=queued)

    async def proxy(
        self,
        provider: str,
        payload: ProxyRequest,
        orchestrator: ValidationOrchestrator = Depends(get_orchestrator),
        policy: RetryPolicy = Depends(get_proxy_policy),
    ) -> ValidationResult | JSONResponse:
        try:
            adapter = orchestrator.provider(provider)
        except UnknownProviderError:
            return error_response(status.HTTP_404_NOT_FOUND, f"Unknown provider: {provider}")

        if payload.action not in adapter.supports:
            return error_response(
                status.HTTP_400_BAD_REQUEST, f"{adapter.display_name} does not support action: {payload.action}"
            )

        if payload.action == "autocomplete":
            query = payload.search_text
            if not query:
                return error_response(status.HTTP_400_BAD_REQUEST, "Query is required for autocomplete")
            try:
                suggestions = await orchestrator.autocomplete(provider, query, policy)
            except (ProviderError, httpx.HTTPError) as exc:
                logger.error("[%s] autocomplete failed: %s", provider, exc)
                return error_response(status.HTTP_502_BAD_GATEWAY, "Address autocomplete failed", str(exc))
            return JSONResponse(
                content={"suggestions": [s.model_dump(mode="json", by_alias=True, exclude_none=True) for s in suggestions]}
            )

        if payload.action == "resolve":
            if not payload.place_id:
                return error_response(status.HTTP_400_BAD_REQUEST, "Place ID is required for resolve")
            result = await orchestrator.resolve(provider, payload.place_id, policy)
        else:
            if payload.address is None:
                return error_response(status.HTTP_400_BAD_REQUEST, "Address is required")
            missing = payload.address.missing(adapter.required_fields)
            if missing:
                return error_response(
                    status.HTTP_400_BAD_REQUEST, f"Missing required address fields: {', '.join(missing)}"
                )
            address = AddressInput.model_validate(payload.address.model_dump())
            result = await orchestrator.validate_with(provider, address, policy)

        if result.status == "error":
            return error_response(status.HTTP_502_BAD_GATEWAY, "Failed to validate address", result.message)
        return result


addresses_api = AddressesAPI()
router = addresses_api.router
