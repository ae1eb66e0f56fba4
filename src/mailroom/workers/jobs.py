import asyncio
import logging
from typing import Any

from pydantic import ValidationError

from mailroom.crud.recipients import RecipientCRUD
from mailroom.schemas.addresses import AddressValidationRequest, ValidationResult

logger = logging.getLogger(__name__)

MSG_TIMED_OUT = "Validation timed out. It will be retried later."


async def _record_timeout(ctx: dict[str, Any], request: AddressValidationRequest) -> ValidationResult:
    result = ValidationResult.failure(MSG_TIMED_OUT)
    async with ctx["session_factory"]() as session:
        async with session.begin():
            await RecipientCRUD(session).apply_validation_result(
                request.recipient_id, result, original_country=request.country
            )
    return result


async def validate_address(ctx: dict[str, Any], message: dict[str, Any]) -> str:
    try:
        request = AddressValidationRequest.model_validate(message)
    except ValidationError as exc:
        # redelivery would fail the same way
        logger.error("Dropping malformed validation message: %s", exc.errors())
        return "rejected"

    timeout = ctx.get("message_timeout")
    async with ctx["session_factory"]() as session:
        try:
            result = await asyncio.wait_for(ctx["orchestrator"].process(session, request), timeout)
        except asyncio.TimeoutError:
            logger.warning("Validation for recipient %s exceeded %ss", request.recipient_id, timeout)
            result = None

    if result is None:
        result = await _record_timeout(ctx, request)
    return result.status


async def validate_address_batch(ctx: dict[str, Any], messages: list[dict[str, Any]]) -> dict[str, int]:
    processed = failed = 0

    for index, message in enumerate(messages, start=1):
        try:
            status = await validate_address(ctx, message)
        except Exception:
            failed += 1
            logger.exception(
                "Error processing validation message %d/%d (recipient %s)",
                index,
                len(messages),
                message.get("recipientId") if isinstance(message, dict) else None,
            )
            continue

        if status == "rejected":
            failed += 1
        else:
            processed += 1

    logger.info("Validation batch done: %d processed, %d failed", processed, failed)
    return {"processed": processed, "failed": failed}
