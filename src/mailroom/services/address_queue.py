import asyncio
import logging
from collections.abc import Sequence
from datetime import timedelta
from typing import Any

from arq.connections import ArqRedis
from sqlalchemy.ext.asyncio import AsyncSession

from mailroom.core.exceptions import QueueError
from mailroom.crud.recipients import RecipientCRUD
from mailroom.schemas.addresses import AddressValidationRequest

logger = logging.getLogger(__name__)

SINGLE_JOB = "validate_address"
BATCH_JOB = "validate_address_batch"


def chunked(items: Sequence[Any], size: int) -> list[Sequence[Any]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


def to_message(request: AddressValidationRequest) -> dict[str, Any]:
    return request.model_dump(mode="json", by_alias=True, exclude_none=True)


class AddressValidationQueue:
    def __init__(self, redis: ArqRedis, *, batch_size: int = 10, retention: timedelta = timedelta(days=14)) -> None:
        self.redis = redis
        self.batch_size = max(1, batch_size)
        self.retention = retention

    async def _send_single(self, request: AddressValidationRequest) -> None:
        await self.redis.enqueue_job(SINGLE_JOB, to_message(request), _expires=self.retention)
        logger.info("Queued validation for recipient %s", request.recipient_id)

    async def _send_batch(self, batch: Sequence[AddressValidationRequest]) -> None:
        await self.redis.enqueue_job(BATCH_JOB, [to_message(r) for r in batch], _expires=self.retention)
        logger.info("Queued batch of %d validations", len(batch))

    async def enqueue(self, session: AsyncSession, requests: Sequence[AddressValidationRequest]) -> int:
        if not requests:
            raise ValueError("No validation requests provided")

        # records go to queued first so a fast worker's write-back is never overwritten
        async with session.begin():
            await RecipientCRUD(session).mark_queued(r.recipient_id for r in requests)

        if len(requests) == 1:
            try:
                await self._send_single(requests[0])
            except Exception:
                async with session.begin():
                    await RecipientCRUD(session).release_queued([requests[0].recipient_id])
                raise
            return 1

        batches = chunked(requests, self.batch_size)
        outcomes = await asyncio.gather(*(self._send_batch(b) for b in batches), return_exceptions=True)

        sent: list[AddressValidationRequest] = []
        unsent: list[AddressValidationRequest] = []
        failures: list[BaseException] = []
        for batch, outcome in zip(batches, outcomes):
            if isinstance(outcome, BaseException):
                logger.error("Failed to queue batch of %d validations: %s", len(batch), outcome)
                failures.append(outcome)
                unsent.extend(batch)
            else:
                sent.extend(batch)

        if failures:
            async with session.begin():
                await RecipientCRUD(session).release_queued(r.recipient_id for r in unsent)
            raise QueueError(
                f"{len(failures)} batch(es) could not be queued: {failures[0]}",
                queued=len(sent),
            )

        return len(sent)
