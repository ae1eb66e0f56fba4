from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from mailroom.core.exceptions import QueueError
from mailroom.crud.recipients import RecipientCRUD
from mailroom.models.recipient import Recipient
from mailroom.schemas.addresses import AddressValidationRequest
from mailroom.services.address_queue import BATCH_JOB, SINGLE_JOB, AddressValidationQueue, chunked


def request_for(recipient):
    return AddressValidationRequest(
        recipient_id=recipient.id,
        address1=recipient.address1,
        city=recipient.city,
        state=recipient.state,
        zipcode=recipient.zipcode,
        country=recipient.country,
    )


async def statuses(session_factory):
    async with session_factory() as session:
        rows = await session.execute(select(Recipient.id, Recipient.address_validation_status))
        return dict(rows.all())


def test_chunked():
    assert [len(c) for c in chunked(list(range(15)), 10)] == [10, 5]
    assert chunked([], 10) == []


@pytest.mark.asyncio
async def test_single_request_uses_single_job(session_factory, make_recipient):
    recipient = await make_recipient()
    redis = AsyncMock()
    queue = AddressValidationQueue(redis)

    async with session_factory() as session:
        queued = await queue.enqueue(session, [request_for(recipient)])

    assert queued == 1
    redis.enqueue_job.assert_awaited_once()
    args, kwargs = redis.enqueue_job.await_args
    assert args[0] == SINGLE_JOB
    assert args[1]["recipientId"] == str(recipient.id)
    assert args[1]["state"] == "Illinois"
    assert kwargs["_expires"] == timedelta(days=14)
    assert (await statuses(session_factory))[recipient.id] == "queued"


@pytest.mark.asyncio
async def test_fifteen_requests_make_two_batches(session_factory, make_recipient):
    recipients = [await make_recipient(address1=f"{n} Main St") for n in range(15)]
    redis = AsyncMock()
    queue = AddressValidationQueue(redis, batch_size=10)

    async with session_factory() as session:
        queued = await queue.enqueue(session, [request_for(r) for r in recipients])

    assert queued == 15
    assert redis.enqueue_job.await_count == 2
    sizes = [len(call.args[1]) for call in redis.enqueue_job.await_args_list]
    assert sizes == [10, 5]
    assert all(call.args[0] == BATCH_JOB for call in redis.enqueue_job.await_args_list)

    assert set((await statuses(session_factory)).values()) == {"queued"}


@pytest.mark.asyncio
async def test_failed_batch_leaves_its_records_pending(session_factory, make_recipient):
    recipients = [await make_recipient(address1=f"{n} Main St") for n in range(12)]
    redis = AsyncMock()
    redis.enqueue_job.side_effect = [None, ConnectionError("redis down")]
    queue = AddressValidationQueue(redis, batch_size=10)

    async with session_factory() as session:
        with pytest.raises(QueueError) as excinfo:
            await queue.enqueue(session, [request_for(r) for r in recipients])

    assert excinfo.value.queued == 10
    current = await statuses(session_factory)
    assert [current[r.id] for r in recipients] == ["queued"] * 10 + ["pending"] * 2


@pytest.mark.asyncio
async def test_overridden_records_are_not_marked_queued(session_factory, make_recipient):
    kept, overridden = await make_recipient(), await make_recipient()
    async with session_factory() as session:
        async with session.begin():
            await RecipientCRUD(session).override(overridden.id)

    queue = AddressValidationQueue(AsyncMock())
    async with session_factory() as session:
        await queue.enqueue(session, [request_for(kept), request_for(overridden)])

    current = await statuses(session_factory)
    assert current[kept.id] == "queued"
    assert current[overridden.id] == "overridden"


@pytest.mark.asyncio
async def test_empty_input_is_rejected():
    with pytest.raises(ValueError):
        await AddressValidationQueue(AsyncMock()).enqueue(None, [])


@pytest.mark.asyncio
async def test_fast_worker_result_is_not_overwritten_by_queued(session_factory, make_recipient, make_valid_result):
    recipients = [await make_recipient(address1=f"{n} Main St") for n in range(3)]
    seen_at_send = []

    async def finish_immediately(name, messages, **kwargs):
        seen_at_send.append(await statuses(session_factory))
        async with session_factory() as session:
            async with session.begin():
                await RecipientCRUD(session).apply_validation_result(recipients[0].id, make_valid_result())

    redis = AsyncMock()
    redis.enqueue_job.side_effect = finish_immediately
    queue = AddressValidationQueue(redis)

    async with session_factory() as session:
        assert await queue.enqueue(session, [request_for(r) for r in recipients]) == 3

    assert [seen_at_send[0][r.id] for r in recipients] == ["queued"] * 3
    current = await statuses(session_factory)
    assert [current[r.id] for r in recipients] == ["valid", "queued", "queued"]


@pytest.mark.asyncio
async def test_failed_single_send_releases_the_record(session_factory, make_recipient):
    recipient = await make_recipient()
    redis = AsyncMock()
    redis.enqueue_job.side_effect = ConnectionError("redis down")

    async with session_factory() as session:
        with pytest.raises(ConnectionError):
            await AddressValidationQueue(redis).enqueue(session, [request_for(recipient)])

    assert (await statuses(session_factory))[recipient.id] == "pending"
