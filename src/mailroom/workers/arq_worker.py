from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from arq.connections import RedisSettings
from arq.worker import func

from mailroom.core.config import settings
from mailroom.core.credentials import TokenCache
from mailroom.core.db.database import async_session_factory
from mailroom.core.logging_setup import setup_logger
from mailroom.services.factory import build_orchestrator, new_credential_cache, new_http_client
from mailroom.workers.jobs import validate_address, validate_address_batch

JOB_TIMEOUT_GRACE = 30


def _redis_settings_from_url(url: str) -> RedisSettings:
    u = urlparse(url)
    db = int((u.path or "/0").lstrip("/") or 0)
    return RedisSettings(
        host=u.hostname or "localhost",
        port=u.port or 6379,
        database=db,
        password=u.password,
        ssl=(u.scheme == "rediss"),
    )


async def startup(ctx: dict[str, Any]) -> None:
    setup_logger(level=settings.log_level, log_dir=Path(settings.log_dir) if settings.log_dir else None)

    ctx["http_client"] = new_http_client(settings)
    ctx["orchestrator"] = build_orchestrator(
        settings,
        ctx["http_client"],
        new_credential_cache(settings),
        TokenCache(),
    )
    ctx["session_factory"] = async_session_factory
    ctx["message_timeout"] = settings.worker_message_timeout


async def shutdown(ctx: dict[str, Any]) -> None:
    client = ctx.get("http_client")
    if client is not None:
        await client.aclose()


class WorkerSettings:
    redis_settings = _redis_settings_from_url(settings.redis_url)
    # each message has its own timeout; arq only cancels a job that outlives all of them
    functions = [
        func(validate_address, timeout=settings.worker_message_timeout + JOB_TIMEOUT_GRACE),
        func(
            validate_address_batch,
            timeout=settings.worker_message_timeout * settings.queue_batch_size + JOB_TIMEOUT_GRACE,
        ),
    ]
    on_startup = startup
    on_shutdown = shutdown
    max_jobs = settings.worker_max_jobs
    max_tries = settings.worker_max_tries
