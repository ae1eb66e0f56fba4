import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from pathlib import Path

from arq.connections import RedisSettings, create_pool
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from mailroom.api.v1.routers import router as v1_router
from mailroom.core.config import settings
from mailroom.core.credentials import TokenCache
from mailroom.core.logging_setup import setup_logger
from mailroom.services.address_queue import AddressValidationQueue
from mailroom.services.factory import build_orchestrator, new_credential_cache, new_http_client, proxy_retry_policy

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logger(level=settings.log_level, log_dir=Path(settings.log_dir) if settings.log_dir else None)

    app.state.redis = await create_pool(RedisSettings.from_dsn(settings.redis_url))
    app.state.http_client = new_http_client(settings)
    app.state.orchestrator = build_orchestrator(
        settings,
        app.state.http_client,
        new_credential_cache(settings),
        TokenCache(),
    )
    app.state.proxy_policy = proxy_retry_policy(settings)
    app.state.address_queue = AddressValidationQueue(
        app.state.redis,
        batch_size=settings.queue_batch_size,
        retention=timedelta(days=settings.queue_retention_days),
    )
    logger.info("mailroom started (%s)", settings.environment)
    try:
        yield
    finally:
        await app.state.http_client.aclose()
        await app.state.redis.close()


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [{"loc": list(err.get("loc", ())), "msg": err.get("msg", "")} for err in exc.errors()]


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Invalid request", "details": jsonable_errors(exc)},
    )


def create_app() -> FastAPI:
    app = FastAPI(title="Mailroom", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.include_router(v1_router)
    return app


app = create_app()
