from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from mailroom.services.address_queue import AddressValidationQueue
from mailroom.services.orchestrator import ValidationOrchestrator
from mailroom.services.retry import RetryPolicy


def get_queue(request: Request) -> AddressValidationQueue:
    return request.app.state.address_queue


def get_orchestrator(request: Request) -> ValidationOrchestrator:
    return request.app.state.orchestrator


def get_proxy_policy(request: Request) -> RetryPolicy:
    return request.app.state.proxy_policy


def error_response(status_code: int, error: str, details: Any = None) -> JSONResponse:
    body: dict[str, Any] = {"error": error}
    if details is not None:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=body)
