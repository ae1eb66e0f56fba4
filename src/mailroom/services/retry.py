import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Generic, TypeVar

import httpx

from mailroom.core.exceptions import CredentialError, ProviderHTTPError
from mailroom.schemas.addresses import ValidationResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({408, 429})
RATE_LIMITED_MESSAGE = "Rate limit exceeded, will retry later"


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff: tuple[float, ...] = (1.0, 5.0, 30.0)

    def delay_after(self, attempt: int) -> float:
        """Seconds to wait after the 1-based ``attempt`` failed."""
        if not self.backoff:
            return 0.0
        return self.backoff[min(attempt - 1, len(self.backoff) - 1)]

    @classmethod
    def from_settings(cls, max_attempts: int, backoff: Sequence[float]) -> "RetryPolicy":
        return cls(max_attempts=max(1, max_attempts), backoff=tuple(backoff))


@dataclass
class RetryOutcome(Generic[T]):
    succeeded: bool
    value: T | None = None
    error: BaseException | None = None
    attempts: int = 0
    delays: list[float] = field(default_factory=list)

    @property
    def exhausted(self) -> bool:
        return not self.succeeded and is_retryable(self.error)


def is_retryable(exc: BaseException | None) -> bool:
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError)):
        return True
    if isinstance(exc, ProviderHTTPError):
        return exc.status_code >= 500 or exc.status_code in RETRYABLE_STATUS_CODES
    return False


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    retryable: Callable[[BaseException], bool] = is_retryable,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "operation",
) -> RetryOutcome[T]:
    outcome: RetryOutcome[T] = RetryOutcome(succeeded=False)

    for attempt in range(1, policy.max_attempts + 1):
        outcome.attempts = attempt
        try:
            outcome.value = await operation()
            outcome.succeeded = True
            outcome.error = None
            return outcome
        except Exception as exc:
            outcome.error = exc
            if not retryable(exc) or attempt >= policy.max_attempts:
                return outcome

            delay = policy.delay_after(attempt)
            logger.warning(
                "%s failed (attempt %d/%d), retrying in %.1fs: %s",
                label,
                attempt,
                policy.max_attempts,
                delay,
                exc,
            )
            outcome.delays.append(delay)
            await sleep(delay)

    return outcome


def outcome_to_result(outcome: RetryOutcome[ValidationResult], provider: str) -> ValidationResult:
    if outcome.succeeded and outcome.value is not None:
        return outcome.value

    exc = outcome.error

    if isinstance(exc, ProviderHTTPError):
        if exc.status_code == 429:
            logger.error("[%s] rate limit exceeded: %s", provider, exc.body)
            return ValidationResult.failure(RATE_LIMITED_MESSAGE, provider=provider)
        if outcome.exhausted:
            logger.error("[%s] giving up after %d attempts: %s", provider, outcome.attempts, exc.message)
            return ValidationResult.failure(
                f"Validation failed after {outcome.attempts} attempts: {exc.message}",
                provider=provider,
            )
        logger.error("[%s] API error %s: %s", provider, exc.status_code, exc.body)
        return ValidationResult(status=exc.result_status, message=exc.message, provider=provider)

    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError)):
        logger.error("[%s] network error after %d attempts: %r", provider, outcome.attempts, exc)
        return ValidationResult.failure(
            f"Validation failed after {outcome.attempts} attempts: network error ({type(exc).__name__})",
            provider=provider,
        )

    if isinstance(exc, CredentialError):
        logger.error("[%s] credentials unavailable: %s", provider, exc)
        return ValidationResult.failure(str(exc), provider=provider)

    logger.error("[%s] validation error", provider, exc_info=exc)
    return ValidationResult.failure(str(exc) or "Unknown error", provider=provider)


async def run_validation(
    operation: Callable[[], Awaitable[ValidationResult]],
    policy: RetryPolicy,
    provider: str,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> ValidationResult:
    outcome = await with_retry(operation, policy, sleep=sleep, label=f"{provider} validation")
    return outcome_to_result(outcome, provider)
