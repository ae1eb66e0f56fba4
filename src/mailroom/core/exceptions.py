from typing import Literal


class MailroomError(Exception):
    pass


class CredentialError(MailroomError):
    """A secret or OAuth token could not be obtained."""


class ProviderError(MailroomError):
    def __init__(self, provider: str, message: str) -> None:
        super().__init__(message)
        self.provider = provider
        self.message = message


class ProviderHTTPError(ProviderError):
    """Non-2xx response from an address provider.

    ``message`` is already mapped through the provider's error table and
    ``result_status`` says how a terminal failure should be recorded.
    """

    def __init__(
        self,
        provider: str,
        status_code: int,
        body: str,
        message: str,
        result_status: Literal["invalid", "error"] = "error",
    ) -> None:
        super().__init__(provider, message)
        self.status_code = status_code
        self.body = body
        self.result_status = result_status


class UnsupportedOperationError(ProviderError):
    pass


class QueueError(MailroomError):
    def __init__(self, message: str, queued: int = 0) -> None:
        super().__init__(message)
        self.queued = queued
