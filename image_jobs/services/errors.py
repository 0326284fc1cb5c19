from __future__ import annotations


class ServiceError(Exception):
    pass


class QueueUnavailableError(ServiceError):
    pass


class JobNotFoundError(ServiceError):
    pass


class SettingsProviderError(ServiceError):
    pass


class ArchiveError(ServiceError):
    pass


class TransformFailedError(ServiceError):
    """A transform raised; ``label`` is the user-facing summary, the message the cause."""

    def __init__(self, label: str, message: str) -> None:
        super().__init__(message)
        self.label = label


class RateLimitExceededError(ServiceError):
    def __init__(self, message: str, retry_after: int) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class UploadTooLargeError(ServiceError):
    pass
