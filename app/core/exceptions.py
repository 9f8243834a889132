"""Error taxonomy for the upload service.

Every error carries the HTTP status it maps to. Errors raised by the video
pipeline also record ``stage``, the pipeline state that could not be entered.
"""
from typing import Any


class TubelyError(Exception):
    """Base exception for the service."""

    status_code: int = 500

    def __init__(self, message: str, *, stage: Any = None):
        super().__init__(message)
        self.message = message
        self.stage = stage


class ValidationError(TubelyError):
    """Bad identifier, media type or payload size. No side effects were performed."""

    status_code = 400


class InvalidVideoIdError(ValidationError):
    pass


class UnsupportedMediaError(ValidationError):
    pass


class PayloadTooLargeError(ValidationError):
    pass


class AuthenticationError(TubelyError):
    status_code = 401


class AuthorizationError(TubelyError):
    status_code = 403


class VideoNotFoundError(TubelyError):
    status_code = 404


class ExternalToolError(TubelyError):
    """An external media tool failed. Not retried for the current request."""


class ProbeError(ExternalToolError):
    pass


class RemuxError(ExternalToolError):
    pass


class StoreError(TubelyError):
    """Object store operation failed."""

    def __init__(self, message: str, *, key: str, stage: Any = None):
        super().__init__(f"{message} (key={key})", stage=stage)
        self.key = key


class StoreWriteError(StoreError):
    pass


class StoreDeleteError(StoreError):
    pass


class StagingError(TubelyError):
    """The upload could not be written to local temporary storage."""


class PersistenceError(TubelyError):
    pass


class DeadlineExceededError(TubelyError):
    pass
