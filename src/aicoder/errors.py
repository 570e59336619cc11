# src/aicoder/errors.py

"""Error taxonomy shared by the supervisor, completion clients and the UI."""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    USER_CANCELLED = "user_cancelled"
    TIMEOUT = "timeout"
    PROVIDER_UNAVAILABLE = "provider_unavailable"  # connection-level failure
    PROVIDER_ERROR = "provider_error"  # backend answered with a failure
    INTERNAL_SUPERVISOR_ERROR = "internal_supervisor_error"


class AicoderError(Exception):
    """Base class for errors raised by this package."""

    kind: ErrorKind = ErrorKind.PROVIDER_ERROR


class AlreadyRunningError(AicoderError):
    """Raised by submit() under the reject policy when a task is still active."""

    kind = ErrorKind.INTERNAL_SUPERVISOR_ERROR

    def __init__(self, task_id: str) -> None:
        super().__init__(f"A task is already running: {task_id}")
        self.task_id = task_id


class InternalSupervisorError(AicoderError):
    """Invariant breach inside the supervisor (never propagated to the loop)."""

    kind = ErrorKind.INTERNAL_SUPERVISOR_ERROR


class ProviderUnavailableError(AicoderError):
    """The backend could not be reached at all."""

    kind = ErrorKind.PROVIDER_UNAVAILABLE


class ProviderError(AicoderError):
    """The backend was reached but returned a failure."""

    kind = ErrorKind.PROVIDER_ERROR
