"""Error types shared by the pipeline and the workflow service."""

from __future__ import annotations


class MediaflowError(Exception):
    """Base class for every error raised by mediaflow."""


class ValidationError(MediaflowError, ValueError):
    """Raised when caller input is malformed or inconsistent."""


class NotFoundError(MediaflowError, LookupError):
    """Raised when a referenced record does not exist."""


class InvalidTransitionError(MediaflowError):
    """Raised when a workflow move is not listed in the transition table."""

    def __init__(self, from_status: str, to_status: str) -> None:
        super().__init__(f"Invalid status transition from {from_status} to {to_status}")
        self.from_status = from_status
        self.to_status = to_status


class InvalidStateError(MediaflowError):
    """Raised when an operation is attempted in a state that does not allow it."""


class MediaProcessingError(MediaflowError):
    """Raised when a media operation fails (probe, encode, extraction, transcription)."""

    def __init__(self, message: str, *, stderr: str | None = None) -> None:
        super().__init__(message)
        self.stderr = stderr


class TransientIOError(MediaflowError):
    """Raised for I/O failures that are expected to succeed on a later attempt."""


PERMANENT_ERRORS: tuple[type[BaseException], ...] = (
    ValidationError,
    NotFoundError,
    InvalidTransitionError,
    InvalidStateError,
)


def is_retryable(exc: BaseException) -> bool:
    return not isinstance(exc, PERMANENT_ERRORS)
