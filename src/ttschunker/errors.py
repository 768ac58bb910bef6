"""Error taxonomy shared by the pipeline and the HTTP surface."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Why a single segment failed to synthesize."""

    TIMEOUT = "timeout"
    PROVIDER_ERROR = "provider_error"
    EMPTY_INPUT = "empty_input"
    EMPTY_RESPONSE = "empty_response"
    CANCELLED = "cancelled"


# Kinds worth another attempt when the worker pool has a retry policy.
RETRYABLE_KINDS = frozenset({ErrorKind.TIMEOUT, ErrorKind.PROVIDER_ERROR, ErrorKind.EMPTY_RESPONSE})


class TTSChunkerError(Exception):
    """Base class for request-level failures."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InputError(TTSChunkerError):
    """Malformed request, invalid voice config or empty text. Never retried."""

    status_code = 400


class NotFoundError(InputError):
    """No text, segments or result exist for the given identifier."""

    status_code = 404


class ConflictError(TTSChunkerError):
    """A job for the session is already queued or running."""

    status_code = 409


class ProviderError(TTSChunkerError):
    """A synthesis call failed, timed out or returned no audio."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.PROVIDER_ERROR) -> None:
        super().__init__(message)
        self.kind = kind

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


class AllSegmentsFailedError(ProviderError):
    """Every segment failed, so there is nothing to assemble."""

    def __init__(self, failed_indices: list[int], total: int) -> None:
        super().__init__(
            f"All {total} segments failed to synthesize", kind=ErrorKind.PROVIDER_ERROR
        )
        self.failed_indices = failed_indices
        self.total = total


class AssemblyError(TTSChunkerError):
    """The concatenation tool failed. Fatal to the request."""


class StorageError(TTSChunkerError):
    """An upload failed permanently or after exhausting retries."""

    def __init__(
        self, message: str, *, key: str, attempts: int, permanent: bool = False
    ) -> None:
        super().__init__(message)
        self.key = key
        self.attempts = attempts
        self.permanent = permanent


class PipelineTimeoutError(TTSChunkerError):
    """The whole-operation timeout expired before all segments finished."""

    status_code = 503

    def __init__(self, completed: int, total: int) -> None:
        super().__init__(f"Timed out with {completed}/{total} segments completed")
        self.completed = completed
        self.total = total
