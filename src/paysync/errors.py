"""Error taxonomy shared by the scheduler, the outbox and the deleter.

Every failure crossing into the core is converted to a `PaySyncError` whose
`kind` decides whether the surrounding step runner may retry it. The mapping
from exception to `ErrorKind` is a pure function of the exception type so the
same classification applies to fetch, create, delete and webhook paths.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Closed set of failure categories."""

    TRANSIENT = "TRANSIENT"
    INVALID_ARGUMENT = "INVALID_ARGUMENT"
    FAILED_PRECONDITION = "FAILED_PRECONDITION"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    UNAUTHENTICATED = "UNAUTHENTICATED"
    UNIMPLEMENTED = "UNIMPLEMENTED"
    STORAGE = "STORAGE"

    @property
    def retryable(self) -> bool:
        return self is ErrorKind.TRANSIENT


class PaySyncError(Exception):
    """Base class for every classified error.

    Attributes:
        kind: Failure category
        reason: Stable machine-readable reason code shown to operators
    """

    kind: ErrorKind = ErrorKind.TRANSIENT

    def __init__(self, message: str, reason: str | None = None):
        super().__init__(message)
        self.message = message
        self.reason = reason or self.kind.value

    @property
    def retryable(self) -> bool:
        return self.kind.retryable


class TransientError(PaySyncError):
    """Network hiccups and other failures worth retrying."""

    kind = ErrorKind.TRANSIENT


class InvalidArgumentError(PaySyncError):
    kind = ErrorKind.INVALID_ARGUMENT


class FailedPreconditionError(PaySyncError):
    kind = ErrorKind.FAILED_PRECONDITION


class PermissionDeniedError(PaySyncError):
    kind = ErrorKind.PERMISSION_DENIED


class UnauthenticatedError(PaySyncError):
    kind = ErrorKind.UNAUTHENTICATED


class UnimplementedError(PaySyncError):
    """The provider does not support the requested operation."""

    kind = ErrorKind.UNIMPLEMENTED


class StorageError(PaySyncError):
    """Persistent store failure; needs an operator rather than a retry."""

    kind = ErrorKind.STORAGE


class CancelledError(TransientError):
    """Work stopped at a page or batch boundary; re-running resumes it."""

    def __init__(self, message: str = "cancelled"):
        super().__init__(message, reason="CANCELLED")


class NotFoundError(InvalidArgumentError):
    """A connector or record referenced by the caller does not exist."""

    def __init__(self, message: str):
        super().__init__(message, reason="NOT_FOUND")


class UnknownEventTypeError(InvalidArgumentError):
    """An outbox row carries an event type with no bus mapping."""

    def __init__(self, event_type: str):
        super().__init__(
            f"unknown outbox event type, type={event_type}",
            reason="UNKNOWN_EVENT_TYPE",
        )
        self.event_type = event_type


class InvalidPayloadError(InvalidArgumentError):
    """An outbox row payload cannot be decoded."""

    def __init__(self, event_type: str, outbox_id: str, cause: Exception):
        super().__init__(
            f"invalid payload, error={cause}, type={event_type}, id={outbox_id}",
            reason="INVALID_PAYLOAD",
        )


def classify(exc: BaseException) -> ErrorKind:
    """Map an exception to its ErrorKind.

    Classified errors keep their own kind. Built-in exceptions map by type:
    permission and argument errors are terminal; timeouts, connection errors
    and anything unknown are transient.
    """
    if isinstance(exc, (PaySyncError, StepError)):
        return exc.kind
    if isinstance(exc, NotImplementedError):
        return ErrorKind.UNIMPLEMENTED
    if isinstance(exc, PermissionError):
        return ErrorKind.PERMISSION_DENIED
    if isinstance(exc, (ValueError, TypeError)):
        return ErrorKind.INVALID_ARGUMENT
    return ErrorKind.TRANSIENT


_ERROR_TYPES: dict[ErrorKind, type[PaySyncError]] = {
    ErrorKind.TRANSIENT: TransientError,
    ErrorKind.INVALID_ARGUMENT: InvalidArgumentError,
    ErrorKind.FAILED_PRECONDITION: FailedPreconditionError,
    ErrorKind.PERMISSION_DENIED: PermissionDeniedError,
    ErrorKind.UNAUTHENTICATED: UnauthenticatedError,
    ErrorKind.UNIMPLEMENTED: UnimplementedError,
    ErrorKind.STORAGE: StorageError,
}


def to_paysync_error(exc: BaseException) -> PaySyncError:
    """Convert any exception into the PaySyncError of its classified kind."""
    if isinstance(exc, PaySyncError):
        return exc
    kind = classify(exc)
    message = str(exc) or type(exc).__name__
    if kind is ErrorKind.TRANSIENT and not isinstance(exc, (TimeoutError, ConnectionError)):
        message = f"{type(exc).__name__}: {exc}"
    reason = exc.reason if isinstance(exc, StepError) else None
    return _ERROR_TYPES[kind](message, reason=reason)


def is_retryable(exc: BaseException) -> bool:
    """Return True when the step that raised `exc` may be re-invoked."""
    return classify(exc).retryable


class StepError(Exception):
    """Classified failure reported to the surrounding step runner."""

    def __init__(self, kind: ErrorKind, reason: str, message: str):
        super().__init__(message)
        self.kind = kind
        self.reason = reason
        self.message = message

    @property
    def retryable(self) -> bool:
        return self.kind.retryable

    def __str__(self) -> str:
        return f"{self.reason}: {self.message}"


def as_step_error(exc: BaseException) -> StepError:
    """Wrap any exception into a StepError carrying its classification."""
    if isinstance(exc, StepError):
        return exc
    kind = classify(exc)
    reason = exc.reason if isinstance(exc, PaySyncError) else kind.value
    return StepError(kind=kind, reason=reason, message=str(exc) or type(exc).__name__)
