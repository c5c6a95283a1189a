"""Errors surfaced by a reliable HTTP stream."""

from reliable_httpstream.types.failure_kind import FailureKind


class StreamError(Exception):
    """Base class of every error a stream reports to its consumer."""

    kind: FailureKind = FailureKind.FATAL_PROTOCOL

    def __init__(self, message: str = "Stream failed"):
        self.message = message
        super().__init__(self.message)


class TransientError(StreamError):
    """A failure that may go away on its own: eligible for retry."""

    kind = FailureKind.RETRYABLE_TRANSIENT

    def __init__(self, message: str = "Transient failure", status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class ServerError(TransientError):
    """The server answered with a 5xx status."""

    def __init__(self, status_code: int, reason: str = ""):
        message = f"HTTP {status_code}"
        if reason:
            message += f" {reason}"
        super().__init__(message, status_code=status_code)


class ConnectionFailure(TransientError):
    """The request failed before any response arrived (DNS, connect, reset)."""

    def __init__(self, message: str = "Connection failed"):
        super().__init__(message, status_code=None)


class RetriesExhaustedError(StreamError):
    """Transient failures outlasted the retry budget.

    The last underlying failure is kept in `last_error` and chained as the cause.
    """

    kind = FailureKind.RETRYABLE_TRANSIENT

    def __init__(self, last_error: TransientError, attempts: int):
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(
            f"giving up after {attempts} attempts: "
            + f"{type(last_error).__name__}: {last_error}"
        )


class ClientError(StreamError):
    """The server rejected the request (4xx or any other unusable status)."""

    kind = FailureKind.FATAL_CLIENT

    def __init__(self, status_code: int | None, reason: str = ""):
        self.status_code = status_code
        message = f"HTTP {status_code}" if status_code is not None else ""
        if reason:
            message = f"{message} {reason}".strip()
        super().__init__(message or "Request rejected")


class ProtocolError(StreamError):
    """The data or metadata cannot be trusted: never retried."""

    kind = FailureKind.FATAL_PROTOCOL


class IdentityChangedError(ProtocolError):
    """The resource's ETag changed between two requests of the same stream."""

    def __init__(self, expected: str, actual: str | None):
        self.expected = expected
        self.actual = actual
        super().__init__("object changed while fetching (etag mismatch)")


class ChecksumMismatchError(ProtocolError):
    """The MD5 of the delivered bytes differs from the declared Content-MD5."""

    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(f"md5 mismatch: expected {expected!r}, got {actual!r}")


class RangeMismatchError(ProtocolError):
    """A resumed response does not start at the requested byte offset.

    Raised for a wrong Content-Range, and for a resumed request answered with
    anything other than 206 Partial Content.
    """

    def __init__(self, requested: int, content_range: str | None, status_code: int = 206):
        self.requested = requested
        self.content_range = content_range
        self.status_code = status_code
        if status_code != 206:
            message = (
                f"requested bytes from offset {requested}, server answered "
                + f"HTTP {status_code} instead of 206 (Range not honoured)"
            )
        else:
            message = (
                f"requested bytes from offset {requested}, "
                + f"server sent {content_range!r}"
            )
        super().__init__(message)
