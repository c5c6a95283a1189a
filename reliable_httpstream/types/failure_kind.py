from enum import Enum


class FailureKind(str, Enum):
    """How a failure is treated by the resume controller."""

    RETRYABLE_TRANSIENT = "retryable_transient"
    PREMATURE_CLOSE = "premature_close"
    FATAL_PROTOCOL = "fatal_protocol"
    FATAL_CLIENT = "fatal_client"
    USER_ABORT = "user_abort"
