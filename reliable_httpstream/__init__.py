from typing import Final

from .client import (
    ChecksumMismatchError,
    ClientError,
    IdentityChangedError,
    ReliableHttpClient,
    RetriesExhaustedError,
    StreamError,
)
from .stream import DEFAULT_HIGH_WATER_MARK, ReliableHttpStream
from .types.retry_policy import RetryPolicy
from .types.stream_state import StreamState

__version__: Final[str] = "0.1.0"

LOG_LEVEL_NAME: Final[str] = "LOG_LEVEL"
DEFAULT_LOG_LEVEL: Final[str] = "WARNING"

__all__ = [
    "ReliableHttpStream",
    "ReliableHttpClient",
    "RetryPolicy",
    "StreamState",
    "StreamError",
    "ClientError",
    "ChecksumMismatchError",
    "IdentityChangedError",
    "RetriesExhaustedError",
    "DEFAULT_HIGH_WATER_MARK",
]
