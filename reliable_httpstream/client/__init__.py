from ._client import ReliableHttpClient
from .exceptions import (
    ChecksumMismatchError,
    ClientError,
    ConnectionFailure,
    IdentityChangedError,
    ProtocolError,
    RangeMismatchError,
    RetriesExhaustedError,
    ServerError,
    StreamError,
    TransientError,
)

__all__ = [
    "ReliableHttpClient",
    "StreamError",
    "TransientError",
    "ServerError",
    "ConnectionFailure",
    "RetriesExhaustedError",
    "ClientError",
    "ProtocolError",
    "IdentityChangedError",
    "ChecksumMismatchError",
    "RangeMismatchError",
]
