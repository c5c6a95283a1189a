from ._stream import DEFAULT_HIGH_WATER_MARK, ReliableHttpStream
from .attempt import AttemptRunner, PumpResult
from .backoff import BackoffDecision, BackoffGate
from .delivery import DeliveryBuffer
from .integrity import IntegrityTracker

__all__ = [
    "ReliableHttpStream",
    "DEFAULT_HIGH_WATER_MARK",
    "AttemptRunner",
    "PumpResult",
    "BackoffGate",
    "BackoffDecision",
    "DeliveryBuffer",
    "IntegrityTracker",
]
