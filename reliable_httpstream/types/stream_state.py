from enum import Enum
from typing import Final, FrozenSet


class StreamState(str, Enum):
    IDLE = "idle"
    AWAITING_RESPONSE = "awaiting_response"
    STREAMING = "streaming"
    BACKING_OFF = "backing_off"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES: Final[FrozenSet[StreamState]] = frozenset(
    {StreamState.COMPLETED, StreamState.FAILED, StreamState.ABORTED}
)

# Allowed transitions of the resume controller, keyed by the source state.
# ABORTED is reachable from every non-terminal state and is handled separately.
TRANSITIONS: Final[dict[StreamState, FrozenSet[StreamState]]] = {
    StreamState.IDLE: frozenset({StreamState.AWAITING_RESPONSE}),
    StreamState.AWAITING_RESPONSE: frozenset(
        {StreamState.STREAMING, StreamState.BACKING_OFF, StreamState.FAILED}
    ),
    StreamState.BACKING_OFF: frozenset({StreamState.AWAITING_RESPONSE}),
    StreamState.STREAMING: frozenset(
        {
            StreamState.STREAMING,
            StreamState.AWAITING_RESPONSE,
            StreamState.COMPLETED,
            StreamState.FAILED,
        }
    ),
    StreamState.COMPLETED: frozenset(),
    StreamState.FAILED: frozenset(),
    StreamState.ABORTED: frozenset(),
}
