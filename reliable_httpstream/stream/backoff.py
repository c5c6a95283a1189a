import logging
from typing import NamedTuple

from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt
from tenacity.wait import wait_base, wait_random_exponential

from reliable_httpstream.types.retry_policy import RetryPolicy

logger = logging.getLogger(__name__)


class BackoffDecision(NamedTuple):
    retry: bool
    delay: float


class BackoffGate:
    """Decides whether a transient failure gets another attempt, and when.

    The decision is delegated to tenacity: `stop_after_attempt` enforces the
    attempt budget and the wait strategy (random exponential backoff bounded by
    the policy, unless another one is injected) yields the delay.
    """

    def __init__(self, policy: RetryPolicy | None = None, wait: wait_base | None = None):
        self.policy = policy or RetryPolicy()
        self._stop = stop_after_attempt(self.policy.max_attempts)
        self._wait = wait or wait_random_exponential(
            multiplier=self.policy.min_delay,
            min=self.policy.min_delay,
            max=self.policy.max_delay,
        )
        self._retrying = AsyncRetrying(stop=self._stop, wait=self._wait)
        self._call_state = RetryCallState(self._retrying, fn=None, args=(), kwargs={})

    @property
    def attempt_number(self) -> int:
        """Number of the attempt currently being made, starting at 1."""
        return self._call_state.attempt_number

    def reset(self) -> None:
        """Restore the full budget, e.g. once a response has been accepted."""
        self._call_state = RetryCallState(self._retrying, fn=None, args=(), kwargs={})

    def should_retry(self, failure: BaseException) -> BackoffDecision:
        state = self._call_state
        state.set_exception((type(failure), failure, failure.__traceback__))

        if self._stop(state):
            logger.debug(
                f"Retry budget exhausted after attempt {state.attempt_number}"
                + f"/{self.policy.max_attempts}"
            )
            return BackoffDecision(retry=False, delay=0.0)

        delay = float(self._wait(state))
        state.prepare_for_next_attempt()
        return BackoffDecision(retry=True, delay=delay)
