import asyncio
import logging
from typing import AsyncIterator, Final

import httpx
from tenacity.wait import wait_base

from reliable_httpstream.client.exceptions import (
    ChecksumMismatchError,
    IdentityChangedError,
    RetriesExhaustedError,
    TransientError,
)
from reliable_httpstream.stream.attempt import AttemptRunner, PumpResult
from reliable_httpstream.stream.backoff import BackoffGate
from reliable_httpstream.stream.delivery import (
    DataCallback,
    DeliveryBuffer,
    EndCallback,
    ErrorCallback,
)
from reliable_httpstream.stream.integrity import IntegrityTracker
from reliable_httpstream.types.response_metadata import ResponseMetadata
from reliable_httpstream.types.retry_policy import RetryPolicy
from reliable_httpstream.types.stream_outcome import (
    Aborted,
    Completed,
    Failed,
    StreamOutcome,
)
from reliable_httpstream.types.stream_state import TRANSITIONS, StreamState

logger = logging.getLogger(__name__)

DEFAULT_HIGH_WATER_MARK: Final[int] = 1024 * 1024


class ReliableHttpStream:
    """Byte stream of an HTTP resource that survives transient upstream failures.

    Connection failures and 5xx responses are retried according to
    `retry_policy`. A response that closes before the declared Content-Length
    is resumed immediately with a `Range` request starting at the first byte
    not yet delivered. 4xx responses, an ETag change between requests and a
    Content-MD5 mismatch fail the stream.

    Consume it with `read()`, `async for`, or `consume()`; the optional
    `on_data`, `on_end` and `on_error` callbacks fire as the consumer receives
    each item. `abort()` stops the stream silently.

    Args:
        path: Resource to fetch, relative to the client's base URL.
        client: The `httpx.AsyncClient` that performs the requests.
        high_water_mark: Bytes buffered ahead of the consumer before pumping stops.
        retry_policy: Budget for transient failures; defaults to a few attempts
            over a few seconds.
        wait: Optional tenacity wait strategy replacing the policy's backoff.
    """

    def __init__(
        self,
        *,
        path: str,
        client: httpx.AsyncClient,
        high_water_mark: int = DEFAULT_HIGH_WATER_MARK,
        retry_policy: RetryPolicy | None = None,
        wait: wait_base | None = None,
        on_data: DataCallback | None = None,
        on_end: EndCallback | None = None,
        on_error: ErrorCallback | None = None,
    ):
        if not isinstance(path, str) or not path:
            raise ValueError('"path" must be a non-empty string')
        if not isinstance(client, httpx.AsyncClient):
            raise ValueError('"client" must be an httpx.AsyncClient')
        if not isinstance(high_water_mark, int) or high_water_mark <= 0:
            raise ValueError('"high_water_mark" must be a positive integer')

        self.path = path
        self.client = client
        self.retry_policy = retry_policy or RetryPolicy()

        self._backoff = BackoffGate(self.retry_policy, wait=wait)
        self._tracker = IntegrityTracker()
        self._delivery = DeliveryBuffer(
            high_water_mark,
            self._request_more,
            on_data=on_data,
            on_end=on_end,
            on_error=on_error,
        )

        # runtime state
        self._state = StreamState.IDLE
        self._expected: ResponseMetadata | None = None
        self._attempt: AttemptRunner | None = None
        self._pump_task: asyncio.Task[None] | None = None
        self._teardown_tasks: list[asyncio.Task] = []
        self._checksum: str | None = None
        self._error: BaseException | None = None
        self._aborted = False

        self.attempt_count = 0  # requests issued
        self.resume_count = 0  # premature closes resumed

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__} path={self.path!r} state={self._state.value} "
            + f"bytes_consumed={self.bytes_consumed}>"
        )

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def bytes_consumed(self) -> int:
        return self._tracker.byte_count

    @property
    def expected_metadata(self) -> ResponseMetadata | None:
        return self._expected

    @property
    def checksum(self) -> str | None:
        """MD5 of the delivered bytes, available once the stream completed."""
        return self._checksum

    @property
    def error(self) -> BaseException | None:
        return self._error

    @property
    def pending_demand(self) -> bool:
        return (
            self._pump_task is not None
            and self._delivery.buffered == 0
            and not self._state.is_terminal
        )

    @property
    def outcome(self) -> StreamOutcome | None:
        """Terminal outcome, or None while the stream is still running."""

        if self._state is StreamState.COMPLETED:
            if self._checksum is None:
                raise RuntimeError(f"{self.path}: completed without a checksum")
            return Completed(byte_count=self.bytes_consumed, checksum=self._checksum)
        if self._state is StreamState.FAILED:
            if self._error is None:
                raise RuntimeError(f"{self.path}: failed without an error")
            return Failed(error=self._error)
        if self._state is StreamState.ABORTED:
            return Aborted()
        return None

    # Consumer interface

    async def read(self) -> bytes | None:
        """Return the next chunk, or None at the end of the stream or after abort."""
        return await self._delivery.read()

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self

    async def __anext__(self) -> bytes:
        chunk = await self.read()
        if chunk is None:
            raise StopAsyncIteration
        return chunk

    async def consume(self) -> StreamOutcome:
        """Read the stream to its end and return how it ended."""

        try:
            async for _ in self:
                pass
        except Exception as e:
            if e is not self._error:
                raise
        outcome = self.outcome
        if outcome is None:
            raise RuntimeError(f"stream stopped in state {self._state.value}")
        return outcome

    async def __aenter__(self) -> "ReliableHttpStream":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Abort the stream and wait until its network handles are released."""

        self.abort()
        current = asyncio.current_task()
        pending = [task for task in self._teardown_tasks if task is not current]
        self._teardown_tasks = []
        results = await asyncio.gather(*pending, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.warning(f"{self.path}: error while releasing: {result!r}")

    def abort(self) -> None:
        """Stop the stream: no further data, end or error will be delivered.

        Idempotent and safe to call from any state, including from callbacks.
        """

        if self._aborted:
            return
        self._aborted = True
        logger.info(f"{self.path}: aborted")

        self._delivery.silence()
        if not self._state.is_terminal:
            self._transition(StreamState.ABORTED)
        self._stop_and_clean_up()

    # Resume controller

    def _transition(self, new_state: StreamState) -> None:
        old_state = self._state
        if old_state.is_terminal:
            raise RuntimeError(
                f"{self.path}: cannot leave terminal state {old_state.value}"
            )
        # ABORTED is reachable from every non-terminal state, and so is FAILED
        # for errors that escape the classification below.
        if new_state not in (StreamState.ABORTED, StreamState.FAILED):
            if new_state not in TRANSITIONS[old_state]:
                raise RuntimeError(
                    f"{self.path}: invalid transition "
                    + f"{old_state.value} -> {new_state.value}"
                )
        if new_state is not old_state:
            logger.debug(f"{self.path}: {old_state.value} -> {new_state.value}")
        self._state = new_state

    def _request_more(self) -> None:
        if self._aborted:
            logger.warning(f"{self.path}: ignoring read request after abort")
            return
        if self._state.is_terminal:
            logger.warning(
                f"{self.path}: ignoring read request after stream {self._state.value}"
            )
            return
        if self._pump_task is not None:
            logger.debug(f"{self.path}: already reading")
            return

        self._pump_task = asyncio.get_running_loop().create_task(self._pump())

    async def _pump(self) -> None:
        try:
            while not self._state.is_terminal:
                if self._attempt is None:
                    await self._start_attempt()
                    continue

                result = await self._attempt.pump(self._tracker, self._delivery)
                if result is PumpResult.PAUSED:
                    return
                await self._finish_response()
        except asyncio.CancelledError:
            logger.debug(f"{self.path}: pump cancelled")
            raise
        except Exception as e:
            self._fail(e)
        finally:
            if self._pump_task is asyncio.current_task():
                self._pump_task = None
            if self._state.is_terminal:
                await self._release_attempt()

    async def _start_attempt(self) -> None:
        if self._attempt is not None:
            raise RuntimeError(f"{self.path}: an attempt is already active")

        while True:
            if self._state is not StreamState.AWAITING_RESPONSE:
                self._transition(StreamState.AWAITING_RESPONSE)

            attempt = AttemptRunner(self.client, self.path, self.bytes_consumed)
            self._attempt = attempt
            self.attempt_count += 1

            try:
                metadata = await attempt.open()
            except TransientError as e:
                await self._release_attempt()
                decision = self._backoff.should_retry(e)
                if not decision.retry:
                    raise RetriesExhaustedError(e, self._backoff.attempt_number) from e

                logger.warning(
                    f"{self.path}: {type(e).__name__}: {e}, "
                    + f"will retry in {decision.delay:.2f}s"
                )
                self._transition(StreamState.BACKING_OFF)
                await asyncio.sleep(decision.delay)
                continue

            self._accept(metadata)
            self._backoff.reset()
            self._transition(StreamState.STREAMING)
            return

    def _accept(self, metadata: ResponseMetadata) -> None:
        if self._expected is None:
            self._expected = metadata
            logger.debug(
                f"{self.path}: content-length={metadata.length}, "
                + f"etag={metadata.identity_tag}, md5={metadata.checksum}"
            )
            return

        expected_tag = self._expected.identity_tag
        if expected_tag is not None and expected_tag != metadata.identity_tag:
            raise IdentityChangedError(expected_tag, metadata.identity_tag)

    async def _finish_response(self) -> None:
        if self._expected is None:
            raise RuntimeError(f"{self.path}: response ended before it was accepted")
        consumed = self.bytes_consumed
        expected = self._expected.expected_length
        logger.debug(f"{self.path}: response ended after {consumed} bytes")

        await self._release_attempt()

        if expected > consumed:
            logger.debug(
                f"{self.path}: bytes read ({consumed}) is less than expected "
                + f"({expected}) (initiating resume)"
            )
            self.resume_count += 1
            self._transition(StreamState.AWAITING_RESPONSE)
            return

        if consumed > expected and self._expected.length is not None:
            logger.warning(
                f"{self.path}: read {consumed} bytes, more than the "
                + f"{expected} declared"
            )

        digest = self._tracker.finalize()
        if self._expected.checksum is not None:
            if self._expected.checksum != digest:
                raise ChecksumMismatchError(self._expected.checksum, digest)
            logger.debug(f"{self.path}: md5 matched")

        self._checksum = digest
        self._transition(StreamState.COMPLETED)
        self._delivery.end()

    def _fail(self, error: BaseException) -> None:
        if self._state.is_terminal:
            logger.debug(f"{self.path}: dropping error after {self._state.value}: {error}")
            return
        self._error = error
        logger.error(f"{self.path}: {type(error).__name__}: {error}")
        self._transition(StreamState.FAILED)
        self._delivery.fail(error)

    async def _release_attempt(self) -> None:
        attempt, self._attempt = self._attempt, None
        if attempt is not None:
            await attempt.close()

    def _stop_and_clean_up(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        task, self._pump_task = self._pump_task, None
        if task is not None and not task.done():
            if loop is None or task is not asyncio.current_task():
                task.cancel()
            self._teardown_tasks.append(task)

        # A pump that already started releases the attempt itself; whichever
        # side runs first takes it and the other finds nothing to close.
        if self._attempt is None:
            return
        if loop is None:
            logger.warning(
                f"{self.path}: aborted outside of an event loop; "
                + "the open response is left to the garbage collector"
            )
            return
        self._teardown_tasks.append(loop.create_task(self._release_attempt()))
