import asyncio
import logging
from collections import deque
from typing import Callable, Deque

logger = logging.getLogger(__name__)

DataCallback = Callable[[bytes], None]
EndCallback = Callable[[], None]
ErrorCallback = Callable[[BaseException], None]


class DeliveryBuffer:
    """Pull-based hand-off between the engine and the consumer.

    The consumer pulls with `read()`. When nothing is buffered, or the buffer
    drains below `high_water_mark`, `request_more` is invoked to signal demand;
    the engine answers with `push()` and stops pumping once `push()` returns
    False. Terminal items (`end()`, `fail()`) are queued behind buffered data
    for an end, and replace buffered data for an error. `silence()` drops
    everything and makes every later read return None without notifying.

    Notifications fire when the consumer receives the item, and the terminal
    one fires at most once.
    """

    def __init__(
        self,
        high_water_mark: int,
        request_more: Callable[[], None],
        *,
        on_data: DataCallback | None = None,
        on_end: EndCallback | None = None,
        on_error: ErrorCallback | None = None,
    ):
        if high_water_mark <= 0:
            raise ValueError("high_water_mark must be a positive number of bytes")

        self.high_water_mark = high_water_mark
        self._request_more = request_more
        self._on_data = on_data
        self._on_end = on_end
        self._on_error = on_error

        self._chunks: Deque[bytes] = deque()
        self._buffered = 0
        self._ended = False
        self._error: BaseException | None = None
        self._silenced = False
        self._notified_terminal = False
        self._readable = asyncio.Event()

    @property
    def buffered(self) -> int:
        return self._buffered

    @property
    def closed(self) -> bool:
        """True once no more data can be pushed."""
        return self._ended or self._error is not None or self._silenced

    @property
    def settled(self) -> bool:
        """True once the consumer has received its terminal notification."""
        return self._notified_terminal

    def push(self, chunk: bytes) -> bool:
        """Queue a chunk; returns whether the engine may keep pumping."""

        if self.closed:
            raise RuntimeError("push() after the stream was closed")
        self._chunks.append(chunk)
        self._buffered += len(chunk)
        self._readable.set()
        return self._buffered < self.high_water_mark

    def end(self) -> None:
        if self.closed:
            return
        self._ended = True
        self._readable.set()

    def fail(self, error: BaseException) -> None:
        if self.closed:
            return
        self._error = error
        self._chunks.clear()
        self._buffered = 0
        self._readable.set()

    def silence(self) -> None:
        self._silenced = True
        self._chunks.clear()
        self._buffered = 0
        self._readable.set()

    async def read(self) -> bytes | None:
        """Next chunk in byte order, or None at the end of the stream.

        Raises the stream's error once it failed.
        """

        while True:
            if self._silenced:
                return None

            if self._error is not None:
                self._notify_error(self._error)
                raise self._error

            if self._chunks:
                chunk = self._chunks.popleft()
                self._buffered -= len(chunk)
                if not self._ended and self._buffered < self.high_water_mark:
                    self._request_more()
                if self._on_data is not None:
                    self._on_data(chunk)
                return chunk

            if self._ended:
                self._notify_end()
                return None

            self._readable.clear()
            self._request_more()
            # request_more() may settle the stream synchronously (e.g. abort)
            if self._silenced or self._error is not None or self._ended:
                continue
            if not self._chunks:
                await self._readable.wait()

    def _notify_end(self) -> None:
        if self._notified_terminal:
            return
        self._notified_terminal = True
        if self._on_end is not None:
            self._on_end()

    def _notify_error(self, error: BaseException) -> None:
        if self._notified_terminal:
            return
        self._notified_terminal = True
        if self._on_error is not None:
            self._on_error(error)
