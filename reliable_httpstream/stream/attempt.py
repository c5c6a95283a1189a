import logging
import re
from enum import Enum
from typing import AsyncIterator

import httpx

from reliable_httpstream.client.exceptions import (
    ClientError,
    ConnectionFailure,
    RangeMismatchError,
    ServerError,
)
from reliable_httpstream.stream.delivery import DeliveryBuffer
from reliable_httpstream.stream.integrity import IntegrityTracker
from reliable_httpstream.types.response_metadata import ResponseMetadata

logger = logging.getLogger(__name__)

CONTENT_RANGE_PATTERN = re.compile(r"^\s*bytes\s+(\d+)-(\d+)/(\d+|\*)\s*$")


class PumpResult(Enum):
    PAUSED = "paused"  # the consumer's buffer is full
    ENDED = "ended"  # the response has no more bytes


class AttemptRunner:
    """One request/response cycle of a stream.

    `open()` issues the request and classifies the outcome; `pump()` moves body
    bytes into the integrity tracker and the delivery buffer. The runner never
    retries: every failure is raised to the resume controller.
    """

    def __init__(self, client: httpx.AsyncClient, path: str, range_offset: int):
        self.client = client
        self.path = path
        self.range_offset = range_offset
        self.response: httpx.Response | None = None
        self._body: AsyncIterator[bytes] | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def build_request(self) -> httpx.Request:
        headers: dict[str, str] = {"Accept-Encoding": "identity"}
        # The first request carries no Range header: some servers only send
        # Content-MD5 for non-range requests.
        if self.range_offset > 0:
            headers["Range"] = f"bytes={self.range_offset}-"
        return self.client.build_request("GET", self.path, headers=headers)

    async def open(self) -> ResponseMetadata:
        """Send the request and return the response's metadata.

        Raises:
            ConnectionFailure: no response arrived.
            ServerError: the response status is 5xx.
            ClientError: any other status that does not carry the resource.
            RangeMismatchError: a resumed response is not 206 Partial Content
                or starts at the wrong offset.
        """

        if self._closed:
            raise RuntimeError("open() on a closed attempt")
        if self.response is not None:
            raise RuntimeError("an attempt issues exactly one request")

        request = self.build_request()
        logger.debug(
            f"Initiating request for {self.path}"
            + (f" from byte {self.range_offset}" if self.range_offset else "")
        )

        try:
            response = await self.client.send(request, stream=True)
        except httpx.UnsupportedProtocol as e:
            raise ClientError(None, str(e)) from e
        except httpx.TransportError as e:
            raise ConnectionFailure(f"{type(e).__name__}: {e}") from e

        self.response = response
        logger.debug(
            f"Response for {self.path}: {response.status_code} "
            + f"(x-request-id: {response.headers.get('x-request-id')})"
        )

        status = response.status_code
        if status >= 500:
            raise ServerError(status, response.reason_phrase)
        if not 200 <= status < 300:
            raise ClientError(status, response.reason_phrase)

        if self.range_offset > 0:
            # 200 means the server ignored Range and sends the whole resource
            if status != 206:
                raise RangeMismatchError(
                    self.range_offset, response.headers.get("content-range"), status
                )
            self.check_content_range(response.headers.get("content-range"))

        self._body = response.aiter_raw()
        return ResponseMetadata.from_headers(response.headers)

    def check_content_range(self, content_range: str | None) -> None:
        # Servers that omit Content-Range are trusted to honour the Range header.
        if content_range is None:
            return
        match = CONTENT_RANGE_PATTERN.match(content_range)
        if match is None or int(match.group(1)) != self.range_offset:
            raise RangeMismatchError(self.range_offset, content_range)

    async def next_chunk(self) -> bytes | None:
        """Next non-empty body chunk, or None once the response is over.

        A transport error in the middle of the body ends the response like a
        premature close; the caller compares the bytes received with the
        declared length to tell the two apart.
        """

        if self._body is None:
            raise RuntimeError("next_chunk() before open()")

        while True:
            try:
                chunk = await self._body.__anext__()
            except StopAsyncIteration:
                return None
            except httpx.TransportError as e:
                logger.debug(f"Response body for {self.path} broke off: {e!r}")
                return None
            if chunk:
                return chunk
            logger.debug("read empty chunk; waiting for more data")

    async def pump(self, tracker: IntegrityTracker, delivery: DeliveryBuffer) -> PumpResult:
        """Deliver body chunks until the buffer is full or the response ends."""

        while True:
            chunk = await self.next_chunk()
            if chunk is None:
                return PumpResult.ENDED
            if delivery.closed:
                raise RuntimeError("delivery closed while an attempt was pumping")

            tracker.update(chunk)
            more = delivery.push(chunk)
            if not more:
                return PumpResult.PAUSED

    async def close(self) -> None:
        """Release the response; safe to call any number of times."""

        if self._closed:
            return
        self._closed = True
        response, self.response = self.response, None
        self._body = None
        if response is not None:
            logger.debug(f"Closing response for {self.path}")
            await response.aclose()
