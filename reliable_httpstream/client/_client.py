import logging
from typing import Any
from urllib.parse import urlsplit

import httpx
from tenacity.wait import wait_base

from reliable_httpstream.stream import DEFAULT_HIGH_WATER_MARK, ReliableHttpStream
from reliable_httpstream.types.retry_policy import RetryPolicy

logger = logging.getLogger(__name__)


class ReliableHttpClient(httpx.AsyncClient):
    """`httpx.AsyncClient` with defaults suited to long downloads.

    Retries are left to the streams it opens, so the transport is never asked
    to retry on its own.
    """

    def __init__(
        self,
        *,
        base_url: httpx.URL | str = "",
        retry_policy: RetryPolicy | None = None,
        **kwargs: Any,
    ):
        self.retry_policy = retry_policy or RetryPolicy()

        headers = dict(kwargs.pop("headers", None) or {})
        headers.setdefault("Accept-Encoding", "identity")

        # Set default timeout for downloads (5 minutes total, 30s connect, 60s read)
        default_timeout = httpx.Timeout(timeout=300.0, connect=30.0, read=60.0)
        timeout = kwargs.pop("timeout", default_timeout)
        follow_redirects = kwargs.pop("follow_redirects", True)

        super().__init__(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            follow_redirects=follow_redirects,
            **kwargs,
        )

    @staticmethod
    def split_url(url: str) -> tuple[str, str]:
        """Split `url` into its origin and the path (with query) to stream."""

        parts = urlsplit(url)
        if parts.scheme not in ("http", "https"):
            raise ValueError(f'expected "http" or "https" URL, got {url!r}')
        if not parts.netloc:
            raise ValueError(f"missing host in URL {url!r}")

        path = parts.path or "/"
        if parts.query:
            path += f"?{parts.query}"
        return f"{parts.scheme}://{parts.netloc}", path

    @classmethod
    def for_url(cls, url: str, **kwargs: Any) -> tuple["ReliableHttpClient", str]:
        """Client for the origin of `url`, and the path to stream from it."""

        base_url, path = cls.split_url(url)
        return cls(base_url=base_url, **kwargs), path

    def open_stream(
        self,
        path: str,
        *,
        high_water_mark: int = DEFAULT_HIGH_WATER_MARK,
        retry_policy: RetryPolicy | None = None,
        wait: wait_base | None = None,
        **callbacks: Any,
    ) -> ReliableHttpStream:
        """Create a stream for `path`; nothing is requested until it is read."""

        logger.debug(f"Opening reliable stream for {path}")
        return ReliableHttpStream(
            path=path,
            client=self,
            high_water_mark=high_water_mark,
            retry_policy=retry_policy or self.retry_policy,
            wait=wait,
            **callbacks,
        )
