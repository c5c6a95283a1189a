"""Fetch a URL through a reliable stream and report how many bytes arrived."""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

import aiofiles
from tqdm.asyncio import tqdm as async_tqdm

from reliable_httpstream import DEFAULT_LOG_LEVEL, LOG_LEVEL_NAME
from reliable_httpstream.client import ReliableHttpClient
from reliable_httpstream.stream import DEFAULT_HIGH_WATER_MARK
from reliable_httpstream.types.retry_policy import RetryPolicy
from reliable_httpstream.types.stream_outcome import Completed

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="reliable-httpstream",
        description="Fetch a remote URL, resuming across transient failures.",
    )
    parser.add_argument("url", help="http or https URL to fetch")
    parser.add_argument(
        "-o", "--output", type=Path, default=None, help="write the body to this file"
    )
    parser.add_argument(
        "--high-water-mark",
        type=int,
        default=10 * DEFAULT_HIGH_WATER_MARK,
        help="bytes buffered ahead of the writer (default: %(default)s)",
    )
    parser.add_argument("--max-attempts", type=int, default=RetryPolicy().max_attempts)
    parser.add_argument("--min-delay", type=float, default=RetryPolicy().min_delay)
    parser.add_argument("--max-delay", type=float, default=RetryPolicy().max_delay)
    parser.add_argument(
        "-q", "--quiet", action="store_true", help="do not show a progress bar"
    )
    return parser


async def fetch(
    url: str,
    output: Path | None,
    *,
    high_water_mark: int,
    retry_policy: RetryPolicy,
    quiet: bool = False,
) -> int:
    client, path = ReliableHttpClient.for_url(url, retry_policy=retry_policy)
    async with client:
        stream = client.open_stream(path, high_water_mark=high_water_mark)
        async with stream:
            with async_tqdm(
                desc=f"Fetching {path}",
                unit="B",
                unit_scale=True,
                unit_divisor=1024,
                disable=quiet,
            ) as pbar:
                if output is None:
                    async for chunk in stream:
                        if pbar.total is None and stream.expected_metadata:
                            pbar.total = stream.expected_metadata.length
                        pbar.update(len(chunk))
                else:
                    async with aiofiles.open(output, "wb") as f:
                        async for chunk in stream:
                            if pbar.total is None and stream.expected_metadata:
                                pbar.total = stream.expected_metadata.length
                            await f.write(chunk)
                            pbar.update(len(chunk))

            outcome = stream.outcome

    if not isinstance(outcome, Completed):
        raise RuntimeError(f"Fetch of {url} stopped before completion")

    logger.info(f"Fetched {url} (md5 {outcome.checksum})")
    return outcome.byte_count


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=os.getenv(LOG_LEVEL_NAME, DEFAULT_LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    retry_policy = RetryPolicy(
        max_attempts=args.max_attempts,
        min_delay=args.min_delay,
        max_delay=args.max_delay,
    )

    print("fetching ... ", file=sys.stderr)
    try:
        nbytes = asyncio.run(
            fetch(
                args.url,
                args.output,
                high_water_mark=args.high_water_mark,
                retry_policy=retry_policy,
                quiet=args.quiet,
            )
        )
    except Exception as e:
        print(f"error: {e}", file=sys.stderr)
        if args.output is not None:
            args.output.unlink(missing_ok=True)
        return 1

    print(f"fetched {nbytes} bytes")
    return 0


if __name__ == "__main__":
    sys.exit(main())
