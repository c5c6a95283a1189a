"""Fetch a URL with a reliable stream in a loop, optionally aborting it.

Meant to exercise `abort()` on streams in various states and to spot memory
or file descriptor leaks across many iterations. Output is plain text with a
timestamp on each line, separate from the library's logging.
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
import tracemalloc
from dataclasses import dataclass, field
from datetime import datetime, timezone

import httpx

from reliable_httpstream import DEFAULT_LOG_LEVEL, LOG_LEVEL_NAME
from reliable_httpstream.client import ReliableHttpClient, StreamError
from reliable_httpstream.stream import DEFAULT_HIGH_WATER_MARK, ReliableHttpStream
from reliable_httpstream.types.stream_state import StreamState
from reliable_httpstream.utils.resource_usage import (
    FdSnapshot,
    MemorySample,
    sample_memory,
    snapshot_fds,
    watermark,
)

INFO_SIGNAL = "SIGUSR2"
ABORT_CHOICES = ("end", "error", "create", "data", "rotate", INFO_SIGNAL)
# "rotate" cycles through these, None meaning no abort at all
ROTATION: tuple[str | None, ...] = ("end", "error", "create", "data", None)
ROTATION_LABELS: dict[str | None, str] = {
    "end": "after end",
    "error": "after error",
    "create": "after create",
    "data": "on data",
    None: "skipped",
}


def log(message: str) -> None:
    print(f"{datetime.now(timezone.utc).isoformat()}: {message}", flush=True)


@dataclass
class StressConfig:
    url: str
    abort: str | None = None
    iterations: int = 300
    warmup: int = 20
    pause: float = 0.05
    high_water_mark: int = 10 * DEFAULT_HIGH_WATER_MARK
    verify: bool = True

    def __post_init__(self):
        if self.abort is not None and self.abort not in ABORT_CHOICES:
            raise ValueError(f"options for --abort: {', '.join(ABORT_CHOICES)}")
        if self.warmup >= self.iterations:
            raise ValueError("# of warmup iterations is configured too high")


@dataclass
class StressReport:
    memory_history: list[MemorySample] = field(default_factory=list)
    fds_initial: FdSnapshot | None = None
    fds_final: FdSnapshot | None = None

    @property
    def leaked_fds(self) -> bool:
        if self.fds_initial is None or self.fds_final is None:
            return False
        return self.fds_initial.differs(self.fds_final)


class StressRunner:
    def __init__(self, config: StressConfig, client: httpx.AsyncClient, path: str):
        self.config = config
        self.client = client
        self.path = path
        self.report = StressReport()
        self.ndone = 0
        self.byte_count = 0
        self.stream: ReliableHttpStream | None = None

    def abort_mode(self) -> str | None:
        if self.config.abort == "rotate":
            return ROTATION[self.ndone % len(ROTATION)]
        if self.config.abort == INFO_SIGNAL:
            return None
        return self.config.abort

    def abort_stream(self, when: str) -> None:
        if self.stream is None:
            log(f"would abort ({when}), but not running")
            return
        log(f"aborting ({when}, read {self.byte_count} bytes so far)")
        self.stream.abort()

    async def run(self) -> StressReport:
        loop = asyncio.get_running_loop()
        if self.config.abort == INFO_SIGNAL:
            loop.add_signal_handler(
                signal.SIGUSR2, self.abort_stream, f"caught {INFO_SIGNAL}"
            )

        tracemalloc.start()
        try:
            while self.ndone < self.config.iterations:
                await self.run_iteration()
                self.record_sample()

                if self.ndone == 1:
                    # Taken after the first iteration to catch lazily opened
                    # descriptors (DNS resolver, TLS context, ...).
                    self.report.fds_initial = snapshot_fds()
                elif self.ndone < self.config.iterations:
                    log(f"starting again in {self.config.pause * 1000:.0f}ms")
                    await asyncio.sleep(self.config.pause)
        finally:
            tracemalloc.stop()
            if self.config.abort == INFO_SIGNAL:
                loop.remove_signal_handler(signal.SIGUSR2)

        log(f"completed {self.ndone} iterations: running final checks")
        await self.client.aclose()
        self.final_fd_leak_check()
        return self.report

    async def run_iteration(self) -> None:
        mode = self.abort_mode()
        if self.config.abort == "rotate":
            log(f"next abort: {ROTATION_LABELS[mode]}")

        self.byte_count = 0
        stream = self.stream = ReliableHttpStream(
            path=self.path,
            client=self.client,
            high_water_mark=self.config.high_water_mark,
        )
        log("stream created")

        try:
            if mode == "create":
                self.abort_stream("on create")
                return

            try:
                async for chunk in stream:
                    self.byte_count += len(chunk)
                    if mode == "data":
                        self.abort_stream("after data")
            except StreamError as e:
                log(f"event: error: {e}")
                if mode == "error":
                    await asyncio.sleep(0)
                    self.abort_stream("after error")
                return

            if stream.state is StreamState.COMPLETED:
                log(f"event: end (read {self.byte_count} bytes)")
                if mode == "end":
                    await asyncio.sleep(0)
                    self.abort_stream("after end")
        finally:
            await stream.aclose()
            self.stream = None

    def record_sample(self) -> None:
        usage = sample_memory()
        self.ndone += 1
        self.report.memory_history.append(usage)
        log(
            f"sample {self.ndone}: rss={usage.rss} heap_used={usage.heap_used} "
            + f"heap_peak={usage.heap_peak}"
        )

    def final_fd_leak_check(self) -> None:
        log("starting fd leak check")
        self.report.fds_final = snapshot_fds()
        if self.report.fds_initial is None:
            raise RuntimeError("no fd snapshot was taken after the first iteration")

        if self.report.leaked_fds:
            log("fds leaked!")
            log("fds before:")
            print(self.report.fds_initial.open_fds_as_string())
            log("fds after:")
            print(self.report.fds_final.open_fds_as_string())
        else:
            log("no fd leaks detected")


def print_summary(report: StressReport, warmup: int) -> None:
    history = report.memory_history

    log("all memory samples")
    print(f"{'#':>3s}  {'RSS':>10s}  {'HEAP USED':>10s}  {'HEAP PEAK':>10s}")
    for i, mem in enumerate(history):
        print(f"{i:3d}  {mem.rss:10d}  {mem.heap_used:10d}  {mem.heap_peak:10d}")

    log(f"memory watermarks (ignoring first {warmup} samples)")
    print(f"{'METRIC':<11s}  {'LOW':<27s}  {'HIGH':<27s}")
    for label, values in (
        ("RSS:", [m.rss for m in history]),
        ("HEAP USED:", [m.heap_used for m in history]),
        ("HEAP PEAK:", [m.heap_peak for m in history]),
    ):
        w = watermark(values, warmup)
        print(
            f"{label:<11s}  {w.low:9d} bytes (sample {w.low_which + 1:2d})  "
            + f"{w.high:9d} bytes (sample {w.high_which + 1:2d})"
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="reliable-httpstream-stress",
        description="Fetch a remote URL using the reliable stream. "
        + "The contents are ignored.",
    )
    parser.add_argument("url")
    parser.add_argument(
        "-a", "--abort", metavar="WHEN", choices=ABORT_CHOICES, default=None,
        help=f"abort the stream: {', '.join(ABORT_CHOICES)}",
    )
    parser.add_argument("-n", "--iterations", type=int, default=300)
    parser.add_argument("--warmup", type=int, default=20)
    parser.add_argument(
        "-k", "--insecure", action="store_true", help="skip TLS certificate checks"
    )
    return parser


async def run_stress(config: StressConfig) -> StressReport:
    # No keep-alive: every iteration opens and closes its own connection.
    limits = httpx.Limits(
        max_connections=config.iterations, max_keepalive_connections=0
    )
    client, path = ReliableHttpClient.for_url(
        config.url, limits=limits, verify=config.verify
    )
    return await StressRunner(config, client, path).run()


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=os.getenv(LOG_LEVEL_NAME, DEFAULT_LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s (%(filename)s:%(lineno)d): "
        + "%(message)s",
    )

    try:
        config = StressConfig(
            url=args.url,
            abort=args.abort,
            iterations=args.iterations,
            warmup=args.warmup,
            verify=not args.insecure,
        )
        ReliableHttpClient.split_url(config.url)
    except ValueError as e:
        parser.error(str(e))

    report = asyncio.run(run_stress(config))
    print_summary(report, config.warmup)
    return 1 if report.leaked_fds else 0


if __name__ == "__main__":
    sys.exit(main())
