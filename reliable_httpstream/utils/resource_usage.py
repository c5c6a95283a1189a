import os
import tracemalloc
from dataclasses import dataclass

import psutil


@dataclass(frozen=True)
class MemorySample:
    rss: int
    heap_used: int
    heap_peak: int


@dataclass(frozen=True)
class FdSnapshot:
    """Open descriptors of the current process, keyed by fd number."""

    fds: dict[int, str]

    def differs(self, other: "FdSnapshot") -> bool:
        return self.fds != other.fds

    def open_fds_as_string(self) -> str:
        return "\n".join(f"{fd:5d}  {desc}" for fd, desc in sorted(self.fds.items()))


def sample_memory(process: psutil.Process | None = None) -> MemorySample:
    """RSS of the process plus the Python heap as seen by tracemalloc.

    Heap figures are 0 unless tracemalloc has been started.
    """

    process = process or psutil.Process()
    heap_used, heap_peak = tracemalloc.get_traced_memory()
    return MemorySample(
        rss=process.memory_info().rss, heap_used=heap_used, heap_peak=heap_peak
    )


def snapshot_fds(process: psutil.Process | None = None) -> FdSnapshot:
    process = process or psutil.Process()
    fds: dict[int, str] = {}

    for open_file in process.open_files():
        fds[open_file.fd] = open_file.path

    for conn in process.net_connections(kind="inet"):
        if conn.fd < 0:
            continue
        laddr = f"{conn.laddr.ip}:{conn.laddr.port}" if conn.laddr else "-"
        raddr = f"{conn.raddr.ip}:{conn.raddr.port}" if conn.raddr else "-"
        fds[conn.fd] = f"socket {laddr} -> {raddr} ({conn.status})"

    # Anything else psutil cannot describe (pipes, event loop selectors, ...)
    fd_dir = f"/proc/{process.pid}/fd"
    if os.path.isdir(fd_dir):
        for name in os.listdir(fd_dir):
            fd = int(name)
            if fd not in fds:
                try:
                    fds[fd] = os.readlink(os.path.join(fd_dir, name))
                except OSError:
                    continue

    return FdSnapshot(fds=fds)


@dataclass(frozen=True)
class Watermark:
    low: int
    low_which: int
    high: int
    high_which: int


def watermark(values: list[int], skip: int) -> Watermark:
    """Lowest and highest value (with 0-based sample index) after `skip` samples."""

    if len(values) <= skip:
        raise ValueError(f"need more than {skip} samples, got {len(values)}")

    low_which = high_which = skip
    for i in range(skip, len(values)):
        if values[i] < values[low_which]:
            low_which = i
        elif values[i] > values[high_which]:
            high_which = i
    return Watermark(
        low=values[low_which],
        low_which=low_which,
        high=values[high_which],
        high_which=high_which,
    )
