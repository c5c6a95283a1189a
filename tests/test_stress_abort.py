"""
Tests for the abort stress tool and its resource sampling helpers.
"""

import httpx
import pytest

from fault_server import BASE_URL, make_content
from reliable_httpstream import stress_abort
from reliable_httpstream.stress_abort import (
    ROTATION,
    ROTATION_LABELS,
    StressConfig,
    StressRunner,
)
from reliable_httpstream.utils.resource_usage import (
    FdSnapshot,
    sample_memory,
    snapshot_fds,
    watermark,
)

PAYLOAD = make_content(64 * 1024)


def always_ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, content=PAYLOAD)


def always_forbidden(request: httpx.Request) -> httpx.Response:
    return httpx.Response(403)


class TestWatermark:
    """Tests for watermark."""

    def test_skips_warmup(self):
        w = watermark([100, 5, 1, 9, 3, 7], skip=1)
        assert (w.low, w.low_which) == (1, 2)
        assert (w.high, w.high_which) == (9, 3)

    def test_needs_samples_after_warmup(self):
        with pytest.raises(ValueError):
            watermark([1, 2], skip=2)


class TestResourceUsage:
    """Tests for memory and descriptor sampling."""

    def test_sample_memory(self):
        sample = sample_memory()
        assert sample.rss > 0
        assert sample.heap_used >= 0

    def test_snapshot_is_stable(self):
        assert not snapshot_fds().differs(snapshot_fds())

    def test_differs(self):
        before = FdSnapshot(fds={0: "/dev/null"})
        after = FdSnapshot(fds={0: "/dev/null", 7: "socket"})
        assert before.differs(after)
        assert "socket" in after.open_fds_as_string()


class TestStressConfig:
    """Tests for StressConfig validation."""

    def test_rejects_unknown_abort(self):
        with pytest.raises(ValueError, match="--abort"):
            StressConfig(url="http://h/", abort="sometimes")

    def test_rejects_warmup_past_iterations(self):
        with pytest.raises(ValueError, match="warmup"):
            StressConfig(url="http://h/", iterations=5, warmup=5)

    def test_rotation_has_labels(self):
        assert set(ROTATION) == set(ROTATION_LABELS)


class TestStressRunner:
    """Tests for StressRunner against an in-process server."""

    @staticmethod
    def runner(handler, **config) -> StressRunner:
        client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
        config = StressConfig(url=f"{BASE_URL}/r", pause=0, **config)
        return StressRunner(config, client, "/r")

    def test_abort_mode_rotates(self):
        runner = self.runner(always_ok, abort="rotate", iterations=10, warmup=1)
        modes = []
        for n in range(len(ROTATION)):
            runner.ndone = n
            modes.append(runner.abort_mode())
        assert tuple(modes) == ROTATION

    def test_signal_mode_never_aborts_on_its_own(self):
        runner = self.runner(always_ok, abort=stress_abort.INFO_SIGNAL, iterations=2, warmup=1)
        assert runner.abort_mode() is None

    @pytest.mark.parametrize("abort", [None, "create", "data", "end", "rotate"])
    def test_run(self, run, abort):
        runner = self.runner(always_ok, abort=abort, iterations=6, warmup=1)
        report = run(runner.run())

        assert runner.ndone == 6
        assert len(report.memory_history) == 6
        assert report.fds_initial is not None
        assert report.fds_final is not None
        assert runner.stream is None

    def test_run_with_errors(self, run):
        runner = self.runner(always_forbidden, abort="error", iterations=3, warmup=1)
        report = run(runner.run())
        assert len(report.memory_history) == 3

    def test_leak_check_needs_initial_snapshot(self):
        runner = self.runner(always_ok, iterations=2, warmup=1)
        with pytest.raises(RuntimeError, match="fd snapshot"):
            runner.final_fd_leak_check()

    def test_byte_count_of_full_fetch(self, run):
        runner = self.runner(always_ok, iterations=2, warmup=1)

        async def one_iteration():
            await runner.run_iteration()
            await runner.client.aclose()

        run(one_iteration())
        assert runner.byte_count == len(PAYLOAD)

    def test_print_summary(self, run, capsys):
        runner = self.runner(always_ok, iterations=3, warmup=1)
        report = run(runner.run())
        stress_abort.print_summary(report, warmup=1)

        out = capsys.readouterr().out
        assert "memory watermarks (ignoring first 1 samples)" in out
        assert "HEAP PEAK:" in out
