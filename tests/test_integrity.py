"""
Unit tests for the running MD5 tracker.
"""

import base64
import hashlib

import pytest

from reliable_httpstream.stream.integrity import IntegrityTracker

EMPTY_MD5 = "1B2M2Y8AsgTpgAmY7PhCfg=="


class TestIntegrityTracker:
    """Tests for IntegrityTracker."""

    def test_empty_digest(self):
        """No bytes hash to the well-known empty MD5."""
        tracker = IntegrityTracker()
        assert tracker.finalize() == EMPTY_MD5
        assert tracker.byte_count == 0

    def test_digest_matches_hashlib(self):
        """Chunked updates hash the same as the whole payload."""
        payload = b"abcdefghijklmnopqrstuvwxy" * 100
        tracker = IntegrityTracker()
        for start in range(0, len(payload), 137):
            tracker.update(payload[start : start + 137])

        expected = base64.b64encode(hashlib.md5(payload).digest()).decode()
        assert tracker.finalize() == expected
        assert tracker.byte_count == len(payload)

    def test_finalized_flag(self):
        tracker = IntegrityTracker()
        assert not tracker.finalized
        tracker.finalize()
        assert tracker.finalized

    def test_update_after_finalize(self):
        tracker = IntegrityTracker()
        tracker.finalize()
        with pytest.raises(RuntimeError):
            tracker.update(b"late")

    def test_finalize_twice(self):
        tracker = IntegrityTracker()
        tracker.finalize()
        with pytest.raises(RuntimeError):
            tracker.finalize()
