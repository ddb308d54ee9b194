"""Tests for chunk progress tracking."""

import pytest

from voice_shortcut._types import ChunkStatus
from voice_shortcut.progress import ChunkTracker, NullObserver


class TestChunkTracker:
    """Tests for ChunkTracker."""

    def test_starts_pending(self):
        """Test every chunk starts pending."""
        tracker = ChunkTracker(3)
        assert len(tracker) == 3
        assert tracker.statuses == (ChunkStatus.PENDING,) * 3

    def test_forward_transitions(self):
        """Test pending -> active -> completed."""
        tracker = ChunkTracker(2)
        tracker.set(0, ChunkStatus.ACTIVE)
        snapshot = tracker.set(0, ChunkStatus.COMPLETED)
        assert snapshot == (ChunkStatus.COMPLETED, ChunkStatus.PENDING)
        assert tracker.count(ChunkStatus.COMPLETED) == 1

    def test_retry_after_failure(self):
        """Test a failed chunk can become active again."""
        tracker = ChunkTracker(1)
        tracker.set(0, ChunkStatus.ACTIVE)
        tracker.set(0, ChunkStatus.FAILED)
        tracker.set(0, ChunkStatus.ACTIVE)
        assert tracker.status(0) is ChunkStatus.ACTIVE

    @pytest.mark.parametrize(
        "steps",
        [
            [ChunkStatus.COMPLETED],
            [ChunkStatus.FAILED],
            [ChunkStatus.ACTIVE, ChunkStatus.COMPLETED, ChunkStatus.ACTIVE],
            [ChunkStatus.ACTIVE, ChunkStatus.COMPLETED, ChunkStatus.FAILED],
            [ChunkStatus.ACTIVE, ChunkStatus.PENDING],
        ],
    )
    def test_illegal_transitions(self, steps):
        """Test statuses never move backwards."""
        tracker = ChunkTracker(1)
        for step in steps[:-1]:
            tracker.set(0, step)
        with pytest.raises(ValueError, match="Illegal chunk 0 transition"):
            tracker.set(0, steps[-1])

    def test_negative_total(self):
        """Test a negative chunk count is rejected."""
        with pytest.raises(ValueError):
            ChunkTracker(-1)


class TestNullObserver:
    """Tests for NullObserver."""

    def test_accepts_every_notification(self):
        """Test the null observer ignores all callbacks."""
        observer = NullObserver()
        observer.splitting_started()
        observer.chunking_started(2)
        observer.chunk_started(0)
        observer.chunk_completed(0, "text")
        observer.chunk_failed(1, RuntimeError("x"), False)
        observer.merging_started()
        observer.rate_limit_wait(3.0)
