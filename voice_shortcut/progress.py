"""Chunk progress notifications and per-chunk status tracking."""

import logging
from typing import Protocol

from voice_shortcut._types import ChunkStatus

logger = logging.getLogger(__name__)


class ChunkProgressObserver(Protocol):
    """Receives progress of a chunked operation on the calling task.

    Order per operation: splitting_started (audio only), chunking_started,
    then chunk_started followed by chunk_completed or chunk_failed for each
    chunk, then merging_started.
    """

    def splitting_started(self) -> None: ...

    def chunking_started(self, total: int) -> None: ...

    def chunk_started(self, index: int) -> None: ...

    def chunk_completed(self, index: int, text: str) -> None: ...

    def chunk_failed(self, index: int, error: Exception, will_retry: bool) -> None: ...

    def merging_started(self) -> None: ...

    def rate_limit_wait(self, seconds: float) -> None: ...


class NullObserver:
    """Observer that ignores every notification."""

    def splitting_started(self) -> None:
        pass

    def chunking_started(self, total: int) -> None:
        pass

    def chunk_started(self, index: int) -> None:
        pass

    def chunk_completed(self, index: int, text: str) -> None:
        pass

    def chunk_failed(self, index: int, error: Exception, will_retry: bool) -> None:
        pass

    def merging_started(self) -> None:
        pass

    def rate_limit_wait(self, seconds: float) -> None:
        pass


_ALLOWED = {
    ChunkStatus.PENDING: {ChunkStatus.ACTIVE},
    ChunkStatus.ACTIVE: {ChunkStatus.ACTIVE, ChunkStatus.COMPLETED, ChunkStatus.FAILED},
    # An explicit retry re-enters ACTIVE
    ChunkStatus.FAILED: {ChunkStatus.ACTIVE},
    ChunkStatus.COMPLETED: set(),
}


class ChunkTracker:
    """Per-chunk statuses whose transitions only move forward."""

    def __init__(self, total: int):
        if total < 0:
            raise ValueError("total must be non-negative")
        self._statuses = [ChunkStatus.PENDING] * total

    def __len__(self) -> int:
        return len(self._statuses)

    @property
    def statuses(self) -> tuple[ChunkStatus, ...]:
        return tuple(self._statuses)

    def status(self, index: int) -> ChunkStatus:
        return self._statuses[index]

    def set(self, index: int, status: ChunkStatus) -> tuple[ChunkStatus, ...]:
        """Move chunk ``index`` to ``status``.

        Returns:
            Snapshot of all statuses after the change

        Raises:
            ValueError: On a backwards or otherwise illegal transition
        """
        current = self._statuses[index]
        if status not in _ALLOWED[current]:
            raise ValueError(
                f"Illegal chunk {index} transition: {current.value} -> {status.value}"
            )
        self._statuses[index] = status
        return self.statuses

    def count(self, status: ChunkStatus) -> int:
        return sum(1 for s in self._statuses if s is status)
