"""Cooperative cancellation tokens for in-flight speech operations."""

import asyncio
import logging

logger = logging.getLogger(__name__)


class CancellationToken:
    """Token for aborting an in-flight operation at its next suspension point.

    The token is checked before and after every network call, sleep and join.
    When it is bound to a task, cancelling the token also cancels that task so
    an await that is already suspended unwinds immediately.
    """

    def __init__(self, name: str = "operation"):
        """Initialize cancellation token in non-cancelled state.

        Args:
            name: Label used in log messages
        """
        self.name = name
        self._cancelled = False
        self._task: asyncio.Task | None = None

    def bind(self, task: asyncio.Task) -> None:
        """Attach the task that should be cancelled together with this token."""
        self._task = task
        if self._cancelled and not task.done():
            task.cancel()

    def cancel(self) -> None:
        """Mark token as cancelled and cancel the bound task, if any."""
        if not self._cancelled:
            logger.debug("Cancellation requested for %s", self.name)
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def is_cancelled(self) -> bool:
        """Check if token is cancelled.

        Returns:
            True if cancelled, False otherwise
        """
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        """Unwind the current task if the token was cancelled.

        Raises:
            asyncio.CancelledError: If cancel() was called
        """
        if self._cancelled:
            raise asyncio.CancelledError(f"{self.name} cancelled")

    def reset(self) -> None:
        """Reset token to non-cancelled state."""
        self._cancelled = False
        self._task = None


def check(token: CancellationToken | None) -> None:
    """Raise CancelledError if ``token`` is set; no-op for a missing token."""
    if token is not None:
        token.raise_if_cancelled()
