"""Ordered, best-effort delivery of graph mutations to a remote store."""

import asyncio
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Protocol, Tuple

from .error_handler import ErrorHandler, ErrorType
from .operations import RemoteOperation
from ..utils.logging import get_logger

logger = get_logger(__name__)


class RemoteStore(Protocol):
    """Injected persistence interface.

    ``apply`` raises ``RetryableDispatchError`` or
    ``NonRetryableDispatchError`` (or any other exception, which is
    classified by ``ErrorHandler``) when the operation was not applied.
    """

    async def apply(self, op: RemoteOperation) -> None:
        ...


class WriteQueue:
    """
    FIFO of remote operations drained strictly head-first.

    Operations are always appended; a flush then sends them in order.
    On a retryable failure the flush stops and the head stays put until
    the next trigger (new submission, ``attach``, explicit ``flush``). On a
    terminal failure only the head is dropped and draining continues.
    Items are never reordered.

    Attributes:
        pending: Operations not yet acknowledged, head first
        sent: Number of operations applied remotely
        dropped: ``(operation, reason)`` for every dropped operation
    """

    def __init__(
        self,
        remote: Optional[RemoteStore] = None,
        error_handler: Optional[ErrorHandler] = None,
    ):
        self._remote = remote
        self.error_handler = error_handler or ErrorHandler()
        self._queue: Deque[RemoteOperation] = deque()
        self._flushing = False
        self._task: Optional["asyncio.Task[None]"] = None
        self.sent = 0
        self.dropped: List[Tuple[RemoteOperation, str]] = []

    @property
    def pending(self) -> List[RemoteOperation]:
        return list(self._queue)

    @property
    def connected(self) -> bool:
        return self._remote is not None

    @property
    def flushing(self) -> bool:
        return self._flushing

    def __len__(self) -> int:
        return len(self._queue)

    def submit(self, op: RemoteOperation) -> None:
        """Queue an operation and kick off a flush if one can run now."""
        self._queue.append(op)
        logger.debug(f"Queued {op.name.value} ({op.entity_key}); {len(self._queue)} pending")
        self._schedule_flush()

    def attach(self, remote: RemoteStore) -> None:
        """Connect a remote store and drain whatever queued up meanwhile."""
        self._remote = remote
        logger.info(f"Remote store attached; {len(self._queue)} operations pending")
        self._schedule_flush()

    def detach(self) -> None:
        """Disconnect; subsequent operations queue until the next ``attach``."""
        self._remote = None
        logger.info(f"Remote store detached; {len(self._queue)} operations pending")

    def _schedule_flush(self) -> None:
        if self._remote is None or self._flushing or not self._queue:
            return
        if self._task is not None and not self._task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: stays queued until the next flush trigger.
            return
        self._task = loop.create_task(self.flush())

    async def flush(self) -> None:
        """Drain the queue head-first. A call while a flush is running is a no-op."""
        if self._flushing:
            return
        self._flushing = True
        try:
            while self._queue and self._remote is not None:
                op = self._queue[0]
                op.attempts += 1
                try:
                    await self._remote.apply(op)
                except Exception as e:
                    if not self._handle_failure(op, e):
                        break
                    continue
                self._queue.popleft()
                self.sent += 1
        finally:
            self._flushing = False

    def _handle_failure(self, op: RemoteOperation, error: Exception) -> bool:
        """Return True if draining should continue past this failure."""
        error_type = self.error_handler.classify_error(error)
        reason = self.error_handler.describe(error)
        op.last_error = reason

        if self.error_handler.should_retry(error_type, op.attempts):
            logger.info(
                f"Remote {op.name.value} ({op.entity_key}) failed, keeping at head "
                f"(attempt {op.attempts}, {error_type.value}): {reason[:100]}"
            )
            return False

        self._queue.popleft()
        self.dropped.append((op, reason))
        log = logger.error if error_type == ErrorType.UNKNOWN else logger.warning
        log(
            f"Dropped remote {op.name.value} ({op.entity_key}) after {op.attempts} attempts: "
            f"{error_type.value} - {reason[:100]}"
        )
        return True

    async def wait_idle(self) -> None:
        """Wait for the flush started by the last trigger to finish."""
        while self._task is not None and not self._task.done():
            await self._task

    def snapshot(self) -> List[Dict[str, Any]]:
        """Pending operations as dicts, head first."""
        return [op.to_dict() for op in self._queue]

    def restore(self, items: List[Dict[str, Any]]) -> None:
        """Re-queue operations saved with ``snapshot``, behind anything pending."""
        for item in items:
            self._queue.append(RemoteOperation.from_dict(item))
        logger.info(f"Restored {len(items)} pending operations")
        self._schedule_flush()
