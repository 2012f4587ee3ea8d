"""Shared fakes for the remote store and the live subscription API."""

from typing import Callable, Dict, List, Optional

import pytest

from rabbithole.sync.operations import RemoteOperation


class RecordingRemoteStore:
    """Remote store that records every call.

    ``failures`` maps an operation id to exceptions raised on successive
    attempts; once the list is used up the operation succeeds.
    """

    def __init__(self) -> None:
        self.calls: List[RemoteOperation] = []
        self.applied: List[RemoteOperation] = []
        self.failures: Dict[str, List[Exception]] = {}

    def fail(self, op: RemoteOperation, *errors: Exception) -> None:
        self.failures.setdefault(op.op_id, []).extend(errors)

    async def apply(self, op: RemoteOperation) -> None:
        self.calls.append(op)
        scripted = self.failures.get(op.op_id)
        if scripted:
            raise scripted.pop(0)
        self.applied.append(op)

    @property
    def applied_names(self) -> List[str]:
        return [op.name.value for op in self.applied]


class FakeHandle:
    def __init__(self, rabbit_hole_id: str) -> None:
        self.rabbit_hole_id = rabbit_hole_id
        self.unsubscribed = False

    def unsubscribe(self) -> None:
        self.unsubscribed = True


class FakeSubscriber:
    """Subscription API whose initial-data signal is fired by the test."""

    def __init__(self, immediate: bool = False) -> None:
        self.immediate = immediate
        self.fail_for: set = set()
        self.handles: List[FakeHandle] = []
        self._callbacks: Dict[str, Callable[[], None]] = {}

    def subscribe(self, rabbit_hole_id: str, on_applied: Callable[[], None]) -> FakeHandle:
        if rabbit_hole_id in self.fail_for:
            raise ConnectionError(f"cannot subscribe to {rabbit_hole_id}")
        handle = FakeHandle(rabbit_hole_id)
        self.handles.append(handle)
        self._callbacks[rabbit_hole_id] = on_applied
        if self.immediate:
            on_applied()
        return handle

    def deliver(self, rabbit_hole_id: str) -> None:
        """Report the initial rows of ``rabbit_hole_id`` as applied."""
        self._callbacks[rabbit_hole_id]()

    def handle_for(self, rabbit_hole_id: str) -> Optional[FakeHandle]:
        matches = [h for h in self.handles if h.rabbit_hole_id == rabbit_hole_id]
        return matches[-1] if matches else None


@pytest.fixture
def remote() -> RecordingRemoteStore:
    return RecordingRemoteStore()


@pytest.fixture
def subscriber() -> FakeSubscriber:
    return FakeSubscriber()
