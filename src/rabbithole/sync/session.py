"""Subscription lifecycle when the user switches between graphs."""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Protocol, Tuple

from ..utils.logging import get_logger

logger = get_logger(__name__)


class SessionState(Enum):
    """States of one graph subscription."""
    IDLE = "idle"
    ATTACHING = "attaching"      # Subscribed, waiting for initial data
    ACTIVE = "active"            # Initial data applied, serving updates
    DETACHING = "detaching"      # Replaced, being unsubscribed
    DETACHED = "detached"


class SubscriptionHandle(Protocol):
    def unsubscribe(self) -> None:
        ...


class Subscriber(Protocol):
    """Remote store side of a live subscription.

    ``subscribe`` must call ``on_applied`` once the graph's current rows
    have been delivered. It may do so before returning.
    """

    def subscribe(self, rabbit_hole_id: str, on_applied: Callable[[], None]) -> SubscriptionHandle:
        ...


@dataclass(eq=False)
class Attachment:
    rabbit_hole_id: str
    state: SessionState = SessionState.ATTACHING
    handle: Optional[SubscriptionHandle] = None
    applied: bool = False


class GraphSession:
    """
    Switch the live subscription from one graph to another without a gap.

    The old subscription keeps serving until the new one reports that its
    initial data is applied; only then is the old one unsubscribed:

        old ACTIVE ──────────────► DETACHING ─► DETACHED
        new         ATTACHING ──► ACTIVE

    A newer ``switch_to`` supersedes a pending attachment, which is
    unsubscribed immediately. Every state change is appended to
    ``transitions`` as ``(rabbit_hole_id, state)``.
    """

    def __init__(self, subscriber: Subscriber):
        self.subscriber = subscriber
        self.current: Optional[Attachment] = None
        self.pending: Optional[Attachment] = None
        self.transitions: List[Tuple[str, SessionState]] = []

    @property
    def state(self) -> SessionState:
        if self.pending is not None:
            return SessionState.ATTACHING
        if self.current is not None:
            return SessionState.ACTIVE
        return SessionState.IDLE

    @property
    def active_rabbit_hole_id(self) -> Optional[str]:
        return self.current.rabbit_hole_id if self.current else None

    def switch_to(self, rabbit_hole_id: str) -> bool:
        """
        Begin attaching ``rabbit_hole_id``.

        Returns:
            False if the subscription could not be opened; the previous
            attachment is kept in that case.
        """
        if self.pending is None and self.current and self.current.rabbit_hole_id == rabbit_hole_id:
            return True
        if self.pending is not None:
            self._release(self.pending)
            self.pending = None

        attachment = Attachment(rabbit_hole_id)
        self.pending = attachment
        self._record(attachment, SessionState.ATTACHING)
        try:
            attachment.handle = self.subscriber.subscribe(
                rabbit_hole_id, lambda: self._on_applied(attachment)
            )
        except Exception as e:
            logger.error(f"Subscribe to {rabbit_hole_id} failed: {e}", exc_info=True)
            self.pending = None
            self._record(attachment, SessionState.DETACHED)
            return False

        if attachment.applied:
            self._promote(attachment)
        return True

    def detach(self) -> None:
        """Drop every subscription and return to IDLE."""
        for attachment in (self.pending, self.current):
            if attachment is not None:
                self._release(attachment)
        self.pending = None
        self.current = None

    def _on_applied(self, attachment: Attachment) -> None:
        if attachment is not self.pending:
            logger.debug(f"Ignoring stale applied signal for {attachment.rabbit_hole_id}")
            return
        if attachment.handle is None:
            # Signalled from inside subscribe(); promoted once it returns.
            attachment.applied = True
            return
        self._promote(attachment)

    def _promote(self, attachment: Attachment) -> None:
        previous = self.current
        self.current = attachment
        self.pending = None
        self._record(attachment, SessionState.ACTIVE)
        logger.info(f"Subscription to {attachment.rabbit_hole_id} active")
        if previous is not None:
            self._release(previous)

    def _release(self, attachment: Attachment) -> None:
        self._record(attachment, SessionState.DETACHING)
        if attachment.handle is not None:
            try:
                attachment.handle.unsubscribe()
            except Exception as e:
                logger.warning(f"Unsubscribe from {attachment.rabbit_hole_id} failed: {e}")
        self._record(attachment, SessionState.DETACHED)

    def _record(self, attachment: Attachment, state: SessionState) -> None:
        attachment.state = state
        self.transitions.append((attachment.rabbit_hole_id, state))
