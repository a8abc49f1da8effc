"""
Change notifications.

The kernel emits ``ChangeEvent`` records to an ``EventSink``; how they reach a
browser (websocket, SSE, polling) is somebody else's problem.  Two rules:

* Events describe committed state.  ``SessionEventPublisher`` holds events
  queued during a transaction and hands them to the sink only from the
  session's ``after_commit`` hook; a rollback discards them.
* Delivery never affects the core.  A failing subscriber is logged and the
  remaining subscribers still run.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable
from typing import Protocol
from uuid import UUID

from sqlalchemy import event
from sqlalchemy.orm import Session

from points_kernel.domain.events import ChangeEvent
from points_kernel.logging_config import get_logger

logger = get_logger("services.notifications")

Subscriber = Callable[[ChangeEvent], None]


class EventSink(Protocol):
    def emit(self, event: ChangeEvent) -> None: ...


class NullEventSink:
    """Sink that drops everything."""

    def emit(self, event: ChangeEvent) -> None:
        return None


class InMemoryEventBus:
    """
    In-process fan-out.

    Subscribers register for one user's events or for all events.  Every
    emitted event is also kept in ``emitted`` for inspection.
    """

    def __init__(self) -> None:
        self._by_user: dict[UUID, list[Subscriber]] = defaultdict(list)
        self._global: list[Subscriber] = []
        self.emitted: list[ChangeEvent] = []

    def subscribe(self, user_id: UUID, callback: Subscriber) -> Callable[[], None]:
        """Subscribe to one user's events.  Returns an unsubscribe function."""
        self._by_user[user_id].append(callback)

        def unsubscribe() -> None:
            if callback in self._by_user.get(user_id, []):
                self._by_user[user_id].remove(callback)

        return unsubscribe

    def subscribe_all(self, callback: Subscriber) -> Callable[[], None]:
        self._global.append(callback)

        def unsubscribe() -> None:
            if callback in self._global:
                self._global.remove(callback)

        return unsubscribe

    def emit(self, event: ChangeEvent) -> None:
        self.emitted.append(event)
        for callback in [*self._by_user.get(event.user_id, []), *self._global]:
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "event_subscriber_failed",
                    extra={"event_type": event.type.value, "user_id": str(event.user_id)},
                )

    def events_for(self, user_id: UUID) -> list[ChangeEvent]:
        return [e for e in self.emitted if e.user_id == user_id]


class SessionEventPublisher:
    """
    Queue events on a session; deliver them after commit.

    Use ``SessionEventPublisher.for_session(session, sink)`` so that every
    service sharing a session also shares one queue.
    """

    _INFO_KEY = "points_kernel.event_publishers"

    def __init__(self, session: Session, sink: EventSink):
        self.session = session
        self.sink = sink
        self._pending: list[ChangeEvent] = []
        event.listen(session, "after_commit", self._after_commit)
        event.listen(session, "after_soft_rollback", self._after_rollback)

    @classmethod
    def for_session(cls, session: Session, sink: EventSink) -> SessionEventPublisher:
        publishers = session.info.setdefault(cls._INFO_KEY, {})
        publisher = publishers.get(id(sink))
        if publisher is None or publisher.sink is not sink:
            publisher = cls(session, sink)
            publishers[id(sink)] = publisher
        return publisher

    @property
    def pending(self) -> tuple[ChangeEvent, ...]:
        return tuple(self._pending)

    def publish(self, event: ChangeEvent) -> None:
        # Queued events belong to a transaction; without one a rollback is a
        # no-op and they would leak into the next commit.
        if not self.session.in_transaction():
            self.session.begin()
        self._pending.append(event)

    def _after_commit(self, session: Session) -> None:
        events, self._pending = self._pending, []
        for change in events:
            try:
                self.sink.emit(change)
            except Exception:
                logger.exception(
                    "event_delivery_failed",
                    extra={"event_type": change.type.value, "user_id": str(change.user_id)},
                )

    def _after_rollback(self, session: Session, previous_transaction) -> None:
        # Fires on every Session.rollback(), even with no DB transaction open.
        if previous_transaction.nested:
            return
        if self._pending:
            logger.debug("events_discarded", extra={"count": len(self._pending)})
        self._pending = []
