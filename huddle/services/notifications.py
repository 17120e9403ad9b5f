"""
huddle.services.notifications — Notification Sink
==================================================

Membership and vote services emit :class:`NotificationEvent` values through
a :class:`NotificationSink` *inside* their own transaction, so a
notification is persisted if and only if the transition it describes
commits.  Delivery to devices (push, e-mail) is someone else's job; the
default sink simply writes ``notifications`` rows for it to pick up.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy.orm import Session

from huddle.database.models import Notification, NotificationType

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class NotificationEvent:
    """One notification addressed to ``target_user_id``."""

    type: NotificationType
    gathering_id: int | None
    related_user_id: int | None
    target_user_id: int


class NotificationSink(Protocol):
    def emit(self, session: Session, events: Iterable[NotificationEvent]) -> None:
        ...


class DatabaseNotificationSink:
    """Persist events as ``notifications`` rows in the caller's session."""

    def emit(self, session: Session, events: Iterable[NotificationEvent]) -> None:
        count = 0
        for event in events:
            session.add(Notification(
                user_id=event.target_user_id,
                type=event.type.value,
                gathering_id=event.gathering_id,
                related_user_id=event.related_user_id,
            ))
            count += 1
        if count:
            logger.debug("Queued %d notification(s) in current transaction", count)


class RecordingNotificationSink:
    """Collects events in memory; for tests and dry runs."""

    def __init__(self) -> None:
        self.events: list[NotificationEvent] = []

    def emit(self, session: Session, events: Iterable[NotificationEvent]) -> None:
        self.events.extend(events)

    def types(self) -> list[NotificationType]:
        return [e.type for e in self.events]


_default_sink: NotificationSink = DatabaseNotificationSink()


def get_default_sink() -> NotificationSink:
    """Return the module-level sink used when a service gets ``sink=None``."""
    return _default_sink
