"""Outbound scheduling events for whatever delivers notifications.

Delivery is fire-and-forget: a transition is committed before its event is
emitted, and a failing notifier never undoes it.
"""

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime

from matchbook.models.availability import utcnow

logger = logging.getLogger(__name__)


class EventKind(str, enum.Enum):
    BOOKING_REQUESTED = 'booking_requested'
    BOOKING_ACCEPTED = 'booking_accepted'
    BOOKING_DECLINED = 'booking_declined'
    BOOKING_CANCELLED = 'booking_cancelled'
    TIME_PROPOSED = 'time_proposed'
    PROPOSED_TIME_ACCEPTED = 'proposed_time_accepted'
    INVITE_SENT = 'invite_sent'
    INVITE_ACCEPTED = 'invite_accepted'
    INVITE_DECLINED = 'invite_declined'
    INVITE_RESCHEDULED = 'invite_rescheduled'
    INVITE_CANCELLED = 'invite_cancelled'
    INVITE_EXPIRED = 'invite_expired'


@dataclass(frozen=True)
class SchedulingEvent:
    kind: EventKind
    record_id: int
    actor_id: int | None
    recipient_id: int
    payload: dict = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utcnow)


class Notifier:
    def send(self, event: SchedulingEvent) -> None:
        raise NotImplementedError


class LoggingNotifier(Notifier):
    def send(self, event: SchedulingEvent) -> None:
        logger.info(
            'notify user %s: %s for record %s (actor %s)',
            event.recipient_id,
            event.kind.value,
            event.record_id,
            event.actor_id,
        )


class RecordingNotifier(Notifier):
    def __init__(self):
        self.events: list[SchedulingEvent] = []

    def send(self, event: SchedulingEvent) -> None:
        self.events.append(event)

    def kinds(self) -> list[EventKind]:
        return [event.kind for event in self.events]


default_notifier = LoggingNotifier()


def emit(notifier: Notifier | None, event: SchedulingEvent) -> None:
    target = notifier or default_notifier
    try:
        target.send(event)
    except Exception:
        logger.exception('Failed to deliver %s notification for record %s', event.kind.value, event.record_id)
