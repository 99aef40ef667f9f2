"""Typed rejections raised by the scheduling core.

Every rejection carries a stable ``code`` so transports can branch on the kind
without parsing messages, and a message specific enough to show to a player.
"""

import enum


class SchedulingError(Exception):
    code = 'scheduling_error'
    http_status = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {'code': self.code, 'detail': self.message}


class ValidationError(SchedulingError):
    """Malformed or out-of-range input: bad time strings, start >= end, off-grid times."""
    code = 'validation_error'


class ConflictReason(str, enum.Enum):
    SLOT_TAKEN = 'slot_taken'
    OUTSIDE_AVAILABILITY = 'outside_availability'
    OPPONENT_UNAVAILABLE = 'opponent_unavailable'


CONFLICT_MESSAGES = {
    ConflictReason.SLOT_TAKEN: 'This time has already been booked.',
    ConflictReason.OUTSIDE_AVAILABILITY: 'This time is outside the declared availability.',
    ConflictReason.OPPONENT_UNAVAILABLE: 'One of the players already has another match at this time.',
}


class ConflictError(SchedulingError):
    code = 'conflict'
    http_status = 409

    def __init__(self, reason: ConflictReason, message: str | None = None):
        super().__init__(message or CONFLICT_MESSAGES[reason])
        self.reason = reason

    def to_dict(self) -> dict:
        return {**super().to_dict(), 'reason': self.reason.value}


class InvalidStateTransition(SchedulingError):
    """Operation not legal from the record's current status, or not legal for this actor."""
    code = 'invalid_state_transition'
    http_status = 409

    def __init__(
        self,
        current: str | None,
        attempted: str,
        message: str | None = None,
        actor_id: int | None = None,
    ):
        if message is None:
            if current is None:
                message = f'Cannot {attempted}: record does not exist.'
            else:
                message = f'Cannot {attempted} from status {current}.'
        super().__init__(message)
        self.current = current
        if current is None:
            self.http_status = 404
        self.attempted = attempted
        self.actor_id = actor_id

    def to_dict(self) -> dict:
        return {**super().to_dict(), 'current': self.current, 'attempted': self.attempted}


class RescheduleLimitExceeded(SchedulingError):
    code = 'reschedule_limit_exceeded'
    http_status = 429

    def __init__(self, limit: int):
        super().__init__(
            f'Maximum reschedule attempts reached ({limit}). You can still accept, decline or cancel.'
        )
        self.limit = limit

    def to_dict(self) -> dict:
        return {**super().to_dict(), 'limit': self.limit}
