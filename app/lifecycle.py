"""
Delivery request lifecycle.

PENDING --(worker claims)--> PROCESSING
PROCESSING --> BLACKLISTED | SENT | FAILED   (terminal)

No transition leaves a terminal state.
"""

import enum


class SmsStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SENT = "SENT"
    FAILED = "FAILED"
    BLACKLISTED = "BLACKLISTED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({SmsStatus.SENT, SmsStatus.FAILED, SmsStatus.BLACKLISTED})

ALLOWED_TRANSITIONS = {
    SmsStatus.PENDING: frozenset({SmsStatus.PROCESSING}),
    SmsStatus.PROCESSING: TERMINAL_STATUSES,
    SmsStatus.SENT: frozenset(),
    SmsStatus.FAILED: frozenset(),
    SmsStatus.BLACKLISTED: frozenset(),
}

# Failure codes recorded by the pipeline itself
PHONE_NUMBER_BLACKLISTED = "PHONE_NUMBER_BLACKLISTED"
PROCESSING_ERROR = "PROCESSING_ERROR"
DENYLIST_UNAVAILABLE = "DENYLIST_UNAVAILABLE"


def can_transition(current: SmsStatus, target: SmsStatus) -> bool:
    """Return True if moving from current to target is a legal step."""
    return SmsStatus(target) in ALLOWED_TRANSITIONS[SmsStatus(current)]


def sources_for(target: SmsStatus) -> frozenset:
    """All statuses from which target can be reached in one step."""
    target = SmsStatus(target)
    return frozenset(s for s, allowed in ALLOWED_TRANSITIONS.items() if target in allowed)
