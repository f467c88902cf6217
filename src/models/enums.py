from __future__ import annotations

from enum import StrEnum


class Severity(StrEnum):
    __slots__ = ()

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ComplaintStatus(StrEnum):
    """Complaint lifecycle status.

    ``pending`` and ``in_progress`` keep the escalation timer running;
    ``resolved`` and ``rejected`` freeze it for good.
    """

    __slots__ = ()

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    REJECTED = "rejected"

    @property
    def is_open(self) -> bool:
        return self in (ComplaintStatus.PENDING, ComplaintStatus.IN_PROGRESS)


class ComplaintCategory(StrEnum):
    __slots__ = ()

    RAIL = "rail"
    ROAD = "road"
    FIRE = "fire"
    CYBER = "cyber"
    POLICE = "police"
    COURT = "court"


class TransitionReason(StrEnum):
    """Outcome tag of a single escalation evaluation."""

    __slots__ = ()

    ESCALATED = "escalated"  # moved to the next numeric level
    CLOSED = "closed"  # terminal window expired, complaint must be closed
    TERMINAL = "terminal"  # no rule for this level, nothing left to do
    NOT_DUE = "not_due"
    INACTIVE = "inactive"  # complaint already resolved / rejected
