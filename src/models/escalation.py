"""Escalation data models.

An :class:`EscalationState` is attached one-to-one to every complaint.
It is created with the complaint (level 1, timer started at creation)
and afterwards only changed by the escalation engine or by external
closure.  Its ``history`` is an append-only audit trail of
:class:`EscalationEvent` records.

``NextLevel`` is a tagged variant: a rule either points at another
numeric level or at the terminal ``close`` step, never at a bare
string mixed in with integers.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, computed_field

from src.models.enums import ComplaintStatus, TransitionReason

MS_PER_HOUR = 3_600_000
MS_PER_MINUTE = 60_000

CLOSE = "close"


# ---------------------------------------------------------------------------
# Rule table entries
# ---------------------------------------------------------------------------


class NumericLevel(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["level"] = "level"
    level: int = Field(..., ge=2)


class CloseLevel(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["close"] = "close"


NextLevel = Annotated[NumericLevel | CloseLevel, Field(discriminator="kind")]


class EscalationRule(BaseModel):
    """One step of a severity's escalation chain."""

    model_config = ConfigDict(frozen=True)

    severity: str
    level: int = Field(..., ge=1)
    next_level: NextLevel
    delay_ms: int = Field(..., gt=0)

    @property
    def closes(self) -> bool:
        return isinstance(self.next_level, CloseLevel)

    @property
    def target(self) -> int | Literal["close"]:
        """The next level as stored in events: an int or ``"close"``."""
        if isinstance(self.next_level, NumericLevel):
            return self.next_level.level
        return CLOSE


# ---------------------------------------------------------------------------
# State and audit trail
# ---------------------------------------------------------------------------


class EscalationEvent(BaseModel):
    """Immutable audit record of one level transition."""

    model_config = ConfigDict(frozen=True)

    from_level: int = Field(..., ge=1)
    to_level: int | Literal["close"]
    escalated_at: datetime
    reason: str
    escalated_by: str | None = None

    @property
    def is_close(self) -> bool:
        return self.to_level == CLOSE


class EscalationState(BaseModel):
    """Escalation track of a single complaint.

    ``severity`` and ``level`` hold whatever the complaint record
    carries; the engine applies the medium / level-1 fallbacks when it
    reads them, so bad upstream data stays visible here.
    """

    model_config = ConfigDict(validate_assignment=True)

    complaint_id: str
    severity: str = "medium"
    level: int = 1
    status: ComplaintStatus = ComplaintStatus.PENDING
    current_level_started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    history: list[EscalationEvent] = Field(default_factory=list)
    version: int = 0
    category: str | None = None
    reporter_id: str | None = None
    assigned_officer_id: str | None = None

    @property
    def is_open(self) -> bool:
        return self.status.is_open

    @property
    def close_signalled(self) -> bool:
        """True once the terminal window expired and a close event was recorded."""
        return bool(self.history) and self.history[-1].is_close


# ---------------------------------------------------------------------------
# Computation results
# ---------------------------------------------------------------------------


class TimerInfo(BaseModel):
    """Countdown to the next escalation of a complaint.

    ``active`` is False for resolved / rejected complaints and for
    complaints sitting at a level with no rule; every other field is
    then meaningless and left at its default.
    """

    model_config = ConfigDict(frozen=True)

    active: bool = True
    is_overdue: bool = False
    remaining_ms: int = 0
    total_ms: int = 0
    next_level: int | Literal["close"] | None = None

    @classmethod
    def inactive(cls) -> TimerInfo:
        return cls(active=False)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def hours(self) -> int:
        return self.remaining_ms // MS_PER_HOUR

    @computed_field  # type: ignore[prop-decorator]
    @property
    def minutes(self) -> int:
        return (self.remaining_ms % MS_PER_HOUR) // MS_PER_MINUTE

    @computed_field  # type: ignore[prop-decorator]
    @property
    def message(self) -> str:
        if not self.active:
            return ""
        if self.is_overdue:
            return "Escalation overdue"
        return f"{self.hours}h {self.minutes}m until next escalation"


class TransitionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    transitioned: bool
    reason: TransitionReason
    new_level: int | None = None
    event: EscalationEvent | None = None
    terminal_reached: bool = False


class EscalationNotice(BaseModel):
    """Payload handed to a notification sink after a transition."""

    notice_id: str = Field(default_factory=lambda: uuid4().hex)
    complaint_id: str
    from_level: int
    to_level: int | Literal["close"]
    reason: str
    recipient_user_id: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class LevelDisplay(BaseModel):
    """Cosmetic metadata for rendering an escalation level."""

    model_config = ConfigDict(frozen=True)

    label: str
    description: str
    color: str
    icon: str
    badge: str


class EscalationSnapshot(BaseModel):
    """What a display surface needs for one complaint.

    ``unknown`` is set when the complaint could not be read; timer and
    progress are then ``None`` instead of a made-up countdown.
    """

    complaint_id: str
    unknown: bool = False
    level: int | None = None
    status: ComplaintStatus | None = None
    display: LevelDisplay | None = None
    timer: TimerInfo | None = None
    progress: float | None = None
    history: list[EscalationEvent] = Field(default_factory=list)
