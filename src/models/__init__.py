from src.models.enums import (
    ComplaintCategory,
    ComplaintStatus,
    Severity,
    TransitionReason,
)
from src.models.escalation import (
    CLOSE,
    CloseLevel,
    EscalationEvent,
    EscalationNotice,
    EscalationRule,
    EscalationSnapshot,
    EscalationState,
    LevelDisplay,
    NextLevel,
    NumericLevel,
    TimerInfo,
    TransitionResult,
)

__all__ = [
    "CLOSE",
    "CloseLevel",
    "ComplaintCategory",
    "ComplaintStatus",
    "EscalationEvent",
    "EscalationNotice",
    "EscalationRule",
    "EscalationSnapshot",
    "EscalationState",
    "LevelDisplay",
    "NextLevel",
    "NumericLevel",
    "Severity",
    "TimerInfo",
    "TransitionReason",
    "TransitionResult",
]
