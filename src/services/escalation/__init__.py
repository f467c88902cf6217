"""Complaint escalation: rule table, engine, storage, notifications and driver."""

from __future__ import annotations

from src.services.escalation.display import format_escalation_time, get_escalation_info
from src.services.escalation.engine import EscalationEngine
from src.services.escalation.errors import (
    AssignmentConflictError,
    ComplaintExistsError,
    ComplaintNotFoundError,
    ConfigurationError,
    EscalationError,
    InvalidTransitionError,
    StaleWriteConflict,
    StoreUnavailableError,
)
from src.services.escalation.notifications import (
    LoggingNotificationSink,
    NotificationSink,
    QueueNotificationSink,
    RedisNotificationSink,
)
from src.services.escalation.officers import (
    InMemoryRejectionRegistry,
    OfficerQueue,
    RedisRejectionRegistry,
)
from src.services.escalation.rules import (
    DEFAULT_ESCALATION_RULES,
    RuleTable,
    load_rule_table,
)
from src.services.escalation.scheduler import EscalationScheduler, PassResult
from src.services.escalation.service import EscalationService
from src.services.escalation.store import (
    ComplaintStore,
    InMemoryComplaintStore,
    RedisComplaintStore,
)
from src.services.escalation.timing import escalation_progress, time_until_escalation

__all__ = [
    "AssignmentConflictError",
    "ComplaintExistsError",
    "ComplaintNotFoundError",
    "ComplaintStore",
    "ConfigurationError",
    "DEFAULT_ESCALATION_RULES",
    "EscalationEngine",
    "EscalationError",
    "EscalationScheduler",
    "EscalationService",
    "InMemoryComplaintStore",
    "InMemoryRejectionRegistry",
    "InvalidTransitionError",
    "LoggingNotificationSink",
    "NotificationSink",
    "OfficerQueue",
    "PassResult",
    "QueueNotificationSink",
    "RedisComplaintStore",
    "RedisNotificationSink",
    "RedisRejectionRegistry",
    "RuleTable",
    "StaleWriteConflict",
    "StoreUnavailableError",
    "escalation_progress",
    "format_escalation_time",
    "get_escalation_info",
    "load_rule_table",
    "time_until_escalation",
]
