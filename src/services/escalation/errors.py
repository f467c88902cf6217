"""Exception hierarchy for the escalation subsystem.

Unknown severities are not errors: they fall back to ``medium`` with
a logged warning.
"""

from __future__ import annotations


class EscalationError(Exception):
    """Base class for all escalation errors."""


class ConfigurationError(EscalationError):
    """The rule table violates its chain invariants.

    Raised once, at startup.
    """


class StaleWriteConflict(EscalationError):
    """The complaint changed between read and write.

    Callers re-read and evaluate again.
    """

    def __init__(self, complaint_id: str, expected_version: int, actual_version: int | None = None) -> None:
        self.complaint_id = complaint_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"complaint {complaint_id}: expected version {expected_version}, found {actual_version}"
        )


class ComplaintNotFoundError(EscalationError, LookupError):
    def __init__(self, complaint_id: str) -> None:
        self.complaint_id = complaint_id
        super().__init__(f"complaint {complaint_id} not found")


class StoreUnavailableError(EscalationError):
    """The complaint store backend could not be reached."""


class InvalidTransitionError(EscalationError, ValueError):
    """A manual escalation request would demote, skip past the top level, or touch a closed complaint."""


class ComplaintExistsError(EscalationError):
    def __init__(self, complaint_id: str) -> None:
        self.complaint_id = complaint_id
        super().__init__(f"escalation track for complaint {complaint_id} already exists")


class AssignmentConflictError(EscalationError):
    """The complaint was already accepted by another officer."""

    def __init__(self, complaint_id: str, officer_id: str) -> None:
        self.complaint_id = complaint_id
        self.officer_id = officer_id
        super().__init__(f"complaint {complaint_id} is already assigned to officer {officer_id}")
