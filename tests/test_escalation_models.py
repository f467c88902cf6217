"""Tests for escalation enums and data models."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from pydantic import TypeAdapter, ValidationError

from src.models.enums import ComplaintCategory, ComplaintStatus, Severity, TransitionReason
from src.models.escalation import (
    CloseLevel,
    EscalationEvent,
    EscalationRule,
    EscalationState,
    NextLevel,
    NumericLevel,
    TimerInfo,
)

T0 = datetime(2025, 1, 1, tzinfo=UTC)


# -----------------------------------------------------------------------
# Enum tests
# -----------------------------------------------------------------------


class TestSeverity:
    def test_values(self) -> None:
        assert {e.value for e in Severity} == {"low", "medium", "high"}

    def test_str_enum_behavior(self) -> None:
        assert str(Severity.HIGH) == "high"
        assert Severity("medium") is Severity.MEDIUM


class TestComplaintStatus:
    def test_open_statuses(self) -> None:
        assert ComplaintStatus.PENDING.is_open
        assert ComplaintStatus.IN_PROGRESS.is_open

    def test_closed_statuses(self) -> None:
        assert not ComplaintStatus.RESOLVED.is_open, "resolved complaints must not escalate"
        assert not ComplaintStatus.REJECTED.is_open, "rejected complaints must not escalate"


class TestComplaintCategory:
    def test_values(self) -> None:
        expected = {"rail", "road", "fire", "cyber", "police", "court"}
        assert {e.value for e in ComplaintCategory} == expected


class TestTransitionReason:
    def test_length(self) -> None:
        assert len(TransitionReason) == 5


# -----------------------------------------------------------------------
# NextLevel / EscalationRule
# -----------------------------------------------------------------------


class TestNextLevel:
    def test_discriminates_numeric(self) -> None:
        value = TypeAdapter(NextLevel).validate_python({"kind": "level", "level": 3})
        assert isinstance(value, NumericLevel)
        assert value.level == 3

    def test_discriminates_close(self) -> None:
        value = TypeAdapter(NextLevel).validate_python({"kind": "close"})
        assert isinstance(value, CloseLevel)

    def test_numeric_level_must_be_at_least_two(self) -> None:
        with pytest.raises(ValidationError):
            NumericLevel(level=1)


class TestEscalationRule:
    def test_numeric_target(self) -> None:
        rule = EscalationRule(severity="low", level=1, next_level=NumericLevel(level=2), delay_ms=1000)
        assert rule.target == 2
        assert rule.closes is False

    def test_close_target(self) -> None:
        rule = EscalationRule(severity="low", level=3, next_level=CloseLevel(), delay_ms=1000)
        assert rule.target == "close"
        assert rule.closes is True

    def test_delay_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            EscalationRule(severity="low", level=1, next_level=NumericLevel(level=2), delay_ms=0)

    def test_rule_is_frozen(self) -> None:
        rule = EscalationRule(severity="low", level=1, next_level=NumericLevel(level=2), delay_ms=1000)
        with pytest.raises(ValidationError):
            rule.delay_ms = 5  # type: ignore[misc]


# -----------------------------------------------------------------------
# EscalationEvent / EscalationState
# -----------------------------------------------------------------------


class TestEscalationEvent:
    def test_event_is_immutable(self) -> None:
        event = EscalationEvent(from_level=1, to_level=2, escalated_at=T0, reason="x")
        with pytest.raises(ValidationError):
            event.to_level = 3  # type: ignore[misc]

    def test_close_event(self) -> None:
        event = EscalationEvent(from_level=3, to_level="close", escalated_at=T0, reason="x")
        assert event.is_close
        assert event.escalated_by is None

    def test_rejects_other_strings(self) -> None:
        with pytest.raises(ValidationError):
            EscalationEvent(from_level=1, to_level="later", escalated_at=T0, reason="x")


class TestEscalationState:
    def test_defaults(self) -> None:
        state = EscalationState(complaint_id="c1")
        assert state.level == 1
        assert state.status == ComplaintStatus.PENDING
        assert state.history == []
        assert state.version == 0
        assert state.is_open

    def test_status_assignment_is_coerced(self) -> None:
        state = EscalationState(complaint_id="c1")
        state.status = "resolved"  # type: ignore[assignment]
        assert state.status is ComplaintStatus.RESOLVED
        assert not state.is_open

    def test_close_signalled_reads_last_event(self) -> None:
        state = EscalationState(complaint_id="c1", current_level_started_at=T0)
        assert not state.close_signalled
        state.history.append(EscalationEvent(from_level=3, to_level="close", escalated_at=T0, reason="x"))
        assert state.close_signalled

    def test_json_round_trip_keeps_history(self) -> None:
        state = EscalationState(
            complaint_id="c1",
            severity="high",
            level=2,
            current_level_started_at=T0,
            history=[EscalationEvent(from_level=1, to_level=2, escalated_at=T0, reason="x")],
        )
        restored = EscalationState.model_validate_json(state.model_dump_json())
        assert restored == state


# -----------------------------------------------------------------------
# TimerInfo
# -----------------------------------------------------------------------


class TestTimerInfo:
    def test_inactive(self) -> None:
        timer = TimerInfo.inactive()
        assert timer.active is False
        assert timer.message == ""

    def test_hours_minutes_floor(self) -> None:
        # 1h 59m 59.999s
        timer = TimerInfo(remaining_ms=3_600_000 + 59 * 60_000 + 59_999)
        assert timer.hours == 1
        assert timer.minutes == 59, "minutes must be truncated, never rounded up"
        assert timer.message == "1h 59m until next escalation"

    @pytest.mark.parametrize("remaining", [1, 59_999, 60_000, 3_599_999, 3_600_000, 107_999_999])
    def test_breakdown_never_overstates(self, remaining: int) -> None:
        timer = TimerInfo(remaining_ms=remaining)
        shown = timer.hours * 3_600_000 + timer.minutes * 60_000
        assert shown <= remaining < shown + 60_000

    def test_overdue_message(self) -> None:
        assert TimerInfo(is_overdue=True).message == "Escalation overdue"

    def test_computed_fields_are_serialised(self) -> None:
        dumped = TimerInfo(remaining_ms=90 * 60_000).model_dump()
        assert dumped["hours"] == 1
        assert dumped["minutes"] == 30
