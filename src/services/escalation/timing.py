"""Pure deadline and progress computation.

Everything here reads a state snapshot, a rule and a timestamp, and
returns a value.  Nothing is mutated, so these functions are safe to
call from any number of readers and from display code.

All arithmetic is done in integer milliseconds.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from src.models.escalation import EscalationRule, EscalationState, TimerInfo

_ONE_MS = timedelta(milliseconds=1)


def elapsed_ms(started_at: datetime, now: datetime) -> int:
    """Whole milliseconds from *started_at* to *now* (floored)."""
    return (now - started_at) // _ONE_MS


def escalation_deadline(state: EscalationState, rule: EscalationRule | None) -> datetime | None:
    """When the current level's window ends, or ``None`` if nothing is scheduled."""
    if rule is None or not state.is_open:
        return None
    return state.current_level_started_at + timedelta(milliseconds=rule.delay_ms)


def time_until_escalation(
    state: EscalationState,
    rule: EscalationRule | None,
    now: datetime,
) -> TimerInfo:
    """Countdown to the next escalation.

    Returns :meth:`TimerInfo.inactive` for closed complaints and for
    levels without a rule.  The window is overdue once the full delay
    has elapsed, i.e. at exactly ``started + delay``.
    """
    if not state.is_open or rule is None:
        return TimerInfo.inactive()

    elapsed = elapsed_ms(state.current_level_started_at, now)
    if elapsed >= rule.delay_ms:
        return TimerInfo(is_overdue=True, total_ms=rule.delay_ms, next_level=rule.target)

    return TimerInfo(
        is_overdue=False,
        remaining_ms=rule.delay_ms - elapsed,
        total_ms=rule.delay_ms,
        next_level=rule.target,
    )


def escalation_progress(
    state: EscalationState,
    rule: EscalationRule | None,
    now: datetime,
) -> float:
    """Share of the current window already used, in percent (0-100)."""
    if not state.is_open or rule is None:
        return 0.0

    elapsed = elapsed_ms(state.current_level_started_at, now)
    if elapsed >= rule.delay_ms:
        return 100.0
    if elapsed <= 0:
        return 0.0
    return 100.0 * elapsed / rule.delay_ms
