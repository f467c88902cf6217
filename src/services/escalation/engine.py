"""Escalation engine: the complaint escalation state machine.

The engine owns a :class:`RuleTable` (injected at construction) and a
clock.  It answers two kinds of questions:

* **Read-only** -- how long until the next escalation, how much of the
  current window is used up.  These delegate to :mod:`timing` and never
  touch the state.
* **Transition** -- :meth:`EscalationEngine.try_escalate` moves an
  overdue complaint to its next level, resets the level timer, and
  appends an :class:`EscalationEvent`.  When the terminal window runs
  out, the engine only *signals* closure; closing the complaint is the
  caller's job.

Transitions mutate the passed-in :class:`EscalationState`.  The engine
is not safe against two concurrent transitions on the same complaint;
callers must hold the store's per-complaint exclusion around
read-modify-write.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Final

import structlog

from src.models.enums import Severity, TransitionReason
from src.models.escalation import (
    CLOSE,
    CloseLevel,
    EscalationEvent,
    EscalationRule,
    EscalationState,
    TimerInfo,
    TransitionResult,
)
from src.services.escalation import timing
from src.services.escalation.errors import InvalidTransitionError
from src.services.escalation.rules import RuleTable, normalize_level, resolve_severity

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]

AUTO_ESCALATION_REASON: Final[str] = "auto-escalation: deadline exceeded"
AUTO_CLOSE_REASON: Final[str] = "auto-close: maximum escalation level reached"

# Guard for escalate_until_current; no chain is anywhere near this long.
_MAX_CASCADE: Final[int] = 64


def utc_now() -> datetime:
    return datetime.now(UTC)


class EscalationEngine:
    """Severity-based escalation state machine.

    Parameters
    ----------
    rules:
        Validated rule table.  Pass an alternate table in tests.
    clock:
        Zero-argument callable returning an aware ``datetime``.  Used
        whenever an operation is called without an explicit ``now``.
    """

    __slots__ = ("_clock", "_rules")

    def __init__(self, rules: RuleTable | None = None, clock: Clock | None = None) -> None:
        self._rules = rules if rules is not None else RuleTable.default()
        self._clock: Clock = clock or utc_now

    @property
    def rules(self) -> RuleTable:
        return self._rules

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Rule resolution
    # ------------------------------------------------------------------

    def severity_of(self, state: EscalationState) -> Severity:
        return resolve_severity(state.severity, complaint_id=state.complaint_id)

    def level_of(self, state: EscalationState) -> int:
        return normalize_level(state.level, complaint_id=state.complaint_id)

    def rule_for(self, state: EscalationState) -> EscalationRule | None:
        """Rule governing the state's current level, after fallbacks."""
        return self._rules.get_rule(self.severity_of(state), self.level_of(state))

    def max_level(self, state: EscalationState) -> int:
        return self._rules.max_level(self.severity_of(state))

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    def time_until_escalation(self, state: EscalationState, now: datetime | None = None) -> TimerInfo:
        if not state.is_open:
            return TimerInfo.inactive()
        return timing.time_until_escalation(state, self.rule_for(state), now or self._clock())

    def escalation_progress(self, state: EscalationState, now: datetime | None = None) -> float:
        if not state.is_open:
            return 0.0
        return timing.escalation_progress(state, self.rule_for(state), now or self._clock())

    def next_deadline(self, state: EscalationState) -> datetime | None:
        """When the complaint next needs evaluating; ``None`` if never."""
        if not state.is_open or state.close_signalled:
            return None
        return timing.escalation_deadline(state, self.rule_for(state))

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def try_escalate(self, state: EscalationState, now: datetime | None = None) -> TransitionResult:
        """Advance *state* one step if its current window has expired.

        Outcomes:

        * ``inactive`` -- complaint resolved or rejected; untouched.
        * ``terminal`` -- no rule for the level, or closure was already
          signalled; untouched.
        * ``not_due`` -- window still running; untouched.
        * ``escalated`` -- level moved up, timer reset to *now*, one
          event appended.
        * ``closed`` -- terminal window expired; a ``close`` event is
          appended, level and timer are left alone, and
          ``terminal_reached`` tells the caller to close the complaint.

        Calling again with the same *now* after a transition evaluates
        against the new window, so a single call never transitions
        twice.
        """
        now = now or self._clock()

        if not state.is_open:
            return TransitionResult(transitioned=False, reason=TransitionReason.INACTIVE)
        if state.close_signalled:
            return TransitionResult(transitioned=False, reason=TransitionReason.TERMINAL)

        rule = self.rule_for(state)
        if rule is None:
            return TransitionResult(transitioned=False, reason=TransitionReason.TERMINAL)

        timer = timing.time_until_escalation(state, rule, now)
        if not timer.is_overdue:
            return TransitionResult(transitioned=False, reason=TransitionReason.NOT_DUE)

        from_level = rule.level
        next_level = rule.next_level
        if isinstance(next_level, CloseLevel):
            event = EscalationEvent(
                from_level=from_level,
                to_level=CLOSE,
                escalated_at=now,
                reason=AUTO_CLOSE_REASON,
            )
            state.history.append(event)
            logger.info(
                "escalation.terminal_reached",
                complaint_id=state.complaint_id,
                severity=rule.severity,
                level=from_level,
            )
            return TransitionResult(
                transitioned=True,
                reason=TransitionReason.CLOSED,
                event=event,
                terminal_reached=True,
            )

        to_level = next_level.level
        event = EscalationEvent(
            from_level=from_level,
            to_level=to_level,
            escalated_at=now,
            reason=AUTO_ESCALATION_REASON,
        )
        state.level = to_level
        state.current_level_started_at = now
        state.history.append(event)
        logger.info(
            "escalation.transitioned",
            complaint_id=state.complaint_id,
            severity=rule.severity,
            from_level=from_level,
            to_level=to_level,
        )
        return TransitionResult(
            transitioned=True,
            reason=TransitionReason.ESCALATED,
            new_level=to_level,
            event=event,
        )

    def escalate_until_current(
        self,
        state: EscalationState,
        now: datetime | None = None,
        *,
        backdate: bool = False,
    ) -> list[TransitionResult]:
        """Apply every transition that is due at *now*.

        By default each step restarts its window at *now*, so a call
        applies at most one numeric step.  With ``backdate=True`` a
        complaint that missed several windows (worker down, long poll
        interval) catches up: every step is stamped with the deadline it
        should have fired at, and the loop keeps going while the next
        deadline is still in the past.  The loop always stops at the
        closure signal.  Only transitioning results are returned.
        """
        now = now or self._clock()
        applied: list[TransitionResult] = []
        for _ in range(_MAX_CASCADE):
            at = now
            if backdate:
                deadline = self.next_deadline(state)
                if deadline is not None and deadline < now:
                    at = deadline
            result = self.try_escalate(state, at)
            if not result.transitioned:
                break
            applied.append(result)
            if result.terminal_reached:
                break
        return applied

    def record_manual_escalation(
        self,
        state: EscalationState,
        to_level: int,
        reason: str,
        escalated_by: str | None,
        now: datetime | None = None,
    ) -> EscalationEvent:
        """Officer-driven escalation to a higher level.

        Records the acting user on the event and restarts the level
        timer, exactly like an automatic step.

        Raises
        ------
        InvalidTransitionError
            If the complaint is closed, or *to_level* does not move it
            forward within the severity's levels.
        """
        now = now or self._clock()
        if not state.is_open:
            raise InvalidTransitionError(f"complaint {state.complaint_id} is {state.status}")

        from_level = self.level_of(state)
        top = self.max_level(state)
        if to_level <= from_level:
            raise InvalidTransitionError(
                f"complaint {state.complaint_id}: cannot move from level {from_level} to {to_level}"
            )
        if to_level > top:
            raise InvalidTransitionError(
                f"complaint {state.complaint_id}: level {to_level} exceeds maximum {top}"
            )

        event = EscalationEvent(
            from_level=from_level,
            to_level=to_level,
            escalated_at=now,
            reason=reason.strip() or "manual escalation",
            escalated_by=escalated_by,
        )
        state.level = to_level
        state.current_level_started_at = now
        state.history.append(event)
        logger.info(
            "escalation.manual",
            complaint_id=state.complaint_id,
            from_level=from_level,
            to_level=to_level,
            escalated_by=escalated_by,
        )
        return event
