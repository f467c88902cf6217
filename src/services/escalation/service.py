"""Escalation service: ties the engine to storage and notifications.

This is the per-complaint evaluation primitive that any driver (the
polling :class:`EscalationScheduler`, a delayed job, an admin trigger)
calls.  One evaluation:

1. reads the complaint's escalation state from the store;
2. lets the :class:`EscalationEngine` decide and apply transitions on
   that snapshot;
3. writes each transition back with the version it read, so two
   concurrent evaluations of the same complaint cannot both commit;
4. emits an :class:`EscalationNotice` per transition;
5. closes the complaint when the terminal window has run out.

A :class:`StaleWriteConflict` from the store means someone else wrote
first; the whole evaluation is retried from a fresh read (tenacity).
Notification failures are logged and never undo a committed transition.
"""

from __future__ import annotations

from datetime import datetime

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.models.enums import ComplaintStatus
from src.models.escalation import (
    EscalationEvent,
    EscalationNotice,
    EscalationSnapshot,
    EscalationState,
    TransitionResult,
)
from src.services.escalation.display import get_escalation_info
from src.services.escalation.engine import EscalationEngine
from src.services.escalation.errors import (
    StaleWriteConflict,
    StoreUnavailableError,
)
from src.services.escalation.notifications import NotificationSink
from src.services.escalation.store import ComplaintStore

logger = structlog.get_logger(__name__)

_CLOSED_STATUSES = (ComplaintStatus.RESOLVED, ComplaintStatus.REJECTED)


class EscalationService:
    """Per-complaint escalation driver.

    Parameters
    ----------
    engine:
        The escalation state machine (rule table + clock).
    store:
        Complaint store; its version check is the per-complaint exclusion.
    sink:
        Optional notification sink.  ``None`` disables notices.
    close_status:
        Status set when the terminal window expires (``rejected`` by default).
    max_attempts:
        Evaluation attempts on :class:`StaleWriteConflict`.
    backdate_missed_windows:
        Replay missed windows at their own deadlines, see
        :meth:`EscalationEngine.escalate_until_current`.
    """

    __slots__ = (
        "_backdate",
        "_close_status",
        "_engine",
        "_max_attempts",
        "_sink",
        "_store",
    )

    def __init__(
        self,
        engine: EscalationEngine,
        store: ComplaintStore,
        sink: NotificationSink | None = None,
        *,
        close_status: ComplaintStatus = ComplaintStatus.REJECTED,
        max_attempts: int = 3,
        backdate_missed_windows: bool = False,
    ) -> None:
        if close_status not in _CLOSED_STATUSES:
            raise ValueError(f"close_status must be resolved or rejected, got {close_status!r}")
        self._engine = engine
        self._store = store
        self._sink = sink
        self._close_status = ComplaintStatus(close_status)
        self._max_attempts = max_attempts
        self._backdate = backdate_missed_windows

    @property
    def engine(self) -> EscalationEngine:
        return self._engine

    # ------------------------------------------------------------------
    # Complaint lifecycle
    # ------------------------------------------------------------------

    async def register_complaint(
        self,
        complaint_id: str,
        severity: str,
        *,
        reporter_id: str | None = None,
        category: str | None = None,
        created_at: datetime | None = None,
    ) -> EscalationState:
        """Start the escalation track of a new complaint at level 1."""
        state = EscalationState(
            complaint_id=complaint_id,
            severity=severity,
            level=1,
            status=ComplaintStatus.PENDING,
            current_level_started_at=created_at or self._engine.now(),
            category=category,
            reporter_id=reporter_id,
        )
        state = await self._store.create(state)
        logger.info(
            "escalation.registered",
            complaint_id=complaint_id,
            severity=severity,
            deadline=str(self._engine.next_deadline(state)),
        )
        return state

    async def close(self, complaint_id: str, status: ComplaintStatus) -> EscalationState:
        """Resolve or reject a complaint, freezing its escalation for good.

        Closing an already closed complaint is a no-op.
        """
        status = ComplaintStatus(status)
        if status not in _CLOSED_STATUSES:
            raise ValueError(f"cannot close a complaint with status {status!r}")

        state = await self._store.read(complaint_id)
        if not state.is_open:
            return state
        state = await self._store.set_status(complaint_id, status)
        logger.info("escalation.cancelled", complaint_id=complaint_id, status=str(status), level=state.level)
        return state

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    async def evaluate(self, complaint_id: str) -> list[TransitionResult]:
        """Apply whatever escalation is due for *complaint_id* right now.

        Returns the transitions that were committed (empty when nothing
        was due).  Retries from a fresh read on write conflicts and
        re-raises the last :class:`StaleWriteConflict` if every attempt
        loses.
        """
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(StaleWriteConflict),
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info(
                        "escalation.retry_after_conflict",
                        complaint_id=complaint_id,
                        attempt=attempt.retry_state.attempt_number,
                    )
                return await self._evaluate_once(complaint_id)
        return []  # pragma: no cover

    async def _evaluate_once(self, complaint_id: str) -> list[TransitionResult]:
        state = await self._store.read(complaint_id)
        if not state.is_open:
            return []

        # A close event committed by an earlier run whose closure write lost a race
        if state.close_signalled:
            await self._finish_closure(state)
            return []

        version = state.version
        snapshot = state.model_copy(deep=True)
        results = self._engine.escalate_until_current(
            state, self._engine.now(), backdate=self._backdate
        )

        for result in results:
            event = result.event
            assert event is not None  # noqa: S101
            if result.terminal_reached:
                stored = await self._store.apply_transition(complaint_id, version, None, None, event)
            else:
                stored = await self._store.apply_transition(
                    complaint_id, version, result.new_level, event.escalated_at, event
                )
            version = stored.version
            await self._notify(snapshot, event)
            if result.terminal_reached:
                await self._finish_closure(stored)

        return results

    async def _finish_closure(self, state: EscalationState) -> None:
        await self._store.set_status(state.complaint_id, self._close_status, expected_version=state.version)
        logger.info(
            "escalation.auto_closed",
            complaint_id=state.complaint_id,
            level=state.level,
            status=str(self._close_status),
        )

    async def escalate_manually(
        self,
        complaint_id: str,
        to_level: int,
        reason: str,
        escalated_by: str | None,
    ) -> EscalationEvent:
        """Record an officer-driven escalation and restart the level timer.

        Raises
        ------
        InvalidTransitionError
            If the move is not forward or the complaint is closed.
        StaleWriteConflict
            If the complaint changed while the event was being recorded.
        """
        state = await self._store.read(complaint_id)
        snapshot = state.model_copy(deep=True)
        event = self._engine.record_manual_escalation(state, to_level, reason, escalated_by)
        await self._store.apply_transition(
            complaint_id, state.version, to_level, event.escalated_at, event
        )
        await self._notify(snapshot, event)
        return event

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    async def history(self, complaint_id: str) -> list[EscalationEvent]:
        state = await self._store.read(complaint_id)
        return list(state.history)

    async def describe(self, complaint_id: str) -> EscalationSnapshot:
        """Display snapshot: level metadata, countdown and progress.

        When the store is unreachable the snapshot is marked ``unknown``
        and carries no numbers at all.
        """
        try:
            state = await self._store.read(complaint_id)
        except StoreUnavailableError:
            logger.warning("escalation.describe_unavailable", complaint_id=complaint_id, exc_info=True)
            return EscalationSnapshot(complaint_id=complaint_id, unknown=True)

        now = self._engine.now()
        level = self._engine.level_of(state)
        return EscalationSnapshot(
            complaint_id=complaint_id,
            level=level,
            status=state.status,
            display=get_escalation_info(level),
            timer=self._engine.time_until_escalation(state, now),
            progress=self._engine.escalation_progress(state, now),
            history=list(state.history),
        )

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def _notify(self, state: EscalationState, event: EscalationEvent) -> None:
        if self._sink is None:
            return

        recipients = [r for r in (state.reporter_id, state.assigned_officer_id) if r] or [None]
        for recipient in dict.fromkeys(recipients):
            notice = EscalationNotice(
                complaint_id=state.complaint_id,
                from_level=event.from_level,
                to_level=event.to_level,
                reason=event.reason,
                recipient_user_id=recipient,
            )
            try:
                await self._sink.emit(notice)
            except Exception:
                logger.warning(
                    "escalation.notification_failed",
                    complaint_id=state.complaint_id,
                    recipient=recipient,
                    exc_info=True,
                )

