"""Polling scheduler that drives escalation.

Runs as an ``asyncio`` background task: every ``poll_interval_seconds``
it lists the open complaints and asks the :class:`EscalationService` to
evaluate each one.  Resolved / rejected complaints drop out of the
open list, which is how their pending escalation is cancelled.

Evaluations within a pass run one after another, so the scheduler never
evaluates the same complaint twice at once; concurrent writers from
other processes are handled by the store's version check.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from src.services.escalation.errors import (
    ComplaintNotFoundError,
    StaleWriteConflict,
    StoreUnavailableError,
)

if TYPE_CHECKING:
    from src.models.escalation import TransitionResult
    from src.services.escalation.service import EscalationService
    from src.services.escalation.store import ComplaintStore

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class PassResult:
    """Counters for one scheduler pass."""

    scanned: int = 0
    escalated: int = 0
    closed: int = 0
    conflicts: int = 0
    errors: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


class EscalationScheduler:
    """Periodic escalation driver.

    Parameters
    ----------
    service:
        Performs the per-complaint evaluation.
    store:
        Source of the open-complaint list.
    poll_interval_seconds:
        Sleep between passes.
    """

    def __init__(
        self,
        service: EscalationService,
        store: ComplaintStore,
        *,
        poll_interval_seconds: float = 60.0,
    ) -> None:
        self._service = service
        self._store = store
        self._interval = poll_interval_seconds
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]
        self._running = False
        self._last_pass: PassResult | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def last_pass(self) -> PassResult | None:
        return self._last_pass

    # ------------------------------------------------------------------
    # Single evaluations
    # ------------------------------------------------------------------

    async def run_once(self, complaint_id: str) -> list[TransitionResult]:
        """On-demand evaluation of one complaint (admin trigger, delayed job)."""
        logger.info("scheduler.manual_trigger", complaint_id=complaint_id)
        return await self._service.evaluate(complaint_id)

    async def run_pass(self) -> PassResult:
        """Evaluate every open complaint once.

        A failing complaint is logged and counted; it never aborts the
        rest of the pass.
        """
        started = time.perf_counter()
        result = PassResult()

        try:
            complaint_ids = await self._store.list_open()
        except StoreUnavailableError as exc:
            logger.error("scheduler.store_unavailable", exc_info=True)
            result.errors.append(f"list_open: {exc}")
            result.duration_seconds = time.perf_counter() - started
            self._last_pass = result
            return result

        for complaint_id in complaint_ids:
            result.scanned += 1
            try:
                transitions = await self._service.evaluate(complaint_id)
            except StaleWriteConflict:
                result.conflicts += 1
                logger.warning("scheduler.conflict_exhausted", complaint_id=complaint_id)
                continue
            except ComplaintNotFoundError:
                logger.warning("scheduler.complaint_missing", complaint_id=complaint_id)
                continue
            except Exception as exc:
                result.errors.append(f"{complaint_id}: {exc}")
                logger.error("scheduler.evaluation_failed", complaint_id=complaint_id, exc_info=True)
                continue

            for transition in transitions:
                if transition.terminal_reached:
                    result.closed += 1
                else:
                    result.escalated += 1

        result.duration_seconds = time.perf_counter() - started
        self._last_pass = result
        logger.info(
            "scheduler.pass_complete",
            scanned=result.scanned,
            escalated=result.escalated,
            closed=result.closed,
            conflicts=result.conflicts,
            errors=len(result.errors),
            duration_s=round(result.duration_seconds, 3),
        )
        return result

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    def start(self) -> asyncio.Task:  # type: ignore[type-arg]
        """Spawn the background loop on the running event loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run_forever())
        return self._task

    async def run_forever(self) -> None:
        """Run passes until :meth:`stop` is called or the task is cancelled."""
        self._running = True
        logger.info("scheduler.background_started", interval_s=self._interval)

        try:
            while self._running:
                await self.run_pass()
                if not self._running:
                    break
                await asyncio.sleep(self._interval)
        except asyncio.CancelledError:
            logger.info("scheduler.background_cancelled")
        finally:
            self._running = False
            logger.info("scheduler.background_stopped")

    async def stop(self) -> None:
        """Stop the loop and wait (up to 10 s) for the task to finish."""
        logger.info("scheduler.stopping")
        self._running = False

        if self._task is not None:
            self._task.cancel()
            try:
                await asyncio.wait_for(self._task, timeout=10.0)
            except (asyncio.CancelledError, asyncio.TimeoutError):
                pass
            self._task = None

        logger.info("scheduler.stopped")
