"""Officer accept / reject bookkeeping.

Neither action is an escalation transition:

* **accept** assigns the officer and moves the complaint to
  ``in_progress``.  Level and level timer stay as they are; an accepted
  complaint keeps escalating until it is resolved.
* **reject** only hides the complaint from *that* officer's queue for a
  while (2 hours by default).  Other officers still see it and its
  escalation track is untouched.

Rejections live in a small TTL registry, either in process memory or
in a Redis set per officer (``officer:{id}:rejected_complaints``).
"""

from __future__ import annotations

import contextlib
import time
from collections.abc import Iterable
from typing import Protocol, runtime_checkable

import structlog
from redis.exceptions import RedisError
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.models.enums import ComplaintStatus
from src.models.escalation import EscalationState
from src.services.escalation.errors import (
    AssignmentConflictError,
    InvalidTransitionError,
    StaleWriteConflict,
)
from src.services.escalation.store import ComplaintStore

logger = structlog.get_logger(__name__)

DEFAULT_REJECTION_TTL_SECONDS = 2 * 60 * 60


# ---------------------------------------------------------------------------
# Rejection registries
# ---------------------------------------------------------------------------


@runtime_checkable
class RejectionRegistry(Protocol):
    async def add(self, officer_id: str, complaint_id: str) -> None: ...

    async def members(self, officer_id: str) -> set[str]: ...


class InMemoryRejectionRegistry:
    """Per-officer rejected sets; the whole set expires together, like a Redis key."""

    __slots__ = ("_data", "_ttl_seconds")

    def __init__(self, ttl_seconds: int = DEFAULT_REJECTION_TTL_SECONDS) -> None:
        self._ttl_seconds = ttl_seconds
        self._data: dict[str, tuple[float, set[str]]] = {}

    async def add(self, officer_id: str, complaint_id: str) -> None:
        _, rejected = self._live(officer_id)
        rejected.add(complaint_id)
        # Each rejection refreshes the expiry of the whole set
        self._data[officer_id] = (time.monotonic() + self._ttl_seconds, rejected)

    async def members(self, officer_id: str) -> set[str]:
        return set(self._live(officer_id)[1])

    def _live(self, officer_id: str) -> tuple[float, set[str]]:
        entry = self._data.get(officer_id)
        if entry is None or time.monotonic() > entry[0]:
            self._data.pop(officer_id, None)
            return 0.0, set()
        return entry


class RedisRejectionRegistry:
    """Redis set per officer with a sliding expiry."""

    __slots__ = ("_redis", "_ttl_seconds")

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        *,
        client: object | None = None,
        ttl_seconds: int = DEFAULT_REJECTION_TTL_SECONDS,
    ) -> None:
        if client is None:
            import redis.asyncio as aioredis

            client = aioredis.Redis.from_url(url, decode_responses=False)
        self._redis = client
        self._ttl_seconds = ttl_seconds

    @staticmethod
    def _key(officer_id: str) -> str:
        return f"officer:{officer_id}:rejected_complaints"

    async def add(self, officer_id: str, complaint_id: str) -> None:
        key = self._key(officer_id)
        await self._redis.sadd(key, complaint_id)
        await self._redis.expire(key, self._ttl_seconds)

    async def members(self, officer_id: str) -> set[str]:
        raw = await self._redis.smembers(self._key(officer_id))
        return {m.decode() if isinstance(m, bytes) else m for m in raw}

    async def close(self) -> None:
        with contextlib.suppress(Exception):
            await self._redis.aclose()


# ---------------------------------------------------------------------------
# OfficerQueue
# ---------------------------------------------------------------------------


class OfficerQueue:
    """Accept / reject actions and per-officer queue filtering."""

    __slots__ = ("_max_attempts", "_registry", "_store")

    def __init__(self, store: ComplaintStore, registry: RejectionRegistry, *, max_attempts: int = 3) -> None:
        self._store = store
        self._registry = registry
        self._max_attempts = max_attempts

    async def accept(self, complaint_id: str, officer_id: str) -> EscalationState:
        """Assign *officer_id* to the complaint without touching its escalation.

        Assignment and the ``pending`` -> ``in_progress`` move are one
        versioned write.  If the complaint changed after it was read the
        checks run again on a fresh read, so a second officer racing for
        the same complaint gets :class:`AssignmentConflictError`.

        Raises
        ------
        InvalidTransitionError
            If the complaint is already resolved or rejected.
        AssignmentConflictError
            If another officer accepted it first.
        """
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(StaleWriteConflict),
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=0.01, min=0.01, max=0.5),
            reraise=True,
        ):
            with attempt:
                state = await self._accept_once(complaint_id, officer_id)

        logger.info(
            "officers.accepted",
            complaint_id=complaint_id,
            officer_id=officer_id,
            level=state.level,
        )
        return state

    async def _accept_once(self, complaint_id: str, officer_id: str) -> EscalationState:
        state = await self._store.read(complaint_id)
        if not state.is_open:
            raise InvalidTransitionError(f"complaint {complaint_id} is {state.status}")
        if state.assigned_officer_id and state.assigned_officer_id != officer_id:
            raise AssignmentConflictError(complaint_id, state.assigned_officer_id)

        status = ComplaintStatus.IN_PROGRESS if state.status == ComplaintStatus.PENDING else None
        return await self._store.assign_officer(
            complaint_id, officer_id, expected_version=state.version, status=status
        )

    async def reject(self, complaint_id: str, officer_id: str) -> None:
        """Hide the complaint from this officer's queue."""
        # Surface ComplaintNotFoundError before recording anything
        await self._store.read(complaint_id)
        await self._registry.add(officer_id, complaint_id)
        logger.info("officers.rejected", complaint_id=complaint_id, officer_id=officer_id)

    async def visible_to(self, officer_id: str, complaint_ids: Iterable[str]) -> list[str]:
        """Filter *complaint_ids* down to those the officer has not rejected.

        If the registry cannot be read the list is returned unfiltered.
        """
        ids = list(complaint_ids)
        try:
            rejected = await self._registry.members(officer_id)
        except RedisError:
            logger.warning("officers.rejections_unavailable", officer_id=officer_id, exc_info=True)
            return ids
        return [cid for cid in ids if cid not in rejected]
