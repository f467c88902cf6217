"""Complaint store backends for escalation state.

The engine itself never talks to storage; the escalation service reads
a snapshot, lets the engine decide, and writes the outcome back through
:meth:`ComplaintStore.apply_transition`.  Every write carries the
version the caller read, and a mismatch raises
:class:`StaleWriteConflict` -- that optimistic check is the
per-complaint exclusion the engine relies on.

Two backends:

* :class:`InMemoryComplaintStore` -- process-local, one
  :class:`asyncio.Lock` per complaint.  Used in development and tests.
* :class:`RedisComplaintStore` -- ``redis.asyncio`` with WATCH/MULTI
  transactions and *orjson* payloads.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections import defaultdict
from collections.abc import Callable
from datetime import datetime
from typing import Protocol, runtime_checkable

import orjson
import structlog
from redis.exceptions import RedisError, WatchError

from src.models.enums import ComplaintStatus
from src.models.escalation import EscalationEvent, EscalationState
from src.services.escalation.errors import (
    ComplaintExistsError,
    ComplaintNotFoundError,
    StaleWriteConflict,
    StoreUnavailableError,
)

logger = structlog.get_logger(__name__)

Mutation = Callable[[EscalationState], None]


# ---------------------------------------------------------------------------
# Store protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class ComplaintStore(Protocol):
    """Async persistence interface for escalation state."""

    async def create(self, state: EscalationState) -> EscalationState: ...

    async def read(self, complaint_id: str) -> EscalationState: ...

    async def apply_transition(
        self,
        complaint_id: str,
        expected_version: int,
        new_level: int | None,
        new_started_at: datetime | None,
        event: EscalationEvent,
    ) -> EscalationState: ...

    async def set_status(
        self,
        complaint_id: str,
        status: ComplaintStatus,
        expected_version: int | None = None,
    ) -> EscalationState: ...

    async def assign_officer(
        self,
        complaint_id: str,
        officer_id: str | None,
        expected_version: int | None = None,
        *,
        status: ComplaintStatus | None = None,
    ) -> EscalationState: ...

    async def list_open(self) -> list[str]: ...


def _transition(new_level: int | None, new_started_at: datetime | None, event: EscalationEvent) -> Mutation:
    def apply(state: EscalationState) -> None:
        if new_level is not None:
            state.level = new_level
        if new_started_at is not None:
            state.current_level_started_at = new_started_at
        state.history.append(event)

    return apply


def _assignment(officer_id: str | None, status: ComplaintStatus | None) -> Mutation:
    def apply(state: EscalationState) -> None:
        state.assigned_officer_id = officer_id
        if status is not None:
            state.status = status

    return apply


def _check_version(state: EscalationState, expected_version: int | None) -> None:
    if expected_version is not None and state.version != expected_version:
        raise StaleWriteConflict(state.complaint_id, expected_version, state.version)


def encode_state(state: EscalationState) -> bytes:
    return orjson.dumps(state.model_dump(mode="json"))


def decode_state(raw: bytes) -> EscalationState:
    return EscalationState.model_validate(orjson.loads(raw))


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class InMemoryComplaintStore:
    """Dict-backed store with a lock per complaint.

    Returned states are deep copies; mutating them never leaks into the
    store without going through a write method.
    """

    __slots__ = ("_data", "_locks")

    def __init__(self) -> None:
        self._data: dict[str, EscalationState] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def create(self, state: EscalationState) -> EscalationState:
        async with self._locks[state.complaint_id]:
            if state.complaint_id in self._data:
                raise ComplaintExistsError(state.complaint_id)
            self._data[state.complaint_id] = state.model_copy(deep=True)
            return state.model_copy(deep=True)

    async def read(self, complaint_id: str) -> EscalationState:
        state = self._data.get(complaint_id)
        if state is None:
            raise ComplaintNotFoundError(complaint_id)
        return state.model_copy(deep=True)

    async def _update(
        self,
        complaint_id: str,
        mutate: Mutation,
        expected_version: int | None,
    ) -> EscalationState:
        async with self._locks[complaint_id]:
            current = self._data.get(complaint_id)
            if current is None:
                raise ComplaintNotFoundError(complaint_id)
            _check_version(current, expected_version)
            updated = current.model_copy(deep=True)
            mutate(updated)
            updated.version = current.version + 1
            self._data[complaint_id] = updated
            return updated.model_copy(deep=True)

    async def apply_transition(
        self,
        complaint_id: str,
        expected_version: int,
        new_level: int | None,
        new_started_at: datetime | None,
        event: EscalationEvent,
    ) -> EscalationState:
        return await self._update(
            complaint_id, _transition(new_level, new_started_at, event), expected_version
        )

    async def set_status(
        self,
        complaint_id: str,
        status: ComplaintStatus,
        expected_version: int | None = None,
    ) -> EscalationState:
        def apply(state: EscalationState) -> None:
            state.status = status

        return await self._update(complaint_id, apply, expected_version)

    async def assign_officer(
        self,
        complaint_id: str,
        officer_id: str | None,
        expected_version: int | None = None,
        *,
        status: ComplaintStatus | None = None,
    ) -> EscalationState:
        return await self._update(complaint_id, _assignment(officer_id, status), expected_version)

    async def list_open(self) -> list[str]:
        return [cid for cid, state in self._data.items() if state.is_open]

    @property
    def size(self) -> int:
        return len(self._data)


# ---------------------------------------------------------------------------
# Redis backend
# ---------------------------------------------------------------------------


class RedisComplaintStore:
    """Redis-backed store using WATCH/MULTI optimistic transactions.

    Each complaint lives under ``{namespace}complaint:{id}`` as an
    orjson document; the ids of open complaints are kept in the
    ``{namespace}open`` set so the scheduler can scan them cheaply.

    Parameters
    ----------
    url:
        Redis connection string.  Ignored when *client* is given.
    client:
        Pre-built ``redis.asyncio.Redis`` (tests pass a fakeredis client).
    namespace:
        Key prefix.
    """

    __slots__ = ("_namespace", "_redis")

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        *,
        client: object | None = None,
        namespace: str = "escalation:",
        max_connections: int = 20,
    ) -> None:
        if client is None:
            import redis.asyncio as aioredis

            pool = aioredis.ConnectionPool.from_url(
                url,
                max_connections=max_connections,
                decode_responses=False,
            )
            client = aioredis.Redis(connection_pool=pool)
        self._redis = client
        self._namespace = namespace

    def _key(self, complaint_id: str) -> str:
        return f"{self._namespace}complaint:{complaint_id}"

    @property
    def _open_key(self) -> str:
        return f"{self._namespace}open"

    async def create(self, state: EscalationState) -> EscalationState:
        try:
            created = await self._redis.set(self._key(state.complaint_id), encode_state(state), nx=True)
            if not created:
                raise ComplaintExistsError(state.complaint_id)
            if state.is_open:
                await self._redis.sadd(self._open_key, state.complaint_id)
        except RedisError as exc:
            raise StoreUnavailableError(str(exc)) from exc
        return state.model_copy(deep=True)

    async def read(self, complaint_id: str) -> EscalationState:
        try:
            raw = await self._redis.get(self._key(complaint_id))
        except RedisError as exc:
            raise StoreUnavailableError(str(exc)) from exc
        if raw is None:
            raise ComplaintNotFoundError(complaint_id)
        return decode_state(raw)

    async def _update(
        self,
        complaint_id: str,
        mutate: Mutation,
        expected_version: int | None,
    ) -> EscalationState:
        key = self._key(complaint_id)
        read_version = -1
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                await pipe.watch(key)
                raw = await pipe.get(key)
                if raw is None:
                    raise ComplaintNotFoundError(complaint_id)
                state = decode_state(raw)
                _check_version(state, expected_version)

                read_version = state.version
                mutate(state)
                state.version = read_version + 1

                pipe.multi()
                pipe.set(key, encode_state(state))
                if state.is_open:
                    pipe.sadd(self._open_key, complaint_id)
                else:
                    pipe.srem(self._open_key, complaint_id)
                await pipe.execute()
        except WatchError as exc:
            raise StaleWriteConflict(
                complaint_id, read_version if expected_version is None else expected_version
            ) from exc
        except RedisError as exc:
            raise StoreUnavailableError(str(exc)) from exc
        return state

    async def apply_transition(
        self,
        complaint_id: str,
        expected_version: int,
        new_level: int | None,
        new_started_at: datetime | None,
        event: EscalationEvent,
    ) -> EscalationState:
        return await self._update(
            complaint_id, _transition(new_level, new_started_at, event), expected_version
        )

    async def set_status(
        self,
        complaint_id: str,
        status: ComplaintStatus,
        expected_version: int | None = None,
    ) -> EscalationState:
        def apply(state: EscalationState) -> None:
            state.status = status

        return await self._update(complaint_id, apply, expected_version)

    async def assign_officer(
        self,
        complaint_id: str,
        officer_id: str | None,
        expected_version: int | None = None,
        *,
        status: ComplaintStatus | None = None,
    ) -> EscalationState:
        return await self._update(complaint_id, _assignment(officer_id, status), expected_version)

    async def list_open(self) -> list[str]:
        try:
            members = await self._redis.smembers(self._open_key)
        except RedisError as exc:
            raise StoreUnavailableError(str(exc)) from exc
        return sorted(m.decode() if isinstance(m, bytes) else m for m in members)

    # -- Lifecycle -------------------------------------------------------------

    async def close(self) -> None:
        with contextlib.suppress(Exception):
            await self._redis.aclose()

    async def ping(self) -> bool:
        """Return *True* if the Redis server is reachable."""
        try:
            return bool(await self._redis.ping())
        except Exception:
            return False
