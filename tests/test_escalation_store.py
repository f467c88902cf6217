"""Tests for the complaint store backends (in-memory and Redis via fakeredis)."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest
from fakeredis import FakeServer
from fakeredis.aioredis import FakeRedis
from redis.exceptions import ConnectionError as RedisConnectionError

from src.models.enums import ComplaintStatus
from src.models.escalation import EscalationEvent, EscalationState
from src.services.escalation.errors import (
    ComplaintExistsError,
    ComplaintNotFoundError,
    StaleWriteConflict,
    StoreUnavailableError,
)
from src.services.escalation.store import (
    ComplaintStore,
    InMemoryComplaintStore,
    RedisComplaintStore,
    decode_state,
    encode_state,
)

T0 = datetime(2025, 3, 1, tzinfo=UTC)


def _state(complaint_id: str = "c-1", **kwargs: object) -> EscalationState:
    return EscalationState(complaint_id=complaint_id, severity="high", current_level_started_at=T0, **kwargs)


def _event(from_level: int = 1, to_level: int | str = 2) -> EscalationEvent:
    return EscalationEvent(
        from_level=from_level,
        to_level=to_level,
        escalated_at=T0 + timedelta(hours=2),
        reason="auto-escalation: deadline exceeded",
    )


@pytest.fixture(params=["memory", "redis"])
async def store(request: pytest.FixtureRequest) -> ComplaintStore:
    if request.param == "memory":
        return InMemoryComplaintStore()
    return RedisComplaintStore(client=FakeRedis(server=FakeServer()), namespace="test:")


# -----------------------------------------------------------------------
# Behaviour shared by both backends
# -----------------------------------------------------------------------


class TestStoreContract:
    async def test_satisfies_protocol(self, store: ComplaintStore) -> None:
        assert isinstance(store, ComplaintStore)

    async def test_create_and_read(self, store: ComplaintStore) -> None:
        await store.create(_state(reporter_id="u-1"))
        state = await store.read("c-1")
        assert state.severity == "high"
        assert state.reporter_id == "u-1"
        assert state.current_level_started_at == T0
        assert state.version == 0

    async def test_create_twice_fails(self, store: ComplaintStore) -> None:
        await store.create(_state())
        with pytest.raises(ComplaintExistsError):
            await store.create(_state())

    async def test_read_missing(self, store: ComplaintStore) -> None:
        with pytest.raises(ComplaintNotFoundError):
            await store.read("nope")

    async def test_apply_transition(self, store: ComplaintStore) -> None:
        await store.create(_state())
        event = _event()
        updated = await store.apply_transition("c-1", 0, 2, event.escalated_at, event)
        assert updated.level == 2
        assert updated.current_level_started_at == event.escalated_at
        assert updated.history == [event]
        assert updated.version == 1
        assert (await store.read("c-1")) == updated

    async def test_close_transition_keeps_level_and_timer(self, store: ComplaintStore) -> None:
        await store.create(_state(level=5))
        event = _event(5, "close")
        updated = await store.apply_transition("c-1", 0, None, None, event)
        assert updated.level == 5
        assert updated.current_level_started_at == T0
        assert updated.close_signalled

    async def test_stale_version_conflicts(self, store: ComplaintStore) -> None:
        await store.create(_state())
        await store.apply_transition("c-1", 0, 2, T0, _event())
        with pytest.raises(StaleWriteConflict) as excinfo:
            await store.apply_transition("c-1", 0, 2, T0, _event())
        assert excinfo.value.expected_version == 0
        state = await store.read("c-1")
        assert len(state.history) == 1, "a conflicting write must not append"

    async def test_history_is_append_only_and_ordered(self, store: ComplaintStore) -> None:
        await store.create(_state())
        first, second = _event(1, 2), _event(2, 3)
        await store.apply_transition("c-1", 0, 2, T0, first)
        await store.apply_transition("c-1", 1, 3, T0, second)
        assert (await store.read("c-1")).history == [first, second]

    async def test_set_status_removes_from_open(self, store: ComplaintStore) -> None:
        await store.create(_state("a"))
        await store.create(_state("b"))
        await store.set_status("a", ComplaintStatus.RESOLVED)
        assert await store.list_open() == ["b"]
        assert (await store.read("a")).status == ComplaintStatus.RESOLVED

    async def test_set_status_bumps_version(self, store: ComplaintStore) -> None:
        await store.create(_state())
        await store.set_status("c-1", ComplaintStatus.IN_PROGRESS)
        with pytest.raises(StaleWriteConflict):
            await store.apply_transition("c-1", 0, 2, T0, _event())

    async def test_set_status_with_expected_version(self, store: ComplaintStore) -> None:
        await store.create(_state())
        with pytest.raises(StaleWriteConflict):
            await store.set_status("c-1", ComplaintStatus.REJECTED, expected_version=4)

    async def test_in_progress_stays_open(self, store: ComplaintStore) -> None:
        await store.create(_state())
        await store.set_status("c-1", ComplaintStatus.IN_PROGRESS)
        assert await store.list_open() == ["c-1"]

    async def test_assign_officer(self, store: ComplaintStore) -> None:
        await store.create(_state())
        updated = await store.assign_officer("c-1", "officer-7")
        assert updated.assigned_officer_id == "officer-7"
        assert updated.level == 1

    async def test_assign_officer_with_status_is_one_write(self, store: ComplaintStore) -> None:
        await store.create(_state())
        updated = await store.assign_officer(
            "c-1", "officer-7", expected_version=0, status=ComplaintStatus.IN_PROGRESS
        )
        assert updated.assigned_officer_id == "officer-7"
        assert updated.status == ComplaintStatus.IN_PROGRESS
        assert updated.version == 1

    async def test_assign_officer_stale_version_conflicts(self, store: ComplaintStore) -> None:
        await store.create(_state())
        await store.assign_officer("c-1", "officer-7", expected_version=0)
        with pytest.raises(StaleWriteConflict):
            await store.assign_officer("c-1", "officer-8", expected_version=0)
        assert (await store.read("c-1")).assigned_officer_id == "officer-7"

    async def test_returned_state_is_detached(self, store: ComplaintStore) -> None:
        await store.create(_state())
        state = await store.read("c-1")
        state.level = 4
        state.history.append(_event())
        fresh = await store.read("c-1")
        assert fresh.level == 1
        assert fresh.history == []


# -----------------------------------------------------------------------
# Backend specifics
# -----------------------------------------------------------------------


class TestInMemoryComplaintStore:
    async def test_concurrent_writers_only_one_wins(self) -> None:
        store = InMemoryComplaintStore()
        await store.create(_state())

        outcomes = await asyncio.gather(
            *(store.apply_transition("c-1", 0, 2, T0, _event()) for _ in range(5)),
            return_exceptions=True,
        )
        winners = [o for o in outcomes if isinstance(o, EscalationState)]
        assert len(winners) == 1
        assert all(isinstance(o, StaleWriteConflict) for o in outcomes if o not in winners)
        assert len((await store.read("c-1")).history) == 1

    async def test_size(self) -> None:
        store = InMemoryComplaintStore()
        await store.create(_state("a"))
        assert store.size == 1


class TestRedisComplaintStore:
    async def test_keys_are_namespaced(self) -> None:
        client = FakeRedis(server=FakeServer())
        store = RedisComplaintStore(client=client, namespace="esc:")
        await store.create(_state())
        assert await client.exists("esc:complaint:c-1") == 1
        assert await client.smembers("esc:open") == {b"c-1"}

    async def test_ping(self) -> None:
        store = RedisComplaintStore(client=FakeRedis(server=FakeServer()))
        assert await store.ping() is True

    async def test_write_between_watch_and_exec_conflicts(self) -> None:
        server = FakeServer()
        rival = FakeRedis(server=server)
        rival_state = encode_state(_state(assigned_officer_id="o-9"))

        class InterleavedRedis(FakeRedis):
            """Lets a second connection write the key right before EXEC."""

            def pipeline(self, transaction: bool = True, shard_hint: str | None = None):  # type: ignore[no-untyped-def]
                pipe = super().pipeline(transaction=transaction, shard_hint=shard_hint)
                execute = pipe.execute

                async def execute_after_rival_write(raise_on_error: bool = True):  # type: ignore[no-untyped-def]
                    await rival.set("t:complaint:c-1", rival_state)
                    return await execute(raise_on_error)

                pipe.execute = execute_after_rival_write
                return pipe

        store = RedisComplaintStore(client=InterleavedRedis(server=server), namespace="t:")
        await store.create(_state())

        with pytest.raises(StaleWriteConflict) as excinfo:
            await store.apply_transition("c-1", 0, 2, T0, _event())

        assert excinfo.value.expected_version == 0
        state = await store.read("c-1")
        assert state.history == [], "a transaction aborted by WATCH must not append"
        assert state.assigned_officer_id == "o-9"

    async def test_read_failure_is_store_unavailable(self) -> None:
        client = AsyncMock()
        client.get.side_effect = RedisConnectionError("down")
        store = RedisComplaintStore(client=client)
        with pytest.raises(StoreUnavailableError):
            await store.read("c-1")

    async def test_list_open_failure_is_store_unavailable(self) -> None:
        client = AsyncMock()
        client.smembers.side_effect = RedisConnectionError("down")
        store = RedisComplaintStore(client=client)
        with pytest.raises(StoreUnavailableError):
            await store.list_open()


class TestSerialisation:
    def test_encode_decode(self) -> None:
        state = _state(history=[_event()], assigned_officer_id="o-1")
        assert decode_state(encode_state(state)) == state
