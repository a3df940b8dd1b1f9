from __future__ import annotations

import asyncio

import pytest

from chartsync.config import ChartSyncConfig
from chartsync.store import MemoryBackend, SessionStore, StoreUnavailableError, build_store


def test_save_and_load_round_trip(store, make_session):
    original = make_session()

    async def run():
        await store.save(original)
        return await store.load(original.session_id)

    loaded = asyncio.run(run())
    assert loaded == original
    assert loaded is not original


def test_save_stamps_updated_at(store, clock, make_session):
    s = make_session()
    clock.advance(42)
    asyncio.run(store.save(s))
    assert s.updated_at == clock.now
    assert store.primary.records[s.session_id]["updatedAt"] == clock.now


@pytest.mark.parametrize("down", ["primary", "durable"])
def test_one_backend_down_still_round_trips(backends, clock, make_session, down):
    primary, durable = backends
    (primary if down == "primary" else durable).available = False
    store = SessionStore(primary, durable, clock=clock)
    s = make_session()

    async def run():
        await store.save(s)
        loaded = await store.load(s.session_id)
        listed = await store.list_sessions()
        await store.flush()
        return loaded, listed

    loaded, listed = asyncio.run(run())
    assert loaded == s
    assert [x.session_id for x in listed] == [s.session_id]


def test_both_backends_down_raises(backends, clock, make_session):
    primary, durable = backends
    primary.available = False
    durable.available = False
    store = SessionStore(primary, durable, clock=clock)

    with pytest.raises(StoreUnavailableError) as exc_info:
        asyncio.run(store.save(make_session()))
    assert exc_info.value.operation == "save"

    # Reads degrade to "not found" rather than raising
    assert asyncio.run(store.load("state-1")) is None
    assert asyncio.run(store.list_sessions()) == []


def test_load_from_durable_heals_primary(store, make_session):
    s = make_session()
    asyncio.run(store.durable.write(s))
    assert s.session_id not in store.primary.records

    loaded = asyncio.run(store.load(s.session_id))
    assert loaded == s
    assert s.session_id in store.primary.records


def test_load_from_primary_heals_durable_in_background(store, make_session):
    s = make_session()

    async def run():
        await store.primary.write(s)
        loaded = await store.load(s.session_id)
        await store.flush()
        return loaded

    assert asyncio.run(run()) == s
    assert s.session_id in store.durable.records


def test_heal_never_replaces_newer_copy(store, make_session):
    older = make_session(last_speed=10, updated_at=100)
    newer = make_session(last_speed=90, updated_at=200)

    async def run():
        await store.primary.write(older)
        await store.durable.write(newer)
        await store.load(older.session_id)
        await store.flush()

    asyncio.run(run())
    assert store.durable.records[newer.session_id]["lastSpeed"] == 90


def test_list_falls_back_to_durable_and_mirrors(store, make_session):
    sessions = [make_session(session_id=f"s-{i}", start_time=1000 * i) for i in range(3)]

    async def run():
        for s in sessions:
            await store.durable.write(s)
        return await store.list_sessions()

    listed = asyncio.run(run())
    assert [s.session_id for s in listed] == ["s-2", "s-1", "s-0"]
    assert set(store.primary.records) == {"s-0", "s-1", "s-2"}


def test_rebalance_from_durable(store, make_session):
    async def run():
        for i in range(4):
            await store.durable.write(make_session(session_id=f"s-{i}"))
        return await store.rebalance()

    report = asyncio.run(run())
    assert report.to_dict() == {
        "source": "firestore",
        "redisCount": 0,
        "firestoreCount": 4,
        "mirroredToFirestore": 0,
        "mirroredToRedis": 4,
    }
    assert len(asyncio.run(store.primary.list_sessions())) == 4


def test_rebalance_from_primary_skips_up_to_date(store, make_session):
    s1 = make_session(session_id="a", updated_at=5)
    s2 = make_session(session_id="b", updated_at=5)

    async def run():
        for s in (s1, s2):
            await store.primary.write(s)
        await store.durable.write(s1)
        return await store.rebalance()

    report = asyncio.run(run())
    assert report.source == "redis"
    assert report.mirrored_to_firestore == 1
    assert report.mirrored_to_redis == 0


def test_rebalance_with_nothing(store):
    assert asyncio.run(store.rebalance()).source == "none"


def test_remove_deletes_from_both(store, make_session):
    s = make_session()

    async def run():
        await store.save(s)
        await store.remove(s.session_id)
        return await store.load(s.session_id)

    assert asyncio.run(run()) is None
    assert not store.primary.records
    assert not store.durable.records


def test_remove_with_both_down_raises(backends, clock):
    primary, durable = backends
    primary.available = durable.available = False
    store = SessionStore(primary, durable, clock=clock)
    with pytest.raises(StoreUnavailableError):
        asyncio.run(store.remove("gone"))


def test_corrupt_record_is_dropped(store, make_session):
    good = make_session(session_id="good")
    asyncio.run(store.primary.write(good))
    store.primary.records["bad"] = {"sessionId": "bad", "tokenMint": "X", "startTime": "soon"}

    listed = asyncio.run(store.list_sessions())
    assert [s.session_id for s in listed] == ["good"]
    assert "bad" not in store.primary.records


def test_memory_window_limits_listing(make_session):
    backend = MemoryBackend(window=2)

    async def run():
        for i in range(5):
            await backend.write(make_session(session_id=f"s-{i}", start_time=i))
        return await backend.list_sessions()

    assert [s.session_id for s in asyncio.run(run())] == ["s-4", "s-3"]


def test_build_store_without_backends_uses_memory(tmp_path):
    cfg = ChartSyncConfig(data_dir=tmp_path, redis_url="", firebase_project_id="")
    store = build_store(cfg)
    assert isinstance(store.primary, MemoryBackend)
    assert not store.durable.enabled
