"""
Сессии и отложенная запись: склейка изменений, повтор после сбоя, санитизация при загрузке.
"""
import asyncio

import pytest

from conftest import DAY_MS, FakeClock
from kombinat.core.economy import SHIFT_DURATION_MS
from kombinat.core.game_engine import SHIFT_IDLE, SHIFT_OVER
from kombinat.core.session import SessionRegistry
from kombinat.infrastructure import persistence
from kombinat.infrastructure.persistence import (
    DebouncedSaver,
    MemoryStateStore,
    PostgresStateStore,
    StoreUnavailableError,
)

USER_ID = 42


class FlakyStore(MemoryStateStore):
    """Первые fail_times записей падают."""

    def __init__(self, fail_times: int = 1):
        super().__init__()
        self.fail_times = fail_times
        self.attempts = 0

    async def save(self, user_id, snapshot, profile=None):
        self.attempts += 1
        if self.attempts <= self.fail_times:
            return False
        return await super().save(user_id, snapshot, profile)


def test_saver_coalesces_rapid_changes():
    async def scenario():
        store = MemoryStateStore()
        saver = DebouncedSaver(store, USER_ID, delay_sec=0.05)
        for balance in (1, 2, 3):
            saver.schedule({"balance": balance})
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.2)
        return store, saver

    store, saver = asyncio.run(scenario())
    assert store.save_count == 1
    assert store.snapshots[USER_ID] == {"balance": 3}
    assert saver.dirty is False


def test_saver_retries_on_next_change():
    async def scenario():
        store = FlakyStore(fail_times=1)
        saver = DebouncedSaver(store, USER_ID, delay_sec=0.01)
        saver.schedule({"balance": 1})
        await asyncio.sleep(0.1)
        dirty_after_failure = saver.dirty
        saver.schedule({"balance": 2})
        await asyncio.sleep(0.1)
        return store, saver, dirty_after_failure

    store, saver, dirty_after_failure = asyncio.run(scenario())
    assert dirty_after_failure is True
    assert store.attempts == 2
    assert store.snapshots[USER_ID] == {"balance": 2}
    assert saver.dirty is False


def test_saver_close_flushes_pending():
    async def scenario():
        store = MemoryStateStore()
        saver = DebouncedSaver(store, USER_ID, delay_sec=10)
        saver.schedule({"balance": 7})
        ok = await saver.close()
        return store, ok

    store, ok = asyncio.run(scenario())
    assert ok is True
    assert store.snapshots[USER_ID] == {"balance": 7}


def test_new_player_defaults_persisted():
    async def scenario():
        store = MemoryStateStore()
        registry = SessionRegistry(store, clock=FakeClock(), save_debounce_sec=0.01)
        session = await registry.get(USER_ID, {"first_name": "Иван"})
        await registry.close_all()
        return store, session

    store, session = asyncio.run(scenario())
    assert store.snapshots[USER_ID]["balance"] == 0
    assert store.snapshots[USER_ID]["inventory"] == []
    assert store.profiles[USER_ID] == {"first_name": "Иван"}
    assert session.state["level"] == 1


def test_corrupted_snapshot_loads_sanitized():
    async def scenario():
        store = MemoryStateStore()
        store.snapshots[USER_ID] = {"balance": "NaN", "level": 5, "inventory": {"bad": True}}
        registry = SessionRegistry(store, clock=FakeClock())
        session = await registry.get(USER_ID)
        await registry.close_all()
        return session

    session = asyncio.run(scenario())
    assert session.state["balance"] == 0
    assert session.state["level"] == 5
    assert session.state["inventory"] == set()


def test_session_shift_cycle_with_fake_clock():
    clock = FakeClock()

    async def scenario():
        store = MemoryStateStore()
        registry = SessionRegistry(store, clock=clock, save_debounce_sec=0.01)
        session = await registry.get(USER_ID)
        changed, _ = session.act("start_shift")
        assert changed is True
        changed, view = session.act("start_shift")
        assert changed is False

        clock.advance(SHIFT_DURATION_MS)
        assert session.view()["shiftStatus"] == SHIFT_OVER
        changed, view = session.act("claim_salary")
        assert changed is True
        assert view["shiftStatus"] == SHIFT_IDLE
        changed, _ = session.act("claim_salary")
        assert changed is False
        await asyncio.sleep(0.05)
        await registry.close_all()
        return store

    store = asyncio.run(scenario())
    assert store.snapshots[USER_ID]["balance"] == 100
    assert store.snapshots[USER_ID]["level"] == 2
    assert store.snapshots[USER_ID]["shiftEndTime"] is None


def test_tick_all_completes_research():
    clock = FakeClock()

    async def scenario():
        store = MemoryStateStore()
        store.snapshots[USER_ID] = {"balance": 5000}
        registry = SessionRegistry(store, clock=clock, save_debounce_sec=0.01)
        session = await registry.get(USER_ID)
        session.act("start_research", {"type": "economic"})
        assert registry.tick_all() == 0
        clock.advance(DAY_MS)
        assert registry.tick_all() == 1
        assert registry.tick_all() == 0
        await registry.close_all()
        return store

    store = asyncio.run(scenario())
    snapshot = store.snapshots[USER_ID]
    assert snapshot["balance"] == 4500
    assert snapshot["researches"]["economic"]["level"] == 1
    assert snapshot["activeResearch"] is None


def test_registry_returns_same_session():
    async def scenario():
        registry = SessionRegistry(MemoryStateStore(), clock=FakeClock())
        first, second = await asyncio.gather(registry.get(USER_ID), registry.get(USER_ID))
        size = len(registry)
        await registry.close_all()
        return first, second, size

    first, second, size = asyncio.run(scenario())
    assert first is second
    assert size == 1


class UnreachableStore(MemoryStateStore):
    """Первые fail_loads загрузок: хранилище недоступно."""

    def __init__(self, fail_loads: int = 1):
        super().__init__()
        self.fail_loads = fail_loads
        self.loads = 0

    async def load(self, user_id):
        self.loads += 1
        if self.loads <= self.fail_loads:
            raise StoreUnavailableError("connection refused")
        return await super().load(user_id)


def test_postgres_store_load_error_is_not_a_new_player(monkeypatch):
    async def no_cache(key):
        return None

    async def broken_get_state(user_id):
        raise OSError("connection refused")

    monkeypatch.setattr(persistence, "cache_get", no_cache)
    monkeypatch.setattr(persistence, "get_state", broken_get_state)
    with pytest.raises(StoreUnavailableError):
        asyncio.run(PostgresStateStore().load(USER_ID))


def test_unavailable_store_never_overwrites_saved_progress():
    clock = FakeClock()

    async def scenario():
        store = UnreachableStore(fail_loads=1)
        store.snapshots[USER_ID] = {"balance": 99999, "level": 12}
        registry = SessionRegistry(store, clock=clock, save_debounce_sec=0.01)

        fallback = await registry.get(USER_ID)
        assert fallback.persistent is False
        assert fallback.state["balance"] == 0
        assert len(registry) == 0
        changed, _ = fallback.act("start_shift")
        assert changed is True
        await asyncio.sleep(0.05)
        await fallback.close()

        session = await registry.get(USER_ID)
        await registry.close_all()
        return store, session

    store, session = asyncio.run(scenario())
    assert store.save_count == 0
    assert store.snapshots[USER_ID] == {"balance": 99999, "level": 12}
    assert session.persistent is True
    assert session.state["balance"] == 99999
    assert session.state["level"] == 12


def test_idle_sessions_evicted_after_save():
    clock = FakeClock()

    async def scenario():
        store = MemoryStateStore()
        registry = SessionRegistry(store, clock=clock, save_debounce_sec=10, idle_ttl_sec=60)
        session = await registry.get(USER_ID)
        session.act("start_shift")
        other = await registry.get(USER_ID + 1)

        clock.advance(30_000)
        assert await registry.evict_idle() == 0
        other.act("start_shift")

        clock.advance(31_000)
        evicted = await registry.evict_idle()
        size = len(registry)
        await registry.close_all()
        return store, evicted, size

    store, evicted, size = asyncio.run(scenario())
    assert evicted == 1
    assert size == 1
    assert store.snapshots[USER_ID]["shiftEndTime"] is not None


def test_idle_session_kept_while_save_fails():
    clock = FakeClock()

    async def scenario():
        store = FlakyStore(fail_times=100)
        registry = SessionRegistry(store, clock=clock, save_debounce_sec=10, idle_ttl_sec=60)
        session = await registry.get(USER_ID)
        clock.advance(61_000)
        evicted = await registry.evict_idle()
        kept = len(registry)
        store.fail_times = 0
        clock.advance(61_000)
        evicted_after_recovery = await registry.evict_idle()
        return session, evicted, kept, evicted_after_recovery, store

    session, evicted, kept, evicted_after_recovery, store = asyncio.run(scenario())
    assert evicted == 0
    assert kept == 1
    assert evicted_after_recovery == 1
    assert store.snapshots[USER_ID]["balance"] == 0
