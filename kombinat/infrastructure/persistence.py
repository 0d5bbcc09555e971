"""
Хранилище снапшотов прогресса: load(user_id) / save(user_id, snapshot).
Отсутствие снапшота: load → None (новый игрок). Недоступная БД: load бросает StoreUnavailableError,
сессия играет на значениях по умолчанию и ничего не пишет, чтобы не затереть настоящий прогресс.
save → False (состояние в памяти остаётся главным, запись повторится при следующем изменении).
"""
import asyncio
import copy
import logging
from typing import Any, Dict, Optional

import asyncpg

from kombinat.config import SAVE_DEBOUNCE_SEC, STATE_BACKEND, STATE_CACHE_TTL_SEC
from kombinat.infrastructure.cache import cache_get, cache_set, state_cache_key
from kombinat.infrastructure.database import get_state, set_state

logger = logging.getLogger(__name__)

_DB_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)


class StoreUnavailableError(Exception):
    """Хранилище не ответило; это не то же самое, что «снапшота нет»."""


class StateStore:
    async def load(self, user_id: int) -> Optional[Any]:
        raise NotImplementedError

    async def save(self, user_id: int, snapshot: Dict[str, Any], profile: Optional[Dict[str, Any]] = None) -> bool:
        raise NotImplementedError


class PostgresStateStore(StateStore):
    """game_players (asyncpg) + redis как read-through кэш."""

    def __init__(self, cache_ttl_sec: int = STATE_CACHE_TTL_SEC):
        self.cache_ttl_sec = cache_ttl_sec

    async def load(self, user_id: int) -> Optional[Any]:
        key = state_cache_key(user_id)
        cached = await cache_get(key)
        if cached is not None:
            return cached
        try:
            return await get_state(user_id)
        except _DB_ERRORS as e:
            logger.warning("load state %s failed: %s", user_id, e)
            raise StoreUnavailableError(str(e)) from e

    async def save(self, user_id: int, snapshot: Dict[str, Any], profile: Optional[Dict[str, Any]] = None) -> bool:
        profile = profile or {}
        try:
            await set_state(
                user_id,
                snapshot,
                username=profile.get("username") or "",
                first_name=profile.get("first_name") or "",
                photo_url=profile.get("photo_url") or "",
            )
        except _DB_ERRORS as e:
            logger.warning("save state %s failed: %s", user_id, e)
            return False
        await cache_set(state_cache_key(user_id), snapshot, self.cache_ttl_sec)
        return True


class MemoryStateStore(StateStore):
    """Снапшоты в памяти процесса (dev без БД, тесты)."""

    def __init__(self):
        self.snapshots: Dict[int, Dict[str, Any]] = {}
        self.profiles: Dict[int, Dict[str, Any]] = {}
        self.save_count = 0

    async def load(self, user_id: int) -> Optional[Any]:
        return copy.deepcopy(self.snapshots.get(user_id))

    async def save(self, user_id: int, snapshot: Dict[str, Any], profile: Optional[Dict[str, Any]] = None) -> bool:
        self.snapshots[user_id] = copy.deepcopy(snapshot)
        if profile:
            self.profiles[user_id] = dict(profile)
        self.save_count += 1
        return True


def get_state_store(backend: str = STATE_BACKEND) -> StateStore:
    if backend == "memory":
        return MemoryStateStore()
    if backend != "postgres":
        logger.warning("STATE_BACKEND=%r unknown, using postgres", backend)
    return PostgresStateStore()


class DebouncedSaver:
    """
    Склеивает частые изменения в одну запись после паузы delay_sec.
    Неудачная запись логируется, снапшот остаётся грязным и уходит при следующем schedule().
    """

    def __init__(self, store: StateStore, user_id: int, delay_sec: float = SAVE_DEBOUNCE_SEC):
        self.store = store
        self.user_id = user_id
        self.delay_sec = delay_sec
        self.dirty = False
        self._pending: Optional[Dict[str, Any]] = None
        self._profile: Optional[Dict[str, Any]] = None
        self._changed_at = 0.0
        self._task: Optional[asyncio.Task] = None

    def schedule(self, snapshot: Dict[str, Any], profile: Optional[Dict[str, Any]] = None) -> None:
        loop = asyncio.get_running_loop()
        self._pending = snapshot
        self._profile = profile
        self.dirty = True
        self._changed_at = loop.time()
        if self._task is None or self._task.done():
            self._task = loop.create_task(self._run())

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while self.dirty:
            wait = self._changed_at + self.delay_sec - loop.time()
            if wait > 0:
                await asyncio.sleep(wait)
                continue
            saved = self._pending
            ok = await self.flush()
            if not ok or self._pending is saved:
                break

    async def flush(self) -> bool:
        if not self.dirty or self._pending is None:
            return True
        snapshot = self._pending
        ok = await self.store.save(self.user_id, snapshot, self._profile)
        if not ok:
            logger.warning("save state %s failed, will retry on next change", self.user_id)
            return False
        if self._pending is snapshot:
            self.dirty = False
        return True

    async def close(self) -> bool:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        return await self.flush()
