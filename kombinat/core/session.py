"""
Сессии игроков: ровно одна копия состояния в памяти на пользователя,
мутирует её только GameSession. Каждое изменение уходит в хранилище через DebouncedSaver.
"""
import asyncio
import logging
from typing import Any, Callable, Dict, Optional, Tuple

from kombinat.config import SAVE_DEBOUNCE_SEC, SESSION_IDLE_TTL_SEC, TICK_INTERVAL_SEC
from kombinat.core.game_engine import apply_action, apply_tick, get_view, now_ms
from kombinat.core.snapshot import sanitize_snapshot, state_to_snapshot
from kombinat.infrastructure.persistence import DebouncedSaver, StateStore, StoreUnavailableError

logger = logging.getLogger(__name__)

Clock = Callable[[], int]


class GameSession:
    def __init__(
        self,
        user_id: int,
        state: Dict[str, Any],
        saver: Optional[DebouncedSaver],
        clock: Clock = now_ms,
        profile: Optional[Dict[str, Any]] = None,
    ):
        self.user_id = user_id
        self.state = state
        # None: хранилище не ответило при загрузке, сессия временная и ничего не пишет
        self.saver = saver
        self.clock = clock
        self.profile = profile or {}
        self.last_access = clock()

    @property
    def persistent(self) -> bool:
        return self.saver is not None

    def touch(self) -> None:
        self.last_access = self.clock()

    def _commit(self, new_state: Dict[str, Any]) -> bool:
        if new_state == self.state:
            return False
        self.state = new_state
        if self.saver is not None:
            self.saver.schedule(state_to_snapshot(new_state), self.profile)
        return True

    def view(self) -> Dict[str, Any]:
        return get_view(self.state, self.clock())

    def tick(self) -> bool:
        return self._commit(apply_tick(self.state, self.clock()))

    def act(self, action: str, params: Optional[Dict[str, Any]] = None) -> Tuple[bool, Dict[str, Any]]:
        """Применяет действие игрока. Возвращает (изменилось ли состояние, вид для клиента)."""
        now = self.clock()
        self.last_access = now
        changed = self._commit(apply_action(self.state, action, params, now))
        return changed, get_view(self.state, now)

    def update_profile(self, profile: Optional[Dict[str, Any]]) -> None:
        if profile and profile != self.profile:
            self.profile = dict(profile)

    async def close(self) -> bool:
        if self.saver is None:
            return True
        return await self.saver.close()


class SessionRegistry:
    def __init__(
        self,
        store: StateStore,
        clock: Clock = now_ms,
        save_debounce_sec: float = SAVE_DEBOUNCE_SEC,
        idle_ttl_sec: float = SESSION_IDLE_TTL_SEC,
    ):
        self.store = store
        self.clock = clock
        self.save_debounce_sec = save_debounce_sec
        self.idle_ttl_sec = idle_ttl_sec
        self._sessions: Dict[int, GameSession] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    async def get(self, user_id: int, profile: Optional[Dict[str, Any]] = None) -> GameSession:
        session = self._sessions.get(user_id)
        if session is None:
            async with self._lock:
                session = self._sessions.get(user_id)
                if session is None:
                    session = await self._open(user_id, profile)
                    if session.persistent:
                        self._sessions[user_id] = session
        session.update_profile(profile)
        session.touch()
        return session

    async def _open(self, user_id: int, profile: Optional[Dict[str, Any]]) -> GameSession:
        try:
            raw = await self.store.load(user_id)
        except StoreUnavailableError:
            # не регистрируем: следующий запрос попробует загрузить снова
            logger.warning("session %s: store unavailable, serving defaults without saving", user_id)
            return GameSession(user_id, sanitize_snapshot(None), None, self.clock, profile)
        state = sanitize_snapshot(raw, self.clock())
        saver = DebouncedSaver(self.store, user_id, self.save_debounce_sec)
        session = GameSession(user_id, state, saver, self.clock, profile)
        if raw is None:
            # первый вход: сохраняем значения по умолчанию
            logger.info("session %s: new player", user_id)
            saver.schedule(state_to_snapshot(state), session.profile)
        return session

    def tick_all(self) -> int:
        changed = 0
        for session in list(self._sessions.values()):
            if session.tick():
                changed += 1
        return changed

    async def evict_idle(self) -> int:
        """Выгружает сессии без обращений дольше idle_ttl_sec. Сессия с несохранённым снапшотом остаётся."""
        threshold = self.clock() - int(self.idle_ttl_sec * 1000)
        evicted = 0
        async with self._lock:
            for user_id, session in list(self._sessions.items()):
                if session.last_access > threshold:
                    continue
                if not await session.close():
                    logger.warning("session %s: save before eviction failed, keeping", user_id)
                    continue
                if session.last_access > threshold:
                    # пока писали, игрок вернулся
                    continue
                del self._sessions[user_id]
                evicted += 1
        return evicted

    async def run_ticker(self, stop_event: asyncio.Event, interval_sec: float = TICK_INTERVAL_SEC) -> None:
        """Фоновый пересчёт: завершение исследований у всех живых сессий и выгрузка простаивающих."""
        while not stop_event.is_set():
            changed = self.tick_all()
            if changed:
                logger.info("ticker: %s sessions changed", changed)
            evicted = await self.evict_idle()
            if evicted:
                logger.info("ticker: %s idle sessions evicted", evicted)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval_sec)
            except asyncio.TimeoutError:
                continue

    async def close_all(self) -> None:
        for user_id, session in list(self._sessions.items()):
            if not await session.close():
                logger.warning("session %s: final save failed", user_id)
        self._sessions.clear()
