"""
Ежедневная награда: серия (streak) по разнице календарных дней с последнего получения.
- нет прошлого получения → серия 1, награда доступна;
- тот же день → недоступна;
- следующий день → серия + 1;
- пропуск дня и больше → серия сбрасывается в 1.
Календарный день берётся в зоне GAME_TIMEZONE (или в локальной зоне хоста).
"""
import logging
import time
from datetime import date, datetime, tzinfo
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from kombinat.config import GAME_TIMEZONE
from kombinat.core.economy import get_daily_reward_amount
from kombinat.core.snapshot import copy_state

logger = logging.getLogger(__name__)


def _game_tz() -> Optional[tzinfo]:
    if not GAME_TIMEZONE:
        return None
    try:
        return ZoneInfo(GAME_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("GAME_TIMEZONE=%r unknown, falling back to host local time", GAME_TIMEZONE)
        return None


_TZ = _game_tz()


def local_day(ts_ms: int, tz: Optional[tzinfo] = None) -> date:
    """Календарная дата момента ts_ms (время суток отбрасывается)."""
    zone = tz if tz is not None else _TZ
    return datetime.fromtimestamp(ts_ms / 1000, zone).date()


def day_delta(last_ms: int, now_ms: int, tz: Optional[tzinfo] = None) -> int:
    return (local_day(now_ms, tz) - local_day(last_ms, tz)).days


def get_daily_reward_status(state: Dict[str, Any], now: Optional[int] = None, tz: Optional[tzinfo] = None) -> Dict[str, Any]:
    """Возвращает {"available": bool, "streak": int, "amount": int} на момент now."""
    if now is None:
        now = int(time.time() * 1000)
    last = state.get("lastRewardClaimTime")
    saved_streak = int(state.get("dailyStreak") or 1)
    if last is None:
        return {"available": True, "streak": 1, "amount": get_daily_reward_amount(1)}

    delta = day_delta(last, now, tz)
    if delta <= 0:
        # уже получено сегодня (или часы ушли назад)
        return {"available": False, "streak": saved_streak, "amount": get_daily_reward_amount(saved_streak)}
    streak = saved_streak + 1 if delta == 1 else 1
    return {"available": True, "streak": streak, "amount": get_daily_reward_amount(streak)}


def apply_claim_daily_reward(state: Dict[str, Any], now: Optional[int] = None, tz: Optional[tzinfo] = None) -> Dict[str, Any]:
    state = copy_state(state)
    if now is None:
        now = int(time.time() * 1000)
    status = get_daily_reward_status(state, now, tz)
    if not status["available"]:
        return state
    state["balance"] = int(state.get("balance") or 0) + status["amount"]
    state["lastRewardClaimTime"] = int(now)
    state["dailyStreak"] = status["streak"]
    return state
