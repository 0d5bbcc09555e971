"""
Снапшот прогресса игрока: значения по умолчанию, санитизация сохранённых данных,
перевод между состоянием в памяти (inventory и ownedPartnerships как set) и JSON-снапшотом.

Загрузка никогда не падает из-за одного битого поля: каждое поле проверяется отдельно
и при ошибке заменяется безопасным значением по умолчанию.
"""
import copy
import logging
import math
from typing import Any, Dict, List, Optional

from kombinat.core.economy import (
    MAX_RESEARCH_LEVEL,
    RESEARCH_TYPES,
    get_xp_for_next_level,
)

logger = logging.getLogger(__name__)

DEFAULT_STATE: Dict[str, Any] = {
    "balance": 0,
    "level": 1,
    "experience": 0,
    "shiftEndTime": None,
    "dailyStreak": 1,
    "lastRewardClaimTime": None,
    "researches": {t: {"level": 0} for t in RESEARCH_TYPES},
    "activeResearch": None,
    "inventory": set(),
    "ownedPartnerships": set(),
    "lastCollectionTime": None,
    "production": None,
}

SET_FIELDS = ("inventory", "ownedPartnerships")
# 3000-01-01 UTC: метки позже считаются битыми
MAX_TIMESTAMP_MS = 32503680000000


def copy_state(state: Dict[str, Any]) -> Dict[str, Any]:
    return copy.deepcopy(state)


def get_default_state() -> Dict[str, Any]:
    return copy_state(DEFAULT_STATE)


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        num = float(value)
    elif isinstance(value, str):
        try:
            num = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(num):
        return None
    return num


def _int_field(value: Any, minimum: Optional[int] = None, maximum: Optional[int] = None) -> Optional[int]:
    """Целое поле или None, если значение не число."""
    num = _as_number(value)
    if num is None:
        return None
    out = int(math.floor(num))
    if minimum is not None:
        out = max(minimum, out)
    if maximum is not None:
        out = min(maximum, out)
    return out


def _timestamp(value: Any) -> Optional[int]:
    num = _as_number(value)
    if num is None or num < 0 or num > MAX_TIMESTAMP_MS:
        return None
    return int(num)


def _id_set(value: Any) -> Optional[set]:
    if not isinstance(value, (list, tuple, set)):
        return None
    return {v for v in value if isinstance(v, str) and v}


def _settle_levels(level: int, experience: int) -> tuple:
    """Переносит избыток опыта в уровни, чтобы experience < xp_for_next_level(level)."""
    needed = get_xp_for_next_level(level)
    while experience >= needed:
        experience -= needed
        level += 1
        needed = get_xp_for_next_level(level)
    return level, experience


def sanitize_snapshot(raw: Any, now: Optional[int] = None) -> Dict[str, Any]:
    """
    Собирает валидное состояние из сохранённого снапшота (dict из JSON).
    Не-числа и NaN/inf → число по умолчанию, не-массивы → пустое множество, level ≥ 1.
    now нужен только для якоря пассивного дохода, если партнёрства есть, а якоря нет.
    """
    state = get_default_state()
    if not isinstance(raw, dict):
        if raw is not None:
            logger.warning("sanitize: snapshot is %s, using defaults", type(raw).__name__)
        return state

    fixed: List[str] = []

    def _take(key: str, parsed: Any) -> None:
        if parsed is None:
            if raw.get(key) is not None:
                fixed.append(key)
            return
        state[key] = parsed

    _take("balance", _int_field(raw.get("balance"), minimum=0))
    _take("level", _int_field(raw.get("level"), minimum=1))
    _take("experience", _int_field(raw.get("experience"), minimum=0))
    _take("dailyStreak", _int_field(raw.get("dailyStreak"), minimum=1))
    _take("shiftEndTime", _timestamp(raw.get("shiftEndTime")))
    _take("lastRewardClaimTime", _timestamp(raw.get("lastRewardClaimTime")))
    _take("lastCollectionTime", _timestamp(raw.get("lastCollectionTime")))
    _take("inventory", _id_set(raw.get("inventory")))
    _take("ownedPartnerships", _id_set(raw.get("ownedPartnerships")))

    researches = raw.get("researches")
    if isinstance(researches, dict):
        for rtype in RESEARCH_TYPES:
            entry = researches.get(rtype)
            lvl = _int_field(entry.get("level") if isinstance(entry, dict) else None, 0, MAX_RESEARCH_LEVEL)
            if lvl is None:
                if entry is not None:
                    fixed.append(f"researches.{rtype}")
                continue
            state["researches"][rtype]["level"] = lvl
    elif researches is not None:
        fixed.append("researches")

    active = raw.get("activeResearch")
    if isinstance(active, dict):
        rtype = active.get("type")
        end_time = _timestamp(active.get("endTime"))
        if rtype in RESEARCH_TYPES and end_time is not None and state["researches"][rtype]["level"] < MAX_RESEARCH_LEVEL:
            state["activeResearch"] = {"type": rtype, "endTime": end_time}
        else:
            fixed.append("activeResearch")
    elif active is not None:
        fixed.append("activeResearch")

    production = raw.get("production")
    if isinstance(production, str) and production:
        state["production"] = production
    elif production is not None:
        fixed.append("production")

    level, experience = _settle_levels(state["level"], state["experience"])
    if (level, experience) != (state["level"], state["experience"]):
        fixed.append("experience")
        state["level"], state["experience"] = level, experience

    if state["ownedPartnerships"] and state["lastCollectionTime"] is None and now is not None:
        state["lastCollectionTime"] = int(now)
        fixed.append("lastCollectionTime")

    if fixed:
        logger.warning("sanitize: substituted defaults for %s", ", ".join(fixed))
    return state


def state_to_snapshot(state: Dict[str, Any]) -> Dict[str, Any]:
    """JSON-совместимый снапшот: множества → отсортированные массивы строк."""
    out = copy_state(state)
    for key in SET_FIELDS:
        out[key] = sorted(out.get(key) or ())
    return out
