"""
Движок прогресса: смена, зарплата и уровни, исследования, покупки, пассивный доход.

Все функции чистые: принимают состояние и момент now (мс), возвращают новую копию.
Недопустимое действие (не хватает баланса, не то состояние смены, уже куплено, занят слот
исследования) не бросает исключение, а возвращает неизменённую копию.
Оставшееся время и накопленный доход не хранятся, а считаются от абсолютных меток.
"""
import math
import time
from typing import Any, Dict, Optional

from kombinat.core.daily_reward import apply_claim_daily_reward, get_daily_reward_status
from kombinat.core.economy import (
    DAY_MS,
    INVENTORY_ITEMS,
    MAX_RESEARCH_LEVEL,
    PARTNERSHIPS,
    RESEARCH_BONUS_PER_LEVEL,
    RESEARCH_ECONOMIC,
    RESEARCH_TRAINING,
    RESEARCH_TYPES,
    SALARY_AMOUNT,
    SHIFT_DURATION_MS,
    XP_PER_SHIFT,
    get_inventory_item,
    get_partnership,
    get_production,
    get_research_cost,
    get_research_duration_ms,
    get_xp_for_next_level,
)
from kombinat.core.snapshot import copy_state, state_to_snapshot

SHIFT_IDLE = "IDLE"
SHIFT_ON = "ON_SHIFT"
SHIFT_OVER = "SHIFT_OVER"


class UnknownActionError(ValueError):
    pass


def now_ms() -> int:
    return int(time.time() * 1000)


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


# ——— Смена ———

def get_shift_status(state: Dict[str, Any], now: Optional[int] = None) -> str:
    end_time = state.get("shiftEndTime")
    if end_time is None:
        return SHIFT_IDLE
    now = now_ms() if now is None else now
    return SHIFT_OVER if now >= end_time else SHIFT_ON


def get_shift_remaining_ms(state: Dict[str, Any], now: Optional[int] = None) -> int:
    end_time = state.get("shiftEndTime")
    if end_time is None:
        return 0
    now = now_ms() if now is None else now
    return max(0, end_time - now)


def research_bonus(state: Dict[str, Any], research_type: str) -> float:
    return state["researches"][research_type]["level"] * RESEARCH_BONUS_PER_LEVEL


def inventory_bonus(state: Dict[str, Any]) -> float:
    # порядок каталога, а не множества: сумма float не зависит от порядка покупок
    owned = state.get("inventory") or set()
    return sum(item["bonus"] for item in INVENTORY_ITEMS if item["id"] in owned)


def compute_salary(state: Dict[str, Any]) -> int:
    total = 1 + research_bonus(state, RESEARCH_ECONOMIC) + inventory_bonus(state)
    return _round_half_up(SALARY_AMOUNT * total)


def compute_shift_xp(state: Dict[str, Any]) -> int:
    xp_bonus = 1 + research_bonus(state, RESEARCH_TRAINING)
    return _round_half_up(XP_PER_SHIFT * xp_bonus)


def add_experience(state: Dict[str, Any], xp: int) -> None:
    """Начисляет опыт на месте; одна смена может дать несколько уровней."""
    current_xp = state["experience"] + xp
    level = state["level"]
    needed = get_xp_for_next_level(level)
    while current_xp >= needed:
        current_xp -= needed
        level += 1
        needed = get_xp_for_next_level(level)
    state["level"] = level
    state["experience"] = current_xp


def apply_start_shift(state: Dict[str, Any], now: Optional[int] = None) -> Dict[str, Any]:
    state = copy_state(state)
    now = now_ms() if now is None else now
    if get_shift_status(state, now) != SHIFT_IDLE:
        return state
    state["shiftEndTime"] = now + SHIFT_DURATION_MS
    return state


def apply_claim_salary(state: Dict[str, Any], now: Optional[int] = None) -> Dict[str, Any]:
    state = copy_state(state)
    now = now_ms() if now is None else now
    # повторный вызов после получения видит IDLE и ничего не платит
    if get_shift_status(state, now) != SHIFT_OVER:
        return state
    state["balance"] += compute_salary(state)
    add_experience(state, compute_shift_xp(state))
    state["shiftEndTime"] = None
    return state


# ——— Исследования ———

def get_next_research(state: Dict[str, Any], research_type: str) -> Optional[Dict[str, Any]]:
    level = state["researches"][research_type]["level"]
    if level >= MAX_RESEARCH_LEVEL:
        return None
    return {
        "level": level + 1,
        "cost": get_research_cost(level + 1),
        "durationMs": get_research_duration_ms(level + 1),
    }


def apply_start_research(state: Dict[str, Any], research_type: Any, now: Optional[int] = None) -> Dict[str, Any]:
    state = copy_state(state)
    now = now_ms() if now is None else now
    if research_type not in RESEARCH_TYPES or state.get("activeResearch"):
        return state
    nxt = get_next_research(state, research_type)
    if nxt is None or state["balance"] < nxt["cost"]:
        return state
    state["balance"] -= nxt["cost"]
    state["activeResearch"] = {"type": research_type, "endTime": now + nxt["durationMs"]}
    return state


def apply_research_completion(state: Dict[str, Any], now: Optional[int] = None) -> Dict[str, Any]:
    """Завершает активное исследование, если время вышло. Сброс activeResearch не даёт начислить уровень дважды."""
    state = copy_state(state)
    now = now_ms() if now is None else now
    active = state.get("activeResearch")
    if not active or now < active["endTime"]:
        return state
    track = state["researches"][active["type"]]
    track["level"] = min(MAX_RESEARCH_LEVEL, track["level"] + 1)
    state["activeResearch"] = None
    return state


def get_research_remaining_ms(state: Dict[str, Any], now: Optional[int] = None) -> int:
    active = state.get("activeResearch")
    if not active:
        return 0
    now = now_ms() if now is None else now
    return max(0, active["endTime"] - now)


# ——— Магазин: инвентарь, партнёрства, производство ———

def apply_purchase_item(state: Dict[str, Any], item_id: Any) -> Dict[str, Any]:
    state = copy_state(state)
    item = get_inventory_item(item_id)
    if item is None or item_id in state["inventory"] or state["balance"] < item["cost"]:
        return state
    state["balance"] -= item["cost"]
    state["inventory"].add(item_id)
    return state


def apply_purchase_partnership(state: Dict[str, Any], partnership_id: Any, now: Optional[int] = None) -> Dict[str, Any]:
    state = copy_state(state)
    now = now_ms() if now is None else now
    partnership = get_partnership(partnership_id)
    owned = state["ownedPartnerships"]
    if partnership is None or partnership_id in owned or state["balance"] < partnership["cost"]:
        return state
    if not owned:
        # якорь ставится только при первом партнёрстве, дальше накопление продолжается
        state["lastCollectionTime"] = now
    state["balance"] -= partnership["cost"]
    owned.add(partnership_id)
    return state


def apply_join_production(state: Dict[str, Any], production_id: Any) -> Dict[str, Any]:
    state = copy_state(state)
    if state.get("production") or get_production(production_id) is None:
        return state
    state["production"] = production_id
    return state


# ——— Пассивный доход ———

def total_daily_income(state: Dict[str, Any]) -> int:
    owned = state.get("ownedPartnerships") or set()
    return sum(p["dailyIncome"] for p in PARTNERSHIPS if p["id"] in owned)


def get_unclaimed_income(state: Dict[str, Any], now: Optional[int] = None) -> float:
    anchor = state.get("lastCollectionTime")
    daily = total_daily_income(state)
    if anchor is None or daily <= 0:
        return 0.0
    now = now_ms() if now is None else now
    elapsed = max(0, now - anchor)
    return elapsed / DAY_MS * daily


def apply_claim_passive_income(state: Dict[str, Any], now: Optional[int] = None) -> Dict[str, Any]:
    state = copy_state(state)
    now = now_ms() if now is None else now
    claimable = math.floor(get_unclaimed_income(state, now))
    if claimable <= 0:
        return state
    # дробный остаток < 1 не переносится
    state["balance"] += claimable
    state["lastCollectionTime"] = now
    return state


# ——— Пересчёт по времени и диспетчер действий ———

def apply_tick(state: Dict[str, Any], now: Optional[int] = None) -> Dict[str, Any]:
    """Периодический пересчёт. Смена и доход выводятся из меток времени, мутирует только исследование."""
    return apply_research_completion(state, now)


def apply_action(state: Dict[str, Any], action: Any, params: Optional[Dict[str, Any]] = None, now: Optional[int] = None) -> Dict[str, Any]:
    now = now_ms() if now is None else now
    params = params or {}
    state = apply_tick(state, now)

    if action == "start_shift":
        return apply_start_shift(state, now)
    if action == "claim_salary":
        return apply_claim_salary(state, now)
    if action == "start_research":
        return apply_start_research(state, params.get("type"), now)
    if action == "purchase_item":
        return apply_purchase_item(state, params.get("item_id"))
    if action == "purchase_partnership":
        return apply_purchase_partnership(state, params.get("partnership_id"), now)
    if action == "join_production":
        return apply_join_production(state, params.get("production_id"))
    if action == "claim_passive_income":
        return apply_claim_passive_income(state, now)
    if action == "claim_daily_reward":
        return apply_claim_daily_reward(state, now)
    raise UnknownActionError(f"unknown action: {action!r}")


def get_view(state: Dict[str, Any], now: Optional[int] = None) -> Dict[str, Any]:
    """Снапшот + производные поля для клиента (не сохраняются)."""
    now = now_ms() if now is None else now
    view = state_to_snapshot(state)
    unclaimed = get_unclaimed_income(state, now)
    view.update({
        "now": now,
        "shiftStatus": get_shift_status(state, now),
        "shiftRemainingMs": get_shift_remaining_ms(state, now),
        "researchRemainingMs": get_research_remaining_ms(state, now),
        "unclaimedIncome": unclaimed,
        "claimableIncome": math.floor(unclaimed),
        "totalDailyIncome": total_daily_income(state),
        "xpForNextLevel": get_xp_for_next_level(state["level"]),
        "salaryPreview": compute_salary(state),
        "xpPreview": compute_shift_xp(state),
        "dailyReward": get_daily_reward_status(state, now),
        "nextResearch": {t: get_next_research(state, t) for t in RESEARCH_TYPES},
    })
    return view
