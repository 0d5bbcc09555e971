"""
Экономические таблицы: кривая уровней, стоимость и длительность исследований,
график ежедневной награды и справочники (инвентарь, партнёрства, производства).
Состояния нет — только функции и константы из game_config.json.
"""
import math
from typing import Any, Dict, List, Optional, Union

from kombinat.config import (
    get_daily_rewards_config,
    get_inventory_items_config,
    get_partnerships_config,
    get_productions_config,
    get_research_config,
    get_shift_config,
)

DAY_MS = 24 * 60 * 60 * 1000

_SHIFT = get_shift_config()
SHIFT_DURATION_MS = int(_SHIFT.get("durationMs", 8 * 60 * 60 * 1000))
SALARY_AMOUNT = int(_SHIFT.get("salaryAmount", 100))
XP_PER_SHIFT = int(_SHIFT.get("xpPerShift", 100))

_RESEARCH = get_research_config()
MAX_RESEARCH_LEVEL = int(_RESEARCH.get("maxLevel", 10))
RESEARCH_BONUS_PER_LEVEL = float(_RESEARCH.get("bonusPerLevel", 0.05))
BASE_RESEARCH_COST = int(_RESEARCH.get("baseCost", 500))
RESEARCH_COST_GROWTH = float(_RESEARCH.get("costGrowth", 2.5))
BASE_RESEARCH_DURATION_MS = int(_RESEARCH.get("baseDurationMs", DAY_MS))
RESEARCH_DURATION_GROWTH = float(_RESEARCH.get("durationGrowth", 1.5))

RESEARCH_ECONOMIC = "economic"
RESEARCH_TRAINING = "training"
RESEARCH_TYPES = (RESEARCH_ECONOMIC, RESEARCH_TRAINING)

DAILY_REWARD_AMOUNTS: List[int] = [int(x) for x in get_daily_rewards_config()]

INVENTORY_ITEMS: List[Dict[str, Any]] = list(get_inventory_items_config())
PARTNERSHIPS: List[Dict[str, Any]] = list(get_partnerships_config())
PRODUCTIONS: List[Dict[str, Any]] = list(get_productions_config())

_ITEMS_BY_ID = {item["id"]: item for item in INVENTORY_ITEMS}
_PARTNERSHIPS_BY_ID = {p["id"]: p for p in PARTNERSHIPS}
_PRODUCTIONS_BY_ID = {p["id"]: p for p in PRODUCTIONS}


def get_xp_for_next_level(level: int) -> int:
    return math.floor(100 * math.pow(level, 1.5))


def get_research_cost(level: int) -> Union[int, float]:
    """Стоимость достижения уровня level (1-based). Выше максимума: бесконечность."""
    if level > MAX_RESEARCH_LEVEL:
        return math.inf
    return math.floor(BASE_RESEARCH_COST * math.pow(RESEARCH_COST_GROWTH, level - 1))


def get_research_duration_ms(level: int) -> Union[int, float]:
    """Каждый следующий уровень идёт в 1.5 раза дольше предыдущего."""
    if level > MAX_RESEARCH_LEVEL:
        return math.inf
    return math.floor(BASE_RESEARCH_DURATION_MS * math.pow(RESEARCH_DURATION_GROWTH, level - 1))


def get_daily_reward_amount(streak: int) -> int:
    # streak 1-based; дальше графика берём последнюю (максимальную) награду
    index = max(0, streak - 1)
    if index >= len(DAILY_REWARD_AMOUNTS):
        return DAILY_REWARD_AMOUNTS[-1]
    return DAILY_REWARD_AMOUNTS[index]


def get_inventory_item(item_id: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(item_id, str):
        return None
    return _ITEMS_BY_ID.get(item_id)


def get_partnership(partnership_id: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(partnership_id, str):
        return None
    return _PARTNERSHIPS_BY_ID.get(partnership_id)


def get_production(production_id: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(production_id, str):
        return None
    return _PRODUCTIONS_BY_ID.get(production_id)


def public_tables() -> Dict[str, Any]:
    """Справочники и константы для клиента (GET /api/game/config)."""
    return {
        "shift": {
            "durationMs": SHIFT_DURATION_MS,
            "salaryAmount": SALARY_AMOUNT,
            "xpPerShift": XP_PER_SHIFT,
        },
        "research": {
            "types": list(RESEARCH_TYPES),
            "maxLevel": MAX_RESEARCH_LEVEL,
            "bonusPerLevel": RESEARCH_BONUS_PER_LEVEL,
            "levels": [
                {
                    "level": n,
                    "cost": get_research_cost(n),
                    "durationMs": get_research_duration_ms(n),
                }
                for n in range(1, MAX_RESEARCH_LEVEL + 1)
            ],
        },
        "dailyRewards": list(DAILY_REWARD_AMOUNTS),
        "inventoryItems": [dict(i) for i in INVENTORY_ITEMS],
        "partnerships": [dict(p) for p in PARTNERSHIPS],
        "productions": [dict(p) for p in PRODUCTIONS],
    }
