import json
import os
from pathlib import Path
from typing import Any, Dict, List

from dotenv import load_dotenv

load_dotenv()


def _env(key: str, default: str = "") -> str:
    return os.environ.get(key, default)


def _env_bool(key: str, default: bool = False) -> bool:
    raw = _env(key, "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


# ——— Master config (game.shift, game.research, каталоги) ———
_CONFIG_DIR = Path(__file__).resolve().parent
_DEFAULT_GAME_CONFIG_PATH = _CONFIG_DIR / "data" / "game_config.json"


def _load_game_config() -> Dict[str, Any]:
    path_str = _env("GAME_CONFIG_PATH", "").strip()
    path = Path(path_str) if path_str else _DEFAULT_GAME_CONFIG_PATH
    if path.exists():
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    return {"game": {}}


GAME_CONFIG = _load_game_config()


def get_shift_config() -> Dict[str, Any]:
    return GAME_CONFIG.get("game", {}).get("shift") or {
        "durationMs": 8 * 60 * 60 * 1000,
        "salaryAmount": 100,
        "xpPerShift": 100,
    }


def get_research_config() -> Dict[str, Any]:
    return GAME_CONFIG.get("game", {}).get("research") or {
        "maxLevel": 10,
        "bonusPerLevel": 0.05,
        "baseCost": 500,
        "costGrowth": 2.5,
        "baseDurationMs": 24 * 60 * 60 * 1000,
        "durationGrowth": 1.5,
    }


def get_daily_rewards_config() -> List[int]:
    return GAME_CONFIG.get("game", {}).get("dailyRewards") or [50, 75, 100, 125, 150, 200, 300]


def get_inventory_items_config() -> List[Dict[str, Any]]:
    return GAME_CONFIG.get("game", {}).get("inventoryItems") or []


def get_partnerships_config() -> List[Dict[str, Any]]:
    return GAME_CONFIG.get("game", {}).get("partnerships") or []


def get_productions_config() -> List[Dict[str, Any]]:
    return GAME_CONFIG.get("game", {}).get("productions") or []


DATABASE_URL = _env("DATABASE_URL", "postgresql://localhost/kombinat")
REDIS_URL = _env("REDIS_URL", "redis://localhost:6379/0")
# postgres: asyncpg + redis; memory: только процесс (dev, тесты)
STATE_BACKEND = _env("STATE_BACKEND", "postgres").strip().lower()
STATE_CACHE_TTL_SEC = int(_env("STATE_CACHE_TTL_SEC", "300"))
# Сколько секунд тишины ждать перед записью снапшота
SAVE_DEBOUNCE_SEC = float(_env("SAVE_DEBOUNCE_SEC", "1.0"))
# Период фонового пересчёта смен/исследований
TICK_INTERVAL_SEC = float(_env("TICK_INTERVAL_SEC", "1.0"))
# Сессия без обращений дольше этого выгружается из памяти (после успешной записи)
SESSION_IDLE_TTL_SEC = float(_env("SESSION_IDLE_TTL_SEC", "900"))
# Telegram bot (проверка подписи initData)
BOT_TOKEN = _env("BOT_TOKEN", "")
INIT_DATA_MAX_AGE_SEC = int(_env("INIT_DATA_MAX_AGE_SEC", "0"))
# Разработка в браузере без Telegram: доверять X-Telegram-User-Id
ALLOW_DEV_USER_HEADER = _env_bool("ALLOW_DEV_USER_HEADER", False)
# IANA-зона для календарных дней ежедневной награды; пусто: локальная зона хоста
GAME_TIMEZONE = _env("GAME_TIMEZONE", "").strip()
CORS_ORIGINS_EXTRA = [o.strip() for o in _env("CORS_ORIGINS_EXTRA", "").split(",") if o.strip()]
