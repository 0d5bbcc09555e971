import json
import logging
from typing import Any, Dict, Optional

import asyncpg

from kombinat.config import DATABASE_URL

logger = logging.getLogger(__name__)

_pool: Optional[asyncpg.Pool] = None


async def get_pool() -> asyncpg.Pool:
    global _pool
    if _pool is None:
        _pool = await asyncpg.create_pool(DATABASE_URL, min_size=1, max_size=10, command_timeout=60)
    return _pool


async def init_db() -> None:
    pool = await get_pool()
    async with pool.acquire() as conn:
        # game_players: один снапшот прогресса (JSONB) на telegram_id
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS game_players (
                telegram_id BIGINT PRIMARY KEY,
                username TEXT,
                first_name TEXT,
                photo_url TEXT,
                state JSONB NOT NULL DEFAULT '{}',
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_game_players_updated
            ON game_players(updated_at)
        """)
        # Подстройка под старую схему без аватара
        await conn.execute("ALTER TABLE game_players ADD COLUMN IF NOT EXISTS photo_url TEXT")
    logger.info("init_db: schema ready")


async def close_db() -> None:
    global _pool
    if _pool:
        await _pool.close()
        _pool = None


def _row_to_state(row: Any) -> Any:
    """state из JSONB: asyncpg отдаёт str, но старые записи бывают и dict. Остальное отдаём как есть на санитизацию."""
    raw = row["state"]
    if raw is None:
        return None
    if isinstance(raw, str):
        try:
            return json.loads(raw) if raw else {}
        except json.JSONDecodeError as e:
            logger.warning("game_players.state is not valid JSON: %s", e)
            return None
    return raw


async def get_state(telegram_id: int) -> Optional[Any]:
    pool = await get_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            "SELECT state FROM game_players WHERE telegram_id = $1",
            telegram_id,
        )
        if row is None:
            return None
        return _row_to_state(row)


async def set_state(
    telegram_id: int,
    state: Dict[str, Any],
    username: str = "",
    first_name: str = "",
    photo_url: str = "",
) -> None:
    pool = await get_pool()
    async with pool.acquire() as conn:
        await conn.execute(
            """
            INSERT INTO game_players (telegram_id, username, first_name, photo_url, state, updated_at)
            VALUES ($1, $2, $3, $4, $5, NOW())
            ON CONFLICT (telegram_id) DO UPDATE SET
                username = COALESCE(EXCLUDED.username, game_players.username),
                first_name = COALESCE(EXCLUDED.first_name, game_players.first_name),
                photo_url = COALESCE(EXCLUDED.photo_url, game_players.photo_url),
                state = EXCLUDED.state,
                updated_at = NOW()
            """,
            telegram_id,
            username or None,
            first_name or None,
            photo_url or None,
            json.dumps(state, ensure_ascii=False),
        )
