import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Header, HTTPException, Request

from kombinat.config import ALLOW_DEV_USER_HEADER, BOT_TOKEN, INIT_DATA_MAX_AGE_SEC
from kombinat.core.economy import public_tables
from kombinat.core.game_engine import UnknownActionError
from kombinat.core.session import SessionRegistry
from kombinat.infrastructure.telegram_auth import IdentityError, TelegramUser, user_from_init_data

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/game", tags=["game"])


def _resolve_user(
    x_telegram_init_data: Optional[str],
    x_telegram_user_id: Optional[str],
) -> TelegramUser:
    """Игрок по подписанному initData; голый X-Telegram-User-Id принимается только в dev-режиме."""
    if x_telegram_init_data:
        if not BOT_TOKEN:
            logger.warning("X-Telegram-Init-Data received but BOT_TOKEN is not configured")
            raise HTTPException(status_code=401, detail="unauthorized")
        try:
            return user_from_init_data(x_telegram_init_data, BOT_TOKEN, INIT_DATA_MAX_AGE_SEC)
        except IdentityError as e:
            logger.warning("init_data rejected: %s", e)
            raise HTTPException(status_code=401, detail="unauthorized")
    if ALLOW_DEV_USER_HEADER and x_telegram_user_id:
        try:
            return TelegramUser(id=int(x_telegram_user_id), first_name="Browser Dev", username="browser_dev")
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid user id")
    raise HTTPException(status_code=401, detail="X-Telegram-Init-Data required")


def _registry(request: Request) -> SessionRegistry:
    return request.app.state.registry


@router.get("/config")
async def game_config():
    return public_tables()


@router.get("/state")
async def game_get_state(
    request: Request,
    x_telegram_init_data: Optional[str] = Header(None, alias="X-Telegram-Init-Data"),
    x_telegram_user_id: Optional[str] = Header(None, alias="X-Telegram-User-Id"),
):
    user = _resolve_user(x_telegram_init_data, x_telegram_user_id)
    session = await _registry(request).get(user.id, user.profile())
    session.tick()
    return session.view()


@router.get("/profile")
async def game_get_profile(
    x_telegram_init_data: Optional[str] = Header(None, alias="X-Telegram-Init-Data"),
    x_telegram_user_id: Optional[str] = Header(None, alias="X-Telegram-User-Id"),
):
    user = _resolve_user(x_telegram_init_data, x_telegram_user_id)
    return {
        "id": user.id,
        "first_name": user.first_name,
        "username": user.username,
        "photo_url": user.photo_url,
    }


@router.post("/action")
async def game_action(
    request: Request,
    body: Dict[str, Any],
    x_telegram_init_data: Optional[str] = Header(None, alias="X-Telegram-Init-Data"),
    x_telegram_user_id: Optional[str] = Header(None, alias="X-Telegram-User-Id"),
):
    user = _resolve_user(x_telegram_init_data, x_telegram_user_id)
    action = body.get("action")
    params = body.get("params") or {}
    if not isinstance(action, str) or not action:
        raise HTTPException(status_code=400, detail="action required")
    if not isinstance(params, dict):
        raise HTTPException(status_code=400, detail="params must be an object")

    session = await _registry(request).get(user.id, user.profile())
    try:
        changed, view = session.act(action, params)
    except UnknownActionError:
        raise HTTPException(status_code=400, detail=f"Unknown action: {action}")
    if changed:
        logger.info("action %s by %s applied", action, user.id)
    return {"ok": True, "changed": changed, "state": view}
