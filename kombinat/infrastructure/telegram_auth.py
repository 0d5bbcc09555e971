"""
Идентификация игрока по Telegram Web App initData.
Проверка подписи: secret = HMAC_SHA256("WebAppData", bot_token),
hash = HMAC_SHA256(secret, data_check_string), где data_check_string — отсортированные
пары key=value без hash, через перевод строки.
"""
import hashlib
import hmac
import json
import time
from typing import Dict, Optional
from urllib.parse import parse_qsl

from pydantic import BaseModel


class IdentityError(Exception):
    pass


class TelegramUser(BaseModel):
    id: int
    first_name: str = ""
    last_name: Optional[str] = None
    username: Optional[str] = None
    photo_url: Optional[str] = None
    auth_date: Optional[int] = None

    def profile(self) -> Dict[str, str]:
        return {
            "username": self.username or "",
            "first_name": self.first_name or "",
            "photo_url": self.photo_url or "",
        }


def validate_init_data(init_data: str, bot_token: str) -> Dict[str, str]:
    """Возвращает поля initData (user: JSON-строка) или бросает IdentityError."""
    if not bot_token or not init_data or not init_data.strip():
        raise IdentityError("missing token or init_data")
    received_hash = None
    data_dict: Dict[str, str] = {}
    for k, v in parse_qsl(init_data.strip(), keep_blank_values=True):
        if k == "hash":
            received_hash = v
            continue
        data_dict[k] = v
    if not received_hash:
        raise IdentityError("hash not found")
    data_check_string = "\n".join(f"{k}={data_dict[k]}" for k in sorted(data_dict.keys()))
    secret_key = hmac.new(b"WebAppData", bot_token.encode(), hashlib.sha256).digest()
    computed = hmac.new(secret_key, data_check_string.encode(), hashlib.sha256).hexdigest()
    if not hmac.compare_digest(computed, received_hash):
        raise IdentityError("invalid signature")
    return data_dict


def user_from_init_data(
    init_data: str,
    bot_token: str,
    max_age_sec: int = 0,
    now: Optional[float] = None,
) -> TelegramUser:
    parsed = validate_init_data(init_data, bot_token)
    user_str = parsed.get("user")
    if not user_str:
        raise IdentityError("user not found")
    try:
        user = json.loads(user_str)
    except json.JSONDecodeError:
        raise IdentityError("user is not JSON")
    if not isinstance(user, dict) or user.get("id") is None:
        raise IdentityError("user id missing")
    auth_date = parsed.get("auth_date")
    if auth_date is not None and auth_date.isdigit():
        user["auth_date"] = int(auth_date)
    if max_age_sec > 0:
        if user.get("auth_date") is None:
            raise IdentityError("auth_date missing")
        current = time.time() if now is None else now
        if current - user["auth_date"] > max_age_sec:
            raise IdentityError("init_data expired")
    try:
        return TelegramUser(**{k: user[k] for k in TelegramUser.model_fields if k in user})
    except ValueError as e:
        raise IdentityError(f"bad user payload: {e}")
