import hashlib
import hmac
import json
from urllib.parse import urlencode

import pytest

from kombinat.infrastructure.telegram_auth import IdentityError, user_from_init_data, validate_init_data

BOT_TOKEN = "123456:TEST-BOT-TOKEN"


def sign_init_data(fields: dict, bot_token: str = BOT_TOKEN) -> str:
    """Собирает initData так же, как Telegram Web App."""
    data_check_string = "\n".join(f"{k}={fields[k]}" for k in sorted(fields))
    secret_key = hmac.new(b"WebAppData", bot_token.encode(), hashlib.sha256).digest()
    signature = hmac.new(secret_key, data_check_string.encode(), hashlib.sha256).hexdigest()
    return urlencode({**fields, "hash": signature})


def _user_fields(user_id=987654321, auth_date=1700000000, **extra):
    user = {"id": user_id, "first_name": "Пётр", "username": "petr_s", **extra}
    return {"auth_date": str(auth_date), "query_id": "AAH", "user": json.dumps(user, ensure_ascii=False)}


def test_valid_init_data():
    init_data = sign_init_data(_user_fields(photo_url="https://t.me/i/userpic/320/x.jpg"))
    user = user_from_init_data(init_data, BOT_TOKEN)
    assert user.id == 987654321
    assert user.first_name == "Пётр"
    assert user.username == "petr_s"
    assert user.auth_date == 1700000000
    assert user.profile() == {
        "username": "petr_s",
        "first_name": "Пётр",
        "photo_url": "https://t.me/i/userpic/320/x.jpg",
    }


def test_wrong_bot_token_rejected():
    init_data = sign_init_data(_user_fields(), bot_token="other:TOKEN")
    with pytest.raises(IdentityError):
        validate_init_data(init_data, BOT_TOKEN)


def test_tampered_field_rejected():
    init_data = sign_init_data(_user_fields()).replace("AAH", "AAX")
    with pytest.raises(IdentityError):
        user_from_init_data(init_data, BOT_TOKEN)


@pytest.mark.parametrize("init_data", ["", "   ", "invalid=data", "invalid=data&hash=wrong"])
def test_garbage_rejected(init_data):
    with pytest.raises(IdentityError):
        user_from_init_data(init_data, BOT_TOKEN)


def test_missing_user_rejected():
    init_data = sign_init_data({"auth_date": "1700000000"})
    with pytest.raises(IdentityError):
        user_from_init_data(init_data, BOT_TOKEN)


def test_expired_init_data():
    init_data = sign_init_data(_user_fields(auth_date=1700000000))
    assert user_from_init_data(init_data, BOT_TOKEN, max_age_sec=3600, now=1700000100).id == 987654321
    with pytest.raises(IdentityError):
        user_from_init_data(init_data, BOT_TOKEN, max_age_sec=3600, now=1700007201)
