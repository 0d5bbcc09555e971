"""
Общие фикстуры: окружение без БД/Redis, фиксированное время, клиент к API.
"""
import os
from datetime import datetime, timezone

# до импорта kombinat: config читает окружение один раз
os.environ["STATE_BACKEND"] = "memory"
os.environ["ALLOW_DEV_USER_HEADER"] = "true"
os.environ["GAME_TIMEZONE"] = "UTC"
os.environ["BOT_TOKEN"] = "123456:TEST-BOT-TOKEN"
os.environ["SAVE_DEBOUNCE_SEC"] = "0.05"
os.environ["TICK_INTERVAL_SEC"] = "0.05"
os.environ.pop("GAME_CONFIG_PATH", None)

import pytest

from kombinat.core.snapshot import get_default_state

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS
# 2024-03-10 12:00 UTC
T0 = int(datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc).timestamp() * 1000)


class FakeClock:
    def __init__(self, start: int = T0):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def t0():
    return T0


@pytest.fixture
def fresh_state():
    return get_default_state()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def game_client():
    """TestClient с lifespan: реестр сессий и память вместо Postgres."""
    from fastapi.testclient import TestClient
    from kombinat.api.main import app

    with TestClient(app) as client:
        yield client


@pytest.fixture
def dev_headers():
    return {"X-Telegram-User-Id": "999001"}
