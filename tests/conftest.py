import os
from datetime import datetime, timedelta
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

# Test settings; must be set before gomi_credits.core.config is first used
os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017")
os.environ.setdefault("MONGODB_DB_NAME", "gomi_credits_test")
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("BILLING_WEBHOOK_SECRET", "test-webhook-secret")

START = datetime(2026, 1, 10, 9, 0, 0)


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def frozen_clock(monkeypatch) -> FrozenClock:
    from gomi_credits.core import clock
    fc = FrozenClock(START)
    monkeypatch.setattr(clock, "utcnow", fc)
    return fc


@pytest_asyncio.fixture
async def db(frozen_clock):
    """Fresh in-memory database per test."""
    from gomi_credits.db.init import init_db
    await init_db(client=AsyncMongoMockClient())
    yield


@pytest_asyncio.fixture
async def make_user(db):
    """Factory: insert a user with the given credit pools and anti-abuse state."""
    from gomi_credits.models.user import User

    counter = {"n": 0}

    async def _make(
        trial: int = 0,
        monthly: int = 0,
        purchase: int = 0,
        tier: str = "FREE",
        phone_verified: bool = True,
        **antifraud,
    ) -> User:
        counter["n"] += 1
        n = counter["n"]
        user = User(firebase_uid=f"uid-{n}", email=f"user{n}@example.com", display_name=f"User {n}")
        user.credits.trial.amount = trial
        if trial:
            user.credits.trial.granted_at = START
            user.credits.trial.expires_at = START + timedelta(days=14)
        user.credits.monthly.amount = monthly
        user.credits.monthly.subscription_tier = tier
        user.credits.purchase.amount = purchase
        user.credits.purchase.total_purchased = purchase
        user.credits.recompute_total()
        user.antifraud.phone_verified = phone_verified
        if phone_verified:
            user.antifraud.phone_number = f"+8190000000{n:02d}"
        for key, value in antifraud.items():
            setattr(user.antifraud, key, value)
        await user.insert()
        return user

    return _make


@pytest_asyncio.fixture
async def client(db) -> AsyncGenerator[AsyncClient, None]:
    from gomi_credits.main import app
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def login(client: AsyncClient):
    """Attach a valid session cookie for a user to the test client."""
    from gomi_credits.core.security import create_session_cookie
    from gomi_credits.deps import SESSION_COOKIE_NAME
    from gomi_credits.services.users import session_payload_for_user

    def _login(user) -> None:
        client.cookies.set(SESSION_COOKIE_NAME, create_session_cookie(session_payload_for_user(user)))

    return _login
