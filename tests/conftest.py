# tests/conftest.py
import os
from datetime import datetime
from typing import AsyncGenerator, Dict, List

# Settings are read at import time by several modules.
os.environ.update({
    "LOG_LEVEL": "DEBUG",
    "MONGO_DB_NAME": "lhamascred_test",
    "JWT_SECRET_KEY": "test-secret-key",
    "ADMIN_API_KEY": "test-admin-key",
    "WEBHOOK_SECRET": "",
    "WEBHOOK_PUBLIC_URL": "https://testserver/api/webhook/balance",
    "V8_AUTH_URL": "https://v8.test/oauth/token",
    "V8_API_URL": "https://v8.test",
    "FACTA_API_URL": "https://facta.test",
    "C6_AUTH_URL": "https://c6.test/auth/token",
    "C6_API_URL": "https://c6.test",
})

import pytest
import pytest_asyncio
from bson import ObjectId
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

from lhamascred.core.database import Database
from lhamascred.auth.service import AuthService

PROVIDER_CREDENTIALS = {
    "v8_username": "v8-user",
    "v8_password": "v8-pass",
    "v8_audience": "https://bff.v8sistema.com",
    "v8_client_id": "client-123",
    "facta_username": "facta-user",
    "facta_password": "facta-pass",
    "c6_username": "c6-user",
    "c6_password": "c6-pass",
}


@pytest_asyncio.fixture(scope="function", autouse=True)
async def db() -> AsyncGenerator:
    client = AsyncMongoMockClient()
    Database.client = client
    Database.db = client["lhamascred_test"]
    await Database.create_indexes()
    yield Database.db
    Database.client = None
    Database.db = None


@pytest.fixture
def sent_tasks(monkeypatch) -> List[tuple]:
    """Replaces the Celery app used by the batch endpoints; records send_task calls."""
    calls: List[tuple] = []

    class FakeCelery:
        def send_task(self, name, args=None, queue=None):
            calls.append((name, tuple(args or ()), queue))

    monkeypatch.setattr("lhamascred.batches.views._get_celery", lambda: (FakeCelery(), "default"))
    return calls


async def _insert_user(
    email: str,
    *,
    role: str = "user",
    status: str = "active",
    team_id=None,
    credentials=None,
) -> Dict:
    doc = {
        "_id": ObjectId(),
        "email": email,
        "password_hash": AuthService.hash_password("secret123"),
        "name": email.split("@")[0].title(),
        "role": role,
        "status": status,
        "team_id": team_id,
        "credentials": dict(PROVIDER_CREDENTIALS if credentials is None else credentials),
        "created_at": datetime.utcnow(),
    }
    await Database.get_collection("users").insert_one(doc)
    user = {"id": str(doc["_id"]), "email": email, "role": role, "team_id": team_id}
    user["token"] = AuthService.create_access_token(user["id"], email)
    user["headers"] = {"Authorization": f"Bearer {user['token']}"}
    return user


@pytest_asyncio.fixture
async def make_user():
    return _insert_user


@pytest_asyncio.fixture
async def user():
    return await _insert_user("ana@example.com", team_id="team-a")


@pytest_asyncio.fixture
async def admin():
    return await _insert_user("root@example.com", role="admin")


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    from lhamascred.main import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as client:
        yield client
