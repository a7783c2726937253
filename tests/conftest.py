"""
Shared fixtures.

The app is pointed at a throw-away SQLite file before anything imports the
engine, tables are rebuilt for every test, and the chat model is replaced by
a langchain fake so no request ever leaves the process.
"""
import os
import tempfile
from pathlib import Path

_TMP = Path(tempfile.mkdtemp(prefix="expenses-tests-"))
os.environ["ASYNC_DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP / 'test.db'}"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["LOG_FILE"] = str(_TMP / "logs.json")

import pytest
from httpx import ASGITransport, AsyncClient
from langchain_core.language_models.fake_chat_models import FakeListChatModel

import db.models  # noqa: F401
from db.database import AsyncSessionLocal, Base, async_engine
from main import app
from services.chat_model import get_chat_model


@pytest.fixture(autouse=True)
async def reset_db():
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield


@pytest.fixture
async def client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def session():
    async with AsyncSessionLocal() as s:
        yield s


@pytest.fixture
def llm_replies():
    """Install a fake chat model answering with the given replies, in order."""

    def install(*replies: str) -> FakeListChatModel:
        model = FakeListChatModel(responses=list(replies))
        app.dependency_overrides[get_chat_model] = lambda: model
        return model

    yield install
    app.dependency_overrides.pop(get_chat_model, None)


async def signup(client: AsyncClient, email: str = "alice@mail.com", password: str = "secret123") -> dict:
    res = await client.post("/auth/signup", json={"name": "Alice", "email": email, "password": password})
    assert res.status_code == 201, res.text
    # tests pass the token explicitly, the cookie would leak between users
    client.cookies.clear()
    return {"Authorization": f"Bearer {res.json()['access_token']}"}


@pytest.fixture
async def auth(client):
    return await signup(client)


async def create_book(client, headers, name="Household", currency="USD") -> dict:
    res = await client.post("/books", json={"name": name, "currency": currency}, headers=headers)
    assert res.status_code == 201, res.text
    return res.json()


async def create_category(client, headers, book_id, name="Groceries") -> str:
    res = await client.post(
        "/categories", json={"name": name, "book_ids": [book_id]}, headers=headers
    )
    assert res.status_code == 201, res.text
    return res.json()["categories"][0]


async def create_expense(client, headers, category_id, amount=25.0, spent_on="2024-05-01", **extra) -> dict:
    body = {"amount": amount, "date": spent_on, "category_id": category_id, **extra}
    res = await client.post("/expenses", json=body, headers=headers)
    assert res.status_code == 201, res.text
    return res.json()
