"""
Shared fixtures: a throwaway SQLite database, an HTTP client bound to the app,
an authenticated user and a scripted stand-in for the LLM service.
"""

import os
import tempfile
from pathlib import Path

_DB_PATH = Path(tempfile.gettempdir()) / f"adspirer_test_{os.getpid()}.db"

# Must be set before adspirer.config is imported anywhere
os.environ["ENVIRONMENT"] = "development"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_PATH}"
os.environ["SECRET_KEY"] = "test-secret-key-not-for-production"
os.environ["ENCRYPTION_KEY"] = ""
os.environ["OPENAI_API_KEY"] = ""
os.environ["ANTHROPIC_API_KEY"] = ""
os.environ["FIRST_ADMIN_EMAIL"] = ""

import json

import pytest
from httpx import AsyncClient, ASGITransport

from adspirer.database import Base, engine, async_session
from adspirer.main import app
from adspirer.routers.chat import get_optional_ai_service


class FakeAI:
    """Scripted replacement for AIService. Set `error` to make every call raise it."""

    model_id = "openai:test-model"

    def __init__(self):
        self.reply = "Your best campaign is Summer Sale."
        self.chunks = ["Your best ", "campaign is ", "Summer Sale."]
        self.welcome = "Welcome to Adspirer! Ask me about your campaigns."
        self.filters = {}
        self.answer = "Campaign Summer Sale had a ROAS of 4.0."
        self.error = None
        self.histories = []
        self.contexts = []

    def _maybe_fail(self):
        if self.error is not None:
            raise self.error

    async def generate_welcome_message(self, user_context=None):
        self._maybe_fail()
        return self.welcome

    async def chat(self, history, system_prompt=None):
        self.histories.append(history)
        self._maybe_fail()
        return self.reply

    async def stream_chat(self, history, system_prompt=None):
        self.histories.append(history)
        self._maybe_fail()
        for chunk in self.chunks:
            yield chunk

    async def understand_query(self, query, extracted):
        self._maybe_fail()
        return self.filters

    async def answer_with_context(self, context):
        self.contexts.append(context)
        self._maybe_fail()
        return self.answer

    async def stream_answer_with_context(self, context):
        self.contexts.append(context)
        self._maybe_fail()
        for chunk in self.answer.split(" "):
            yield chunk + " "


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def database():
    """Fresh schema per test."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


@pytest.fixture
async def session(database):
    async with async_session() as db:
        yield db


@pytest.fixture
def fake_ai():
    return FakeAI()


@pytest.fixture
async def client(database, fake_ai):
    app.dependency_overrides[get_optional_ai_service] = lambda: fake_ai
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


async def register(client, email="owner@example.com", password="secret123", name="Owner"):
    response = await client.post("/api/auth/register", json={"email": email, "password": password, "name": name})
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture
async def user(client):
    """Registered user: {"id", "email", "token", "headers"}."""
    data = await register(client)
    return {
        "id": data["user"]["id"],
        "email": data["user"]["email"],
        "token": data["access_token"],
        "headers": {"Authorization": f"Bearer {data['access_token']}"},
    }


@pytest.fixture
def auth_headers(user):
    return user["headers"]


def parse_sse(body: str) -> list:
    """Decode an SSE body into payloads; the [DONE] / [ERROR] sentinels stay strings."""
    events = []
    for line in body.splitlines():
        if not line.startswith("data: "):
            continue
        data = line[len("data: "):]
        events.append(data if data in ("[DONE]", "[ERROR]") else json.loads(data))
    return events
