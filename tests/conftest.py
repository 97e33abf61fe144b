import os
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SECRET_KEY", "test-secret")
import uuid

import httpx
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, create_engine

from client.session import Session as ClientSession
from client.settings import Settings
from db import get_session
from main import app

PASSWORD = "secret-pass"


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    SQLModel.metadata.create_all(engine)

    def override_get_session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    yield engine
    app.dependency_overrides.clear()
    engine.dispose()


@pytest.fixture
def client(engine):
    with TestClient(app) as c:
        yield c


def register(client, role="user", name=None):
    """Register a fresh account; the client is left signed in as it."""
    email = f"{role}-{uuid.uuid4().hex[:8]}@example.com"
    resp = client.post(
        "/api/auth/register",
        json={"email": email, "name": name or role.title(), "password": PASSWORD, "role": role},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def act_as(client, user):
    client.cookies.clear()
    resp = client.post("/api/auth/login", json={"email": user["email"], "password": PASSWORD})
    assert resp.status_code == 200, resp.text
    return user


def action(client, path, verb, /, **fields):
    """POST an action envelope; fields may include name, path or client."""
    return client.post(f"/api/{path}", json={"action": verb, **fields})


def make_settings(**overrides):
    values = {
        "api_url": "http://testserver/api",
        "retry_backoff": 0,
        "settle_delay": 60,
        "poll_interval": 60,
    }
    values.update(overrides)
    return Settings(**values)


@pytest_asyncio.fixture
async def open_session(engine):
    """Factory for client sessions talking to the app in-process."""
    opened = []

    async def _open(role="user", name=None, **overrides):
        http = httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app),
            base_url="http://testserver",
        )
        session = ClientSession(make_settings(**overrides), http=http)
        opened.append((session, http))
        await session.register(
            name or f"{role.title()} {len(opened)}",
            f"{role}-{uuid.uuid4().hex[:8]}@example.com",
            PASSWORD,
            role=role,
        )
        return session

    yield _open
    for session, http in opened:
        await session.close()
        await http.aclose()
