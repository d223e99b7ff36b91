"""
tests/conftest.py -- Shared test fixtures for splkit unit and integration tests.

This module provides:
  - db / store / vault / users: a fresh file-backed SQLite Database with the
    auth schema, plus the objects built on it, for unit tests
  - create_account(): inserts an account through Users.user_add()
  - api_client: TestClient with a patched lifespan wired to an isolated DB
  - admin_client: api_client already logged in as an admin

Design: file-backed SQLite in tmp_path (not :memory:) because TestClient
runs sync route handlers in a thread pool and each pooled connection must
see the same schema.

The DEBUG env var must be set before any core/auth import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from unittest.mock import MagicMock

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.store import UserStore
from auth.users import Users
from core.config import Settings, get_settings
from db.database import Database
from security.vault import Vault

TEST_KEY = "0123456789qwertyuiopasdfghjkl;zx"  # 32 chars
TEST_IV = "000102030405060708090a0b0c0d0e0f"

STRONG_PASSWORD = "Secret123"


# ---------------------------------------------------------------------------
# Side channels
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _isolate(monkeypatch: pytest.MonkeyPatch) -> Generator[MagicMock, None, None]:
    """Never open SMTP connections; start each test with fresh rate limits."""
    mailer = MagicMock()
    monkeypatch.setattr("core.debuglog.send_mail", mailer)
    limiter.reset()
    yield mailer


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
def db(tmp_path) -> Generator[Database, None, None]:
    database = Database.init({"type": "sqlite", "db": str(tmp_path / "splkit_test.db")}, new=True)
    UserStore.create_schema(database)
    yield database
    database.dispose()


@pytest.fixture
def vault() -> Vault:
    return Vault(TEST_KEY, TEST_IV)


@pytest.fixture
def store() -> UserStore:
    return UserStore()


@pytest.fixture
def users(db: Database, store: UserStore, vault: Vault, settings: Settings) -> Users:
    return Users(db, store, vault, settings)


def _create_account(
    users: Users,
    username: str,
    password: str = STRONG_PASSWORD,
    email: str | None = None,
    role: str = "member",
    active: int = 1,
) -> int:
    """Insert an account and return its user_id."""
    ok = users.user_add(
        {
            "username": username,
            "passwd": password,
            "email": email or f"{username}@mail.com",
            "role": role,
            "active": active,
        }
    )
    assert ok, users.get_errors()
    return users.db.insert_id()


@pytest.fixture
def create_account():
    """Factory: create_account(users, username, password=..., email=None, role="member", active=1) -> user_id."""
    return _create_account


# ---------------------------------------------------------------------------
# Integration fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(db: Database, vault: Vault):
    """Return an async context manager that replaces the real lifespan."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.db = db
        app.state.user_store = UserStore()
        app.state.vault = vault
        yield

    return test_lifespan


@pytest.fixture
def api_client(db: Database, vault: Vault) -> Generator[TestClient, None, None]:
    """TestClient on the real app with an isolated database."""
    app.router.lifespan_context = _patch_lifespan(db, vault)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client


@pytest.fixture
def admin_client(api_client: TestClient, users: Users) -> tuple[TestClient, int]:
    """Yield (client, admin_user_id) with the client logged in as admin."""
    uid = _create_account(users, "testadmin", role="admin")
    resp = api_client.post("/api/v1/auth/login", json={"username": "testadmin", "password": STRONG_PASSWORD})
    assert resp.status_code == 200, resp.text
    return api_client, uid
