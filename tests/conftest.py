"""
tests/conftest.py -- Shared test fixtures for AgentPro integration tests.

This module provides:
  - RecordingMailer: captures outgoing email instead of sending it
  - make_settings(): Settings for tests (uploads under tmp_path, generous limits)
  - make_env(): isolated in-memory DB + seeded users + TestClient with a
    patched lifespan
  - env: function-scoped TestEnv for route tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process. Every
TestEnv gets a fresh name so tests never see each other's rows.

DEBUG and SEED_ADMIN_PASSWORD must be set before any auth/core import so
get_settings() auto-generates SECRET_KEY instead of raising ValueError.

Seeded users (all with password PASSWORD):
  admin    -- ADMIN, email = the seed admin email
  agent1   -- AGENT, owns client1 and client2
  agent2   -- AGENT, owns client3
  client1, client2, client3 -- CLIENTs
"""

from __future__ import annotations

import asyncio
import functools
import os
import uuid
from collections.abc import Generator, Iterator
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass, field
from email.message import EmailMessage

# CRITICAL: Set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SEED_ADMIN_PASSWORD", "Str0ng!Admin#Key")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.main import app, init_state
from auth.models import Role, User
from auth.store import UserStore
from auth.tokens import create_access_token, hash_password
from core.config import Settings, get_settings
from core.db import create_schema, make_engine
from core.mailer import Mailer

PASSWORD = "Passw0rd!"
_PASSWORD_HASH = hash_password(PASSWORD)

GENEROUS_LIMITS = {
    "api_rate_max_requests": 100_000,
    "auth_rate_max_requests": 100_000,
    "upload_rate_max_requests": 100_000,
    "logs_rate_max_requests": 100_000,
}


class RecordingMailer(Mailer):
    """Mailer that renders real templates but keeps messages in memory.

    sent holds the call arguments (template context included); messages holds
    the rendered EmailMessage objects.
    """

    def __init__(self) -> None:
        super().__init__("no-reply@test.local", "AgentPro Test")
        self.sent: list[dict] = []
        self.messages: list[EmailMessage] = []

    def send(self, to: str, subject: str, template_name: str, **context) -> bool:
        self.sent.append({"to": to, "subject": subject, "template": template_name, "context": context})
        return super().send(to, subject, template_name, **context)

    def deliver(self, message: EmailMessage) -> None:
        self.messages.append(message)

    def last_to(self, email: str) -> dict | None:
        matches = [m for m in self.sent if m["to"] == email]
        return matches[-1] if matches else None


def memory_engine(prefix: str = "agentpro") -> Engine:
    """Fresh named shared-memory SQLite engine with the full schema."""
    name = f"{prefix}_{uuid.uuid4().hex[:12]}"
    engine = make_engine(f"sqlite:///file:{name}?mode=memory&cache=shared&uri=true")
    create_schema(engine)
    return engine


def make_settings(tmp_path, **overrides) -> Settings:
    values = {"upload_dir": str(tmp_path / "uploads"), **GENEROUS_LIMITS, **overrides}
    return get_settings().model_copy(update=values)


@dataclass
class TestEnv:
    __test__ = False  # not a test class despite the name

    client: TestClient
    engine: Engine
    settings: Settings
    mailer: RecordingMailer
    users: dict[str, User] = field(default_factory=dict)

    @property
    def user_store(self) -> UserStore:
        return UserStore(self.engine)

    def id(self, name: str) -> str:
        return self.users[name].id

    def auth(self, name: str) -> dict[str, str]:
        """Bearer header for a seeded user."""
        user = self.users[name]
        token = create_access_token(user.id, user.email, user.role.value, expire_seconds=3600)
        return {"Authorization": f"Bearer {token}"}

    def create_folder(self, as_user: str, owner: str, name: str = "פוליסות", category: str = "INSURANCE") -> dict:
        resp = self.client.post(
            "/api/folders",
            headers=self.auth(as_user),
            json={"name": name, "category": category, "userId": self.id(owner)},
        )
        assert resp.status_code == 201, resp.text
        return resp.json()

    def upload(self, as_user: str, folder_id: str, name: str = "policy.pdf", data: bytes = b"%PDF-1.4 test") -> dict:
        resp = self.client.post(
            "/api/files",
            headers=self.auth(as_user),
            files={"file": (name, data, "application/pdf")},
            data={"folderId": folder_id, "notes": "uploaded in tests"},
        )
        assert resp.status_code == 201, resp.text
        return resp.json()


def _seed_users(store: UserStore, settings: Settings) -> dict[str, User]:
    def add(name: str, email: str, role: Role, agent: str | None = None, **extra) -> None:
        agent_id = users[agent].id if agent else None
        user_id = store.create_user(
            User(email=email, name=name, role=role, password_hash=_PASSWORD_HASH, agent_id=agent_id, **extra)
        )
        users[name] = store.get_by_id(user_id)

    users: dict[str, User] = {}
    add("admin", settings.seed_admin_email, Role.ADMIN)
    add("agent1", "agent1@example.com", Role.AGENT, phone="050-1111111")
    add("agent2", "agent2@example.com", Role.AGENT, phone="050-2222222")
    add("client1", "client1@example.com", Role.CLIENT, agent="agent1", id_number="111111111")
    add("client2", "client2@example.com", Role.CLIENT, agent="agent1", id_number="222222222")
    add("client3", "client3@example.com", Role.CLIENT, agent="agent2", id_number="333333333")
    return users


def _patch_lifespan(settings: Settings, engine: Engine, mailer: Mailer):
    """Return an async context manager that replaces the real lifespan.

    Wires the test engine, settings and mailer into app.state through the
    same init_state() the real lifespan uses. The background task is a
    long-sleeping coroutine so shutdown has something real to cancel.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        init_state(app, settings, engine, mailer=mailer)
        app.state.tasks = [asyncio.create_task(asyncio.sleep(99999))]
        yield
        for task in app.state.tasks:
            task.cancel()

    return test_lifespan


@contextmanager
def make_env(tmp_path, **settings_overrides) -> Iterator[TestEnv]:
    """Start the app against a fresh database and yield a TestEnv.

    Keyword arguments override Settings fields (e.g. api_rate_max_requests=3).
    """
    settings = make_settings(tmp_path, **settings_overrides)
    engine = memory_engine()
    mailer = RecordingMailer()
    users = _seed_users(UserStore(engine), settings)

    original = app.router.lifespan_context
    app.router.lifespan_context = _patch_lifespan(settings, engine, mailer)
    try:
        with TestClient(app, raise_server_exceptions=True) as client:
            yield TestEnv(client=client, engine=engine, settings=settings, mailer=mailer, users=users)
    finally:
        app.router.lifespan_context = original
        engine.dispose()


@pytest.fixture
def env(tmp_path) -> Generator[TestEnv, None, None]:
    """Running app with seeded users and rate limits high enough to ignore."""
    with make_env(tmp_path) as test_env:
        yield test_env


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    """Bare engine with the schema, for store-level tests."""
    eng = memory_engine("store")
    yield eng
    eng.dispose()


@pytest.fixture
def env_factory(tmp_path):
    """make_env bound to tmp_path: `with env_factory(api_rate_max_requests=2) as env:`."""
    return functools.partial(make_env, tmp_path)
