"""
tests/conftest.py -- Shared test fixtures for the auth service.

This module provides:
  - store: a fresh in-memory UserStore per test (unit tests)
  - harness: TestClient over the real app with a patched lifespan (integration tests)
  - seed_user(): insert a user with a password and a role profile
  - RecordingMailer / MutableClock: test doubles for mail delivery and time

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the harness because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would show each worker thread a blank
schema. The named URI format shares one in-memory instance across connections.

Environment variables must be set before any api/ import: get_settings() is
cached on first call, and api/main.py reads it at import time.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

# CRITICAL: set before any api/ or core/ import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver"]')
os.environ.setdefault("FRONTEND_URL", "http://frontend.test")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("OTP_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import STUDENT, FacultyProfile, StudentProfile, User
from auth.otp import OtpManager
from auth.provisioning import OAuthProvisioner
from auth.store import UserStore
from auth.tokens import TokenIssuer, hash_password
from core.config import Settings, get_settings

DOMAIN = "josephscollege.ac.in"


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class RecordingMailer:
    """Stands in for auth.mailer.Mailer. Records (email, code) pairs instead of sending."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.error: Exception | None = None

    async def send_otp(self, email: str, code: str) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append((email, code))

    def last_code_for(self, email: str) -> str:
        return [code for to, code in self.sent if to == email][-1]


class MutableClock:
    """Callable clock for OtpManager; tests move it forward with advance()."""

    def __init__(self) -> None:
        self.now = datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_settings(**overrides) -> Settings:
    """Settings for unit tests: debug secrets, cheap bcrypt."""
    overrides.setdefault("debug", True)
    overrides.setdefault("bcrypt_rounds", 4)
    return Settings(**overrides)


def seed_user(
    store: UserStore,
    email: str,
    role: str,
    password: str | None = "secret123",
    name: str = "Test User",
    is_active: bool = True,
) -> User:
    """Insert a user (with profile) directly through the store and return it."""
    user = User(
        email=email,
        role=role,
        password_hash=hash_password(password, rounds=4) if password else None,
        is_active=is_active,
    )
    if role == STUDENT:
        profile = StudentProfile(roll_no=email.split("@")[0], student_name=name)
    else:
        profile = FacultyProfile(faculty_name=name)
    user_id = store.provision_user(user, profile)
    return store.get_by_id(user_id)


# ---------------------------------------------------------------------------
# Unit-test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def issuer(settings: Settings) -> TokenIssuer:
    return TokenIssuer(settings)


# ---------------------------------------------------------------------------
# Integration harness
# ---------------------------------------------------------------------------


@dataclass
class Harness:
    client: TestClient
    store: UserStore
    settings: Settings
    issuer: TokenIssuer
    mailer: RecordingMailer
    oauth: MagicMock
    clock: MutableClock


def _patch_lifespan(harness_parts: dict):
    """Return a lifespan that wires test components into app.state.

    The purge_task is a long-sleeping coroutine so shutdown can cancel a real
    asyncio.Task.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = harness_parts["settings"]
        app.state.user_store = harness_parts["store"]
        app.state.token_issuer = harness_parts["issuer"]
        app.state.otp_manager = harness_parts["otp_manager"]
        app.state.provisioner = harness_parts["provisioner"]
        app.state.oauth = harness_parts["oauth"]
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def harness(request) -> Generator[Harness, None, None]:
    """Yield a Harness around the real app for one test module.

    follow_redirects=False so OAuth tests can assert on Location headers.
    """
    db_name = request.module.__name__.replace(".", "_")
    store = UserStore(f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true")
    app_settings = get_settings()
    issuer = TokenIssuer(app_settings)
    mailer = RecordingMailer()
    clock = MutableClock()
    oauth = MagicMock()
    parts = {
        "settings": app_settings,
        "store": store,
        "issuer": issuer,
        "otp_manager": OtpManager(store, issuer, mailer, app_settings, clock=clock),
        "provisioner": OAuthProvisioner(store, app_settings.college_domain),
        "oauth": oauth,
    }
    app.router.lifespan_context = _patch_lifespan(parts)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield Harness(
            client=client,
            store=store,
            settings=app_settings,
            issuer=issuer,
            mailer=mailer,
            oauth=oauth,
            clock=clock,
        )

    store.close()


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}
