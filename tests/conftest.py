"""
tests/conftest.py -- Shared test fixtures for Nano Admin tests.

This module provides:
  - RecordingNotifier: a notification sink that records instead of sending
  - store / issuer / notifier / service: function-scoped unit-test collaborators
  - make_user: factory fixture that inserts an account with a given status/role
  - api: module-scoped TestClient wired to isolated collaborators, plus an
    admin account and its access token

Design: Named shared-memory SQLite URIs (not plain :memory:) are used for the
HTTP fixtures because TestClient runs route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.
Unit tests run on one thread, so plain :memory: is enough there.

DEBUG and RATE_LIMIT_ENABLED must be set before any application import so
get_settings() auto-generates SECRET_KEY and the limiter is built disabled.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: set before any auth/core/api import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import Role, Status, User
from auth.service import AuthService
from auth.store import AccountStore
from auth.tokens import TokenIssuer, hash_password
from core.config import get_settings
from mail.sender import NotificationError

# ---------------------------------------------------------------------------
# Notification sink double
# ---------------------------------------------------------------------------


class RecordingNotifier:
    """Notifier that records every send. Set fail=True to simulate an SMTP outage."""

    def __init__(self) -> None:
        self.codes: list[tuple[str, str, str | None]] = []
        self.approvals: list[tuple[str, str]] = []
        self.fail = False

    def send_verification_code(self, email: str, code: str, app_name: str | None = None) -> None:
        if self.fail:
            raise NotificationError("SMTP unavailable")
        self.codes.append((email, code, app_name))

    def send_approval(self, email: str, name: str) -> None:
        if self.fail:
            raise NotificationError("SMTP unavailable")
        self.approvals.append((email, name))

    def last_code(self, email: str) -> str:
        """Return the most recent code sent to an address."""
        for sent_to, code, _app in reversed(self.codes):
            if sent_to == email:
                return code
        raise AssertionError(f"no verification code was sent to {email}")


def unique_email(prefix: str = "user") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}@example.com"


# ---------------------------------------------------------------------------
# Unit-test collaborators
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[AccountStore, None, None]:
    s = AccountStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def issuer() -> TokenIssuer:
    return TokenIssuer(get_settings())


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def service(store: AccountStore, issuer: TokenIssuer, notifier: RecordingNotifier) -> AuthService:
    return AuthService(store, issuer, notifier)


def _insert_user(
    s: AccountStore,
    email: str | None = None,
    password: str = "secret1",
    name: str = "Test User",
    status: Status = Status.active,
    role: Role = Role.user,
) -> User:
    return s.create_user(
        User(
            email=email or unique_email(),
            name=name,
            hashed_password=hash_password(password),
            role=role,
            status=status,
        )
    )


@pytest.fixture
def make_user(store: AccountStore) -> Callable[..., User]:
    """Factory: make_user(status=Status.pending, role=Role.admin, password=..., email=...)."""

    def _make(**kwargs) -> User:
        return _insert_user(store, **kwargs)

    return _make


# ---------------------------------------------------------------------------
# HTTP fixtures
# ---------------------------------------------------------------------------


@dataclass
class ApiEnv:
    """Everything a route test needs: the client and the collaborators behind it."""

    client: TestClient
    store: AccountStore
    issuer: TokenIssuer
    notifier: RecordingNotifier
    admin: User
    admin_token: str

    @staticmethod
    def email(prefix: str = "user") -> str:
        return unique_email(prefix)

    def headers(self, token: str | None = None) -> dict[str, str]:
        return {"Authorization": f"Bearer {token or self.admin_token}"}

    def add_user(self, **kwargs) -> User:
        return _insert_user(self.store, **kwargs)

    def token_for(self, user: User) -> str:
        return self.issuer.create_access_token(user)

    def api_key_for(self, user: User, name: str = "Test App") -> str:
        """Create an API key for user via the flow controller and return the raw key."""
        _key, raw = self.client.app.state.auth_service.create_api_key(user, name)
        return raw


def _patch_lifespan(store: AccountStore, issuer: TokenIssuer, notifier: RecordingNotifier):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test collaborators into app.state so TestClient routes
    see an isolated in-memory DB and a recording notifier.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = get_settings()
        app.state.store = store
        app.state.issuer = issuer
        app.state.notifier = notifier
        app.state.auth_service = AuthService(store, issuer, notifier)
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api(request) -> Generator[ApiEnv, None, None]:
    """Yield an ApiEnv for HTTP integration tests.

    One TestClient (and one database) per test module. An active admin is
    created before the client starts, so self-registrations in tests never
    hit the first-account bootstrap path.
    """
    suffix = request.module.__name__.rsplit(".", 1)[-1]
    store = AccountStore(f"sqlite:///file:test_{suffix}?mode=memory&cache=shared&uri=true")
    issuer = TokenIssuer(get_settings())
    notifier = RecordingNotifier()
    admin = _insert_user(store, email=unique_email("admin"), password="adminpass1", name="Admin", role=Role.admin)

    app.router.lifespan_context = _patch_lifespan(store, issuer, notifier)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiEnv(
            client=client,
            store=store,
            issuer=issuer,
            notifier=notifier,
            admin=admin,
            admin_token=issuer.create_access_token(admin),
        )

    store.close()
