"""
tests/conftest.py -- Shared fixtures for Secure Blog auth tests.

This module provides:
  - FakeClock / RecordingNotifier (defined in tests/fakes.py)
  - make_test_store(): isolated named shared-memory SQLite UserStore
  - _patch_lifespan(): wires test collaborators into app.state
  - api_harness: module-scoped TestClient + store + OTP manager + notifier + admin
  - client: the harness client with an empty cookie jar for each test

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.

The DEBUG env var must be set before any auth/core import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import itertools
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.models import Role
from auth.otp import OtpChallengeManager
from auth.store import UserStore
from auth.tokens import mint_token
from tests.fakes import FakeClock, RecordingNotifier

ADMIN_EMAIL = "admin@secureblog.test"
ADMIN_PASSWORD = "AdminPassw0rd!"

_db_counter = itertools.count()


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_test_store(db_suffix: str) -> UserStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules don't
                   share state. A counter is added so repeated calls never
                   collide either.
    """
    name = f"test_auth_{db_suffix}_{next(_db_counter)}"
    return UserStore(db_url=f"sqlite:///file:{name}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(user_store: UserStore, otp: OtpChallengeManager, notifier: RecordingNotifier):
    """Return an async context manager that replaces the real lifespan.

    The sweep_task is a long-sleeping coroutine standing in for the real
    sweep loop (a real asyncio.Task is required for .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.otp = otp
        app.state.notifier = notifier
        app.state.sweep_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.sweep_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@dataclass
class ApiHarness:
    client: TestClient
    store: UserStore
    otp: OtpChallengeManager
    notifier: RecordingNotifier
    clock: FakeClock
    admin_id: int
    admin_token: str

    def auth(self, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    def register(self, username: str, email: str, password: str = "Passw0rd!", role: str = "reader"):
        return self.client.post(
            "/api/v1/auth/register",
            json={"username": username, "email": email, "password": password, "role": role},
        )

    def register_verified(self, username: str, email: str, password: str = "Passw0rd!", role: str = "reader") -> dict:
        """Register and verify an account through the API. Returns the verify-otp JSON body."""
        resp = self.register(username, email, password, role)
        assert resp.status_code == 201, resp.text
        resp = self.client.post(
            "/api/v1/auth/verify-otp",
            json={"email": email, "otp": self.notifier.last_code(email)},
        )
        assert resp.status_code == 200, resp.text
        self.client.cookies.clear()
        return resp.json()


@pytest.fixture(autouse=True)
def _reset_rate_limits() -> Generator[None, None, None]:
    """Every test starts with empty rate-limit windows."""
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture(scope="module")
def api_harness() -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness wired to the real FastAPI app.

    Routes run for real against an isolated in-memory store, an OTP manager
    on a fake clock and a recording notifier. A verified admin exists before
    the client starts.
    """
    store = make_test_store("api")
    clock = FakeClock()
    otp = OtpChallengeManager(ttl_seconds=600, digits=6, clock=clock)
    notifier = RecordingNotifier()

    admin = store.create_credential("rootadmin", ADMIN_EMAIL, ADMIN_PASSWORD, Role.admin, is_verified=True)
    token = mint_token(admin.id, Role.admin, 3600)

    app.router.lifespan_context = _patch_lifespan(store, otp, notifier)

    with TestClient(app, base_url="http://localhost", raise_server_exceptions=True) as test_client:
        yield ApiHarness(
            client=test_client,
            store=store,
            otp=otp,
            notifier=notifier,
            clock=clock,
            admin_id=admin.id,
            admin_token=token,
        )

    store.close()


@pytest.fixture
def client(api_harness: ApiHarness) -> Generator[TestClient, None, None]:
    """The harness client with an empty cookie jar, so sessions never leak between tests."""
    api_harness.client.cookies.clear()
    yield api_harness.client
    api_harness.client.cookies.clear()


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    """A fresh, empty in-memory UserStore."""
    s = make_test_store("unit")
    yield s
    s.close()
