"""
tests/conftest.py -- Shared test fixtures for AccountGuard tests.

This module provides:
  - make_service(): an AuthService over isolated named shared-memory DBs
  - _patch_lifespan(): wires a test service into app.state, bypassing real startup
  - api_client: TestClient with an admin JWT for API integration tests
  - unit-test fixtures for each store over plain in-memory SQLite

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
for the API tests because TestClient runs sync route handlers in a thread
pool. Plain :memory: DBs are per-connection and would present a blank schema
to each worker thread. Unit tests stay on one thread, so :memory: is enough.

DEBUG, BCRYPT_ROUNDS and LOGIN_RATE_LIMIT must be set before any auth/core
import: get_settings() is cached on first use.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.audit import AuditTrail
from auth.lockout import LockoutTracker
from auth.policy import PasswordPolicy
from auth.service import AuthService
from auth.sessions import SessionRegistry
from auth.store import CredentialStore
from auth.tokens import create_access_token

ADMIN_NAME = "testadmin"
ADMIN_PASSWORD = "Adm1n!pass"

MEMORY_URL = "sqlite:///:memory:"

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _shared_url(store: str, db_suffix: str) -> str:
    return f"sqlite:///file:ag_{store}_{db_suffix}?mode=memory&cache=shared&uri=true"


def make_service(db_suffix: str) -> AuthService:
    """Create an AuthService over isolated named shared-memory stores.

    Args:
        db_suffix: Unique string appended to each DB name so test modules
                   don't share state.
    """
    return AuthService(
        credentials=CredentialStore(_shared_url("users", db_suffix), PasswordPolicy()),
        lockouts=LockoutTracker(_shared_url("lockouts", db_suffix)),
        sessions=SessionRegistry(_shared_url("sessions", db_suffix)),
        audit=AuditTrail(_shared_url("audit", db_suffix)),
    )


def _patch_lifespan(service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    The sweep_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth_service = service
        app.state.sweep_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.sweep_task.cancel()

    return test_lifespan


def login(client: TestClient, name: str, password: str, **headers):
    """POST /auth/login and drop the cookie it sets.

    The cookie would otherwise ride along on every later request of the
    module-scoped client and override the Authorization header under test.
    """
    resp = client.post("/api/v1/auth/login", json={"name": name, "password": password}, headers=headers)
    client.cookies.clear()
    return resp


def bearer(token: str, session_id: str | None = None) -> dict[str, str]:
    headers = {"Authorization": f"Bearer {token}"}
    if session_id:
        headers["X-Session-Id"] = session_id
    return headers


# ---------------------------------------------------------------------------
# Unit-test fixtures -- plain in-memory stores, one per test
# ---------------------------------------------------------------------------


@pytest.fixture
def policy() -> PasswordPolicy:
    return PasswordPolicy()


@pytest.fixture
def credentials(policy: PasswordPolicy) -> Generator[CredentialStore, None, None]:
    store = CredentialStore(MEMORY_URL, policy)
    yield store
    store.close()


@pytest.fixture
def lockouts() -> Generator[LockoutTracker, None, None]:
    tracker = LockoutTracker(MEMORY_URL)
    yield tracker
    tracker.close()


@pytest.fixture
def sessions() -> Generator[SessionRegistry, None, None]:
    registry = SessionRegistry(MEMORY_URL)
    yield registry
    registry.close()


@pytest.fixture
def audit() -> Generator[AuditTrail, None, None]:
    trail = AuditTrail(MEMORY_URL)
    yield trail
    trail.close()


@pytest.fixture
def service(credentials, lockouts, sessions, audit) -> AuthService:
    return AuthService(credentials, lockouts, sessions, audit)


# ---------------------------------------------------------------------------
# Module-scoped API fixture -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, token, user_id) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use isolated in-memory stores. The
    admin user is created before the client starts. base_url uses localhost
    so TrustedHostMiddleware accepts the requests.
    """
    suffix = request.module.__name__.rsplit(".", 1)[-1]
    service = make_service(suffix)
    admin = service.credentials.create(ADMIN_NAME, ADMIN_PASSWORD, role="admin")
    token = create_access_token(user_id=admin.id, name=ADMIN_NAME, role="admin", expire_seconds=3600)

    app.router.lifespan_context = _patch_lifespan(service)

    with TestClient(app, base_url="http://localhost", raise_server_exceptions=True) as client:
        yield client, token, admin.id

    service.close()
