"""
Laundry Portal - Test Configuration and Fixtures

Provides the in-memory draft database, a fake backend served through
`httpx.MockTransport`, the test client and sign-in helpers for every portal.
"""

import inspect
import json
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment BEFORE importing app code
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key-for-testing-only"
os.environ["DEBUG"] = "true"
os.environ["API_BASE_URL"] = "http://backend.test/api"

from laundry_portal.admin import in_flight
from laundry_portal.api_client import get_backend_transport
from laundry_portal.auth import AUTH_COOKIE_NAME, decode_auth_store, encode_auth_store
from laundry_portal.csrf import CSRF_COOKIE_NAME, CSRF_FORM_FIELD, generate_csrf_token
from laundry_portal.database import Base, get_db
from laundry_portal.main import app
from laundry_portal.models import BookingDraft  # noqa: F401
from laundry_portal.rate_limit import rate_limit_store


# Test database engine (in-memory SQLite shared by every session)
test_engine = create_async_engine(
    "sqlite+aiosqlite:///:memory:",
    echo=False,
    poolclass=StaticPool,
    connect_args={"check_same_thread": False},
)
TestSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


# =============================================================================
# FAKE BACKEND
# =============================================================================

@dataclass
class BackendCall:
    method: str
    path: str
    params: dict
    body: Any
    headers: dict = field(default_factory=dict)


def ok(data: Any = None, message: str = "OK") -> httpx.Response:
    """A successful backend envelope."""
    return httpx.Response(200, json={"success": True, "data": data, "message": message})


def fail(message: str, status_code: int = 400) -> httpx.Response:
    """A business-rule error envelope."""
    return httpx.Response(status_code, json={"success": False, "message": message})


class FakeBackend:
    """
    Records every backend call and answers from registered routes.

    Routes map `(method, path)` to a response, a data payload, or a
    callable (sync or async) taking the `BackendCall`.
    """

    def __init__(self):
        self.routes: dict[tuple[str, str], Any] = {}
        self.calls: list[BackendCall] = []

    def on(self, method: str, path: str, response: Any = None):
        self.routes[(method.upper(), path)] = response
        return self

    def calls_to(self, method: str, path: str) -> list[BackendCall]:
        return [c for c in self.calls if c.method == method.upper() and c.path == path]

    async def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.startswith("/api"):
            path = path[len("/api"):]
        body = json.loads(request.content) if request.content else None
        call = BackendCall(
            method=request.method,
            path=path,
            params=dict(request.url.params),
            body=body,
            headers=dict(request.headers),
        )
        self.calls.append(call)

        route = self.routes.get((request.method, path), _MISSING)
        if route is _MISSING:
            return fail(f"No route for {request.method} {path}", status_code=404)
        if callable(route):
            route = route(call)
            if inspect.isawaitable(route):
                route = await route
        if isinstance(route, httpx.Response):
            return route
        return ok(route)


_MISSING = object()


# =============================================================================
# FIXTURES
# =============================================================================

@pytest_asyncio.fixture
async def db():
    """Provide a test database session with fresh tables for each test."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def backend():
    """The fake laundry backend behind every `BackendClient`."""
    return FakeBackend()


def mock_transport(backend: FakeBackend) -> Callable[[], httpx.AsyncBaseTransport]:
    def _transport() -> httpx.AsyncBaseTransport:
        return httpx.MockTransport(backend.handle)
    return _transport


@pytest_asyncio.fixture
async def client(db, backend):
    """Provide an async HTTP test client with the test database, fake backend and CSRF token."""
    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_backend_transport] = mock_transport(backend)
    rate_limit_store.reset()
    in_flight.reset()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        # Pre-set a CSRF cookie so POST requests can include the matching token
        csrf_token = generate_csrf_token()
        ac.cookies.set(CSRF_COOKIE_NAME, csrf_token)
        # Store the token on the client for tests to include in form data
        ac._csrf_token = csrf_token
        yield ac

    app.dependency_overrides.clear()
    rate_limit_store.reset()
    in_flight.reset()


def csrf_data(client, extra_data=None):
    """Build form data dict including the CSRF token for the given client."""
    data = {CSRF_FORM_FIELD: client._csrf_token}
    if extra_data:
        data.update(extra_data)
    return data


def sign_in(client, portal: str, user: Optional[dict] = None, token: Optional[str] = None) -> None:
    """Add a portal session to the client's auth cookie, keeping existing ones."""
    store = decode_auth_store(client.cookies.get(AUTH_COOKIE_NAME))
    store["portals"][portal] = {
        "token": token or f"{portal}-token",
        "user": user or {"_id": f"{portal}-1", "name": f"Test {portal}", "email": f"{portal}@example.com"},
    }
    client.cookies.delete(AUTH_COOKIE_NAME)
    client.cookies.set(AUTH_COOKIE_NAME, encode_auth_store(store))


@pytest_asyncio.fixture
async def customer_client(client):
    sign_in(client, "customer", {"_id": "cust-1", "name": "Asha", "email": "asha@example.com", "role": "customer"})
    return client


@pytest_asyncio.fixture
async def admin_client(client):
    sign_in(client, "admin", {
        "_id": "admin-1",
        "name": "Ravi",
        "email": "ravi@example.com",
        "role": "superadmin",
    })
    return client


@pytest_asyncio.fixture
async def support_client(client):
    sign_in(client, "support", {"_id": "agent-1", "name": "Meera", "role": "support_agent"})
    return client


@pytest_asyncio.fixture
async def center_admin_client(client):
    sign_in(client, "center_admin", {"_id": "ca-1", "name": "Kiran", "email": "kiran@example.com", "role": "center_admin"})
    return client
