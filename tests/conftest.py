"""Pytest configuration and fixtures."""

import os
import pytest
from typing import AsyncGenerator
from unittest.mock import MagicMock, patch
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

# Set DATABASE_URL for tests BEFORE importing pyra_workspace.db
# This prevents the module from trying to create ./data
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

# Set encryption key for tests
from cryptography.fernet import Fernet
if "PYRA_ENCRYPTION_KEY" not in os.environ:
    os.environ["PYRA_ENCRYPTION_KEY"] = Fernet.generate_key().decode()

os.environ.setdefault("PYRA_JWT_SECRET", "test-jwt-secret-key-for-pyra-workspace")

# Skip the background scheduler during tests
os.environ["PYRA_TESTING"] = "true"

from pyra_workspace.db import Base
from pyra_workspace.models import *  # Import all models to ensure they're registered
from pyra_workspace.models.webhook import Webhook
from pyra_workspace.services.auth import create_access_token
from pyra_workspace.utils.encryption import encrypt_value

TEST_WEBHOOK_SECRET = "whsec_" + "ab" * 24


@pytest.fixture(scope="function")
async def db_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture(scope="function")
async def db(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async_session_maker = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with async_session_maker() as session:
        # Commits inside tests persist; anything left pending is rolled back
        yield session
        await session.rollback()


@pytest.fixture
def mock_async_session_local(db):
    """Mock AsyncSessionLocal to return the test database session.

    Needed for code that opens its own session (scheduler jobs, background
    webhook dispatch) so it uses the in-memory test database.
    """

    class MockAsyncSessionLocal:
        """Mock async context manager for database sessions."""

        def __call__(self):
            return self

        async def __aenter__(self):
            return db

        async def __aexit__(self, exc_type, exc_val, exc_tb):
            # Don't close the session - let the test fixture manage it
            return False

    mock_session_local = MockAsyncSessionLocal()

    with patch("pyra_workspace.services.scheduler.AsyncSessionLocal", mock_session_local), \
         patch("pyra_workspace.services.webhook_dispatcher.AsyncSessionLocal", mock_session_local):
        yield mock_session_local


@pytest.fixture(autouse=True)
def mock_dispatch():
    """Replace fire-and-forget webhook dispatch with a MagicMock.

    Services call ``webhook_dispatcher.dispatch_webhook_event`` through the
    module, so the patch catches every event; tests assert on the calls.
    """
    with patch(
        "pyra_workspace.services.webhook_dispatcher.dispatch_webhook_event",
        MagicMock(return_value=None),
    ) as mock:
        yield mock


@pytest.fixture
def webhook_secret():
    """Plaintext signing secret of webhooks built by make_webhook."""
    return TEST_WEBHOOK_SECRET


@pytest.fixture
def make_webhook(db):
    """Factory fixture that stores a webhook with an encrypted secret.

    Usage:
        webhook = await make_webhook(events=["quote_signed"], is_enabled=False)
    """

    async def _make_webhook(**kwargs):
        defaults = {
            "name": "CRM sync",
            "url": "https://hooks.example.com/pyra",
            "secret": encrypt_value(TEST_WEBHOOK_SECRET),
            "events": ["*"],
            "is_enabled": True,
            "created_by": "admin",
        }
        webhook = Webhook(**{**defaults, **kwargs})
        db.add(webhook)
        await db.commit()
        await db.refresh(webhook)
        return webhook

    return _make_webhook


@pytest.fixture
def line_items():
    """Two line items: 2 x 1500 + 1 x 500 = 3500 before VAT."""
    return [
        {"description": "Logo design", "quantity": 2, "rate": 1500},
        {"description": "Brand guidelines", "quantity": 1, "rate": 500},
    ]


@pytest.fixture
async def app():
    """Create FastAPI app for testing."""
    from pyra_workspace.main import app as application
    return application


@pytest.fixture
async def client(app, db):
    """Create async test client without credentials."""
    from httpx import AsyncClient, ASGITransport
    from pyra_workspace.db import get_db

    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test", follow_redirects=True) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def admin_token():
    """Bearer token for an admin user."""
    return create_access_token({
        "sub": "admin",
        "username": "admin",
        "display_name": "Pyra Admin",
        "role": "admin",
    })


@pytest.fixture
async def authenticated_client(client, admin_token):
    """AsyncClient with a valid admin JWT."""
    client.headers["Authorization"] = f"Bearer {admin_token}"
    return client


@pytest.fixture
def webhook_transport(app):
    """Route outbound webhook requests to a handler the test controls.

    Usage:
        webhook_transport.handler = lambda request: httpx.Response(500)

    Every request seen is appended to ``webhook_transport.requests``.
    """
    import httpx
    from pyra_workspace.dependencies import get_webhook_transport

    class Recorder:
        def __init__(self):
            self.requests = []
            self.handler = lambda request: httpx.Response(200, text="ok")

        def __call__(self, request):
            self.requests.append(request)
            return self.handler(request)

    recorder = Recorder()
    transport = httpx.MockTransport(recorder)
    app.dependency_overrides[get_webhook_transport] = lambda: transport
    recorder.transport = transport
    return recorder
