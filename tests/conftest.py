"""Pytest configuration and fixtures."""
from __future__ import annotations

import json
import time
from dataclasses import dataclass

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from licensegate.auth.authenticator import reset_authenticator
from licensegate.auth.credentials import StoreCredentials, hash_license_key, issue_credentials
from licensegate.auth.rate_limiter import reset_rate_limiter
from licensegate.auth.signatures import signed_headers
from licensegate.config import settings
from licensegate.db import database
from licensegate.db.database import Base, get_db
from licensegate.db.models import Store
from licensegate.main import app
from licensegate.services.audit import reset_audit_log
from licensegate.services.notifications import reset_notifier


def pytest_configure(config):
    """Ensure asyncio_mode is auto so async fixtures work when pyproject is not in cwd."""
    if hasattr(config.option, "asyncio_mode") and config.option.asyncio_mode is None:
        config.option.asyncio_mode = "auto"


@pytest.fixture(autouse=True)
def _reset_singletons():
    """Reset process-wide limiter, authenticator, audit log and bus between tests."""
    yield
    reset_rate_limiter()
    reset_authenticator()
    reset_audit_log()
    reset_notifier()


@pytest_asyncio.fixture
async def db_session():
    """Create an in-memory test database session."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session_factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    # Inject so the audit log's AsyncSessionLocal() uses the test DB
    old_engine = database._engine
    old_factory = database._async_session_factory
    database._engine = engine
    database._async_session_factory = async_session_factory
    try:
        async with async_session_factory() as session:
            async def override_get_db():
                yield session
            app.dependency_overrides[get_db] = override_get_db
            yield session
            app.dependency_overrides.clear()
    finally:
        database._engine = old_engine
        database._async_session_factory = old_factory
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def client(db_session):
    """Create an async test client bound to the test database."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# -----------------------------------------------------------------------------
# Store fixtures
# -----------------------------------------------------------------------------

LICENSE_KEY = "LG-TEST-0001-ABCD"


@dataclass
class StoreFixture:
    store: Store
    credentials: StoreCredentials
    license_key: str

    @property
    def token(self) -> str:
        return self.credentials.store_token

    @property
    def key_hash(self) -> str:
        return hash_license_key(self.license_key)


async def create_store(
    session: AsyncSession,
    license_key: str = LICENSE_KEY,
    *,
    license_id: int = 101,
    plan: str = "solo",
    count: int = 0,
    limit: int | None = 500,
    connected: bool = True,
    store_url: str = "https://shop.example.com",
) -> StoreFixture:
    """Insert a store row directly, bypassing the ledger."""
    credentials = issue_credentials(license_key)
    store = Store(
        store_token=credentials.store_token,
        secret_material=credentials.signing_key,
        license_id=license_id,
        store_url=store_url,
        plan=plan,
        license_count=count,
        license_limit=limit,
        is_connected=connected,
    )
    session.add(store)
    await session.commit()
    await session.refresh(store)
    return StoreFixture(store=store, credentials=credentials, license_key=license_key)


@pytest_asyncio.fixture
async def solo_store(db_session) -> StoreFixture:
    """Connected solo store (limit 500) with no licenses."""
    return await create_store(db_session)


def signed_request(
    fixture: StoreFixture,
    payload: dict[str, object],
    *,
    timestamp: int | None = None,
    signing_key: str | None = None,
) -> tuple[bytes, dict[str, str]]:
    """Body bytes and headers for a signed request from ``fixture``'s store."""
    body = json.dumps({"store_token": fixture.token, **payload}).encode()
    ts = timestamp if timestamp is not None else int(time.time())
    headers = signed_headers(signing_key or fixture.credentials.signing_key, fixture.token, ts, body)
    headers["Content-Type"] = "application/json"
    return body, headers


@pytest.fixture
def make_store(db_session):
    """Factory inserting stores into the test database."""
    async def _make(license_key: str = LICENSE_KEY, **kwargs: object) -> StoreFixture:
        return await create_store(db_session, license_key, **kwargs)  # type: ignore[arg-type]
    return _make


@pytest.fixture
def sign():
    """Builds signed request bodies and headers for a store fixture."""
    return signed_request


# -----------------------------------------------------------------------------
# Admin auth fixtures
# -----------------------------------------------------------------------------

@pytest.fixture
def admin_secret(monkeypatch):
    monkeypatch.setattr(settings, "access_token_secret", "test-secret-" + "0" * 52)
    return settings.access_token_secret


@pytest.fixture
def admin_headers(admin_secret):
    """Headers with an admin Bearer token (1 hour)."""
    from licensegate.auth.tokens import generate_access_code
    token = generate_access_code(operator="ops@example.com", duration_hours=1)
    return {"Authorization": f"Bearer {token}"}
