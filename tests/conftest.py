import os
from collections.abc import AsyncGenerator, Callable, Awaitable
from pathlib import Path
from typing import Any

# Settings are read at import time, so the test environment must be in place first
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-not-for-production")
os.environ["ENVIRONMENT"] = "test"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["RATE_LIMIT_BACKEND"] = "memory"
os.environ.setdefault("LOG_FORMAT", "console")

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Load environment variables from .env file
load_dotenv()

from trustbridge.core.redis_client import MemoryCounterStore, RateLimiter, get_rate_limiter
from trustbridge.core.security import create_session_token
from trustbridge.core.storage import get_storage
from trustbridge.database import get_db
from trustbridge.dependencies import get_audit_logger
from trustbridge.main import app
from trustbridge.models import metadata
from trustbridge.schemas.users import Role
from trustbridge.services.account_service import AccountService
from trustbridge.services.audit_service import AuditLogger

TEST_PASSWORD = "correct horse battery"


class FakeStorage:
    """Object storage double that signs nothing."""

    bucket = "test-bucket"

    def __init__(self) -> None:
        self.uploads: list[str] = []
        self.downloads: list[str] = []

    def presign_upload(self, key: str) -> tuple[str, dict[str, str]]:
        self.uploads.append(key)
        return f"https://storage.example.com/{self.bucket}/{key}?op=put", {}

    def presign_download(self, key: str) -> str:
        self.downloads.append(key)
        return f"https://storage.example.com/{self.bucket}/{key}?op=get"


@pytest_asyncio.fixture
async def test_engine(tmp_path: Path):
    """File-backed SQLite database, one per test."""
    # A file rather than :memory: so every session gets its own connection
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'trustbridge_test.db'}",
        echo=False,
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test database."""
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def audit_logger(session_factory) -> AuditLogger:
    """Audit logger writing to the test database."""
    return AuditLogger(session_factory)


@pytest.fixture
def rate_limiter() -> RateLimiter:
    """Fresh in-memory rate limiter."""
    return RateLimiter(MemoryCounterStore())


@pytest.fixture
def storage() -> FakeStorage:
    """Object storage double."""
    return FakeStorage()


@pytest_asyncio.fixture
async def client(
    session_factory,
    audit_logger: AuditLogger,
    rate_limiter: RateLimiter,
    storage: FakeStorage,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_audit_logger] = lambda: audit_logger
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter
    app.dependency_overrides[get_storage] = lambda: storage

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def make_account(db_session: AsyncSession) -> Callable[..., Awaitable[dict[str, Any]]]:
    """Factory creating accounts directly through the account service."""

    async def _make_account(
        email: str,
        role: Role = Role.PATIENT,
        name: str | None = None,
        password: str = TEST_PASSWORD,
    ) -> dict[str, Any]:
        return await AccountService().create_account(
            db_session,
            email=email,
            name=name or email.split("@")[0].title(),
            password=password,
            role=role,
        )

    return _make_account


@pytest_asyncio.fixture
async def patient(make_account) -> dict[str, Any]:
    """A patient account."""
    return await make_account("patient@example.com", Role.PATIENT, name="Pat Patient")


@pytest_asyncio.fixture
async def provider(make_account) -> dict[str, Any]:
    """A provider account."""
    return await make_account("provider@example.com", Role.PROVIDER, name="Dr. Provider")


@pytest_asyncio.fixture
async def admin(make_account) -> dict[str, Any]:
    """An admin account."""
    return await make_account("admin@trustbridge.health", Role.ADMIN, name="Ada Admin")


def _auth_headers(account: dict[str, Any], two_factor_verified: bool = True) -> dict[str, str]:
    token = create_session_token(account, two_factor_verified)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def session_headers() -> Callable[..., dict[str, str]]:
    """Build bearer headers carrying a session token for an account."""
    return _auth_headers


@pytest.fixture
def patient_headers(patient) -> dict[str, str]:
    """Session headers for the patient."""
    return _auth_headers(patient)


@pytest.fixture
def provider_headers(provider) -> dict[str, str]:
    """Session headers for the provider."""
    return _auth_headers(provider)


@pytest.fixture
def admin_headers(admin) -> dict[str, str]:
    """Session headers for the admin."""
    return _auth_headers(admin)


@pytest.fixture
def password() -> str:
    """Password of every account built by ``make_account``."""
    return TEST_PASSWORD
