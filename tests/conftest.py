"""
Test Configuration
==================

Pytest fixtures for the visitor management backend. Every test gets its own
in-memory SQLite database; API tests share that session with the app through
a ``get_db`` override.
"""

import os
import tempfile
from collections.abc import AsyncGenerator, Callable, Generator
from datetime import timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Set test environment before anything reads settings
os.environ["ENVIRONMENT"] = "testing"
os.environ["DEBUG"] = "false"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SMTP_HOST"] = ""
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="vms-uploads-")

from sqlalchemy.orm import Session, sessionmaker  # noqa: E402

from app.core.security import create_access_token, hash_password  # noqa: E402
from app.db.base import Base  # noqa: E402
from app.db.models import User, UserRole  # noqa: E402
from app.db.session import build_engine, get_db, init_db  # noqa: E402
from app.services.lifecycle import utcnow  # noqa: E402

PASSWORD = "Password123!"


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Use asyncio backend for async tests."""
    return "asyncio"


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Fresh in-memory database per test."""
    engine = build_engine("sqlite://")
    init_db(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def make_user(db: Session) -> Callable[..., User]:
    """Factory for persisted users."""

    def _make(
        full_name: str,
        email: str,
        role: UserRole = UserRole.host,
        department: str | None = "Operations",
        is_active: bool = True,
    ) -> User:
        user = User(
            full_name=full_name,
            email=email,
            password_hash=hash_password(PASSWORD),
            role=role,
            department=department if role == UserRole.host else None,
            contact_number="+15550000000",
            is_active=is_active,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def host(make_user) -> User:
    return make_user("Alice Host", "alice@example.com")


@pytest.fixture
def other_host(make_user) -> User:
    return make_user("Bob Host", "bob@example.com")


@pytest.fixture
def visitor(make_user) -> User:
    return make_user("Victor Visitor", "victor@example.com", role=UserRole.visitor)


@pytest.fixture
def auth_headers() -> Callable[[User], dict[str, str]]:
    """Bearer headers for a given user."""

    def _headers(user: User) -> dict[str, str]:
        token = create_access_token(user.id, user.role.value, name=user.full_name)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def window() -> Callable[..., tuple[str, str]]:
    """ISO start/end strings relative to now."""

    def _window(start_in: timedelta = timedelta(hours=1), length: timedelta = timedelta(hours=2)) -> tuple[str, str]:
        start = utcnow() + start_in
        return start.isoformat(), (start + length).isoformat()

    return _window


@pytest_asyncio.fixture
async def client(db: Session) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the FastAPI app, bound to the test database."""
    from app.main import fastapi_app

    def _override_get_db():
        yield db

    fastapi_app.dependency_overrides[get_db] = _override_get_db
    async with AsyncClient(
        transport=ASGITransport(app=fastapi_app),
        base_url="http://test",
    ) as client:
        yield client
    fastapi_app.dependency_overrides.clear()
