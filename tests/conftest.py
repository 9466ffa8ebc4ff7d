"""
Test configuration and fixtures for the Doc-Cluster auth API.

Every test gets its own SQLite database (in-memory for service tests, a
temporary file for HTTP tests), fixed token secrets, and a stubbed email
transport so nothing leaves the process.
"""

import os
import tempfile
from typing import Generator
from unittest.mock import patch

from dotenv import load_dotenv

load_dotenv()

os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DB_CREATE_ALL"] = "true"
os.environ["ACCESS_TOKEN_SECRET"] = "test-access-secret-0123456789abcdef"
os.environ["REFRESH_TOKEN_SECRET"] = "test-refresh-secret-0123456789abcdef"
os.environ["EMAIL_RELAY_URL"] = ""
os.environ["LOG_DIR"] = os.path.join(tempfile.gettempdir(), "doc_cluster_test_logs")

import pytest
import pytest_asyncio
from fastapi import BackgroundTasks
from fastapi.testclient import TestClient

from app.features.auth.models.user import User
from app.features.auth.utils.security import hash_password
from app.platform.config import settings
from app.platform.db.session import Database

DEFAULT_PASSWORD = "pw1"


@pytest.fixture(autouse=True)
def mock_send_email():
    """Stub the notifier transport for every test."""
    with patch("app.features.auth.services.email_service.send_email", return_value=True) as mock_send:
        yield mock_send


@pytest.fixture
def fixed_otp():
    """Make the OTP generator deterministic."""
    with patch("app.features.auth.services.otp_service.generate_otp", return_value="1234") as mock_gen:
        yield mock_gen


@pytest_asyncio.fixture
async def db_session():
    database = Database("sqlite+aiosqlite:///:memory:")
    database.connect()
    await database.create_all()
    async with database.session_factory() as session:
        yield session
    await database.disconnect()


@pytest.fixture
def background_tasks() -> BackgroundTasks:
    return BackgroundTasks()


@pytest.fixture
def make_user(db_session):
    """Factory that inserts a user straight into the store."""

    async def _make_user(
        email: str = "a@x.com",
        username: str = "alice",
        password: str = DEFAULT_PASSWORD,
        is_verified: bool = False,
        phone_number: str = None,
    ) -> User:
        user = User(
            email=email,
            username=username,
            phone_number=phone_number,
            password_hash=hash_password(password),
            is_verified=is_verified,
            cover_info={},
        )
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture
def client(tmp_path, monkeypatch) -> Generator[TestClient, None, None]:
    """
    Test client bound to a fresh database file.
    Entering the context runs the app lifespan (engine + create_all).
    """
    monkeypatch.setattr(settings, "DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    from app.main import app

    with TestClient(app) as test_client:
        yield test_client
