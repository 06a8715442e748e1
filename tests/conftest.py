"""
Pytest configuration and core fixtures.

Every test gets its own file-backed SQLite database, so tests that open
several sessions at once (concurrency tests) see real committed state.
"""

import os

# Settings are read at import time; point them at a throwaway database first
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./.pytest_careauth.db")
os.environ["ENVIRONMENT"] = "test"
os.environ["DEBUG"] = "true"
os.environ["ENABLE_SCHEDULER"] = "false"
os.environ["ENABLE_MESSAGING"] = "false"

from typing import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from careauth.core.db import Base
import careauth.core.db.models  # noqa: F401
from careauth.core.db.crud import admin_db, client_db, worker_db
from careauth.core.services import CodeCipher, NotificationDispatcher, reset_channels
from careauth.core.utils import hash_password

TEST_PASSWORD = "CorrectHorse9!"
# bcrypt is slow; hash once per session
_TEST_PASSWORD_HASH = hash_password(TEST_PASSWORD)


def pytest_configure(config):
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (real SQLite database)",
    )


@pytest.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'careauth.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(
        bind=db_engine,
        autoflush=False,
        expire_on_commit=False,
    )


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def reset_singletons():
    """Give every test a fresh cipher, dispatcher and channel registry."""
    CodeCipher._reset()
    NotificationDispatcher._reset()
    reset_channels()
    yield
    CodeCipher._reset()
    NotificationDispatcher._reset()
    reset_channels()


@pytest.fixture
def publisher() -> AsyncMock:
    """Queue publisher stub registered on the dispatcher."""
    mock = AsyncMock()
    NotificationDispatcher.init(mock)
    return mock


@pytest.fixture
def password_hash() -> str:
    return _TEST_PASSWORD_HASH


async def _make_principal(registry, session, email, password_hash, **extra):
    return await registry.create(
        session,
        data={
            "email": email,
            "password_hash": password_hash,
            "email_verified": True,
            **extra,
        },
    )


@pytest.fixture
async def client(db_session, password_hash):
    return await _make_principal(client_db, db_session, "client@example.com", password_hash)


@pytest.fixture
async def worker(db_session, password_hash):
    return await _make_principal(worker_db, db_session, "worker@example.com", password_hash)


@pytest.fixture
async def admin(db_session, password_hash):
    return await _make_principal(
        admin_db, db_session, "admin@example.com", password_hash, is_admin=True
    )
