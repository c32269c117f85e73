"""
Pytest configuration and fixtures for Marvel Catalog tests.
"""
import os

import pytest
import pytest_asyncio

# Set test environment before importing app modules
os.environ["ENVIRONMENT"] = "development"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from marvel_catalog.core.database import Base  # noqa: E402
from marvel_catalog.core.job_control import JobLockManager  # noqa: E402
from marvel_catalog import models  # noqa: E402,F401


@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory SQLite database with every catalog table."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def lock_manager() -> JobLockManager:
    """Per-test locks so no asyncio.Lock outlives its event loop."""
    return JobLockManager()


@pytest.fixture
def no_sleep():
    """Drop-in for asyncio.sleep that records the requested delays."""
    delays = []

    async def _sleep(seconds: float) -> None:
        delays.append(seconds)

    _sleep.delays = delays
    return _sleep
