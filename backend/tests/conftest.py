import os
import sys
import asyncio

import pytest
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from helpers import TEST_JWT_SECRET

os.environ.setdefault("JWT_SECRET", TEST_JWT_SECRET)
os.environ.setdefault("ALLOWED_ORIGINS", "http://testserver")
os.environ.setdefault("DISABLE_RATE_LIMITS", "true")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

# Ensure all SQLAlchemy models are registered with the declarative Base so
# metadata.create_all creates every table.
from matchday import db, models  # noqa: F401
from matchday.cache import season_stats_cache


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def jwt_secret(monkeypatch):
    """Ensure a strong JWT secret is present for all tests."""
    monkeypatch.setenv("JWT_SECRET", TEST_JWT_SECRET)
    yield


@pytest.fixture(autouse=True)
def clear_stats_cache():
    asyncio.run(season_stats_cache.clear())
    yield


async def _create_schema(engine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(db.Base.metadata.create_all)


@pytest.fixture
async def session():
    """A fresh in-memory database per test, bound to the test's event loop."""

    engine = db.build_engine("sqlite+aiosqlite:///:memory:")
    await _create_schema(engine)
    Session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with Session() as s:
        yield s
    await engine.dispose()


@pytest.fixture
def file_db(tmp_path):
    """File-backed database for tests that cross event loops (TestClient).

    Returns the session factory; NullPool hands every loop its own connection.
    """

    engine = db.build_engine(f"sqlite+aiosqlite:///{tmp_path / 'matchday.db'}")
    asyncio.run(_create_schema(engine))
    yield sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    asyncio.run(engine.dispose())

