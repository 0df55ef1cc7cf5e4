import os

# Settings are read once at import time, so the test environment goes first
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["TOKENS"] = '["user-token", "admin-token"]'
os.environ["ADMIN_TOKENS"] = '["admin-token"]'
os.environ["CREATE_TABLES_ON_STARTUP"] = "false"

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from abflags.models.orm.assignment import AssignmentORM  # noqa: F401
from abflags.models.orm.base import Base
from abflags.models.orm.feature_flag import FeatureFlagORM
from abflags.models.schemas.feature_flag import FeatureFlagCreateModel
from abflags.repositories.feature_flag_repo import FeatureFlagRepository
from abflags.services.bucketing import hash_assignment


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'abflags.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_flag(session_factory):
    """Creates a flag in its own session, the way an operator request would."""

    async def _make_flag(
        key: str, rollout_percentage: int = 50, enabled: bool = True
    ) -> FeatureFlagORM:
        async with session_factory() as session:
            return await FeatureFlagRepository(session).create_flag(
                FeatureFlagCreateModel(
                    key=key, rollout_percentage=rollout_percentage, enabled=enabled
                )
            )

    return _make_flag


def find_user(experiment_key: str, predicate) -> str:
    """First synthetic user id whose bucket for the experiment satisfies predicate."""
    for i in range(10_000):
        user_id = f"user-{i}"
        if predicate(hash_assignment(user_id, experiment_key)):
            return user_id
    raise AssertionError(f"no user found for {experiment_key!r}")
