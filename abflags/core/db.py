from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from abflags.core.settings import config_settings
from abflags.models.orm.base import Base

# Imported so both tables are registered on Base.metadata before create_all
from abflags.models.orm.assignment import AssignmentORM  # noqa: F401
from abflags.models.orm.feature_flag import FeatureFlagORM  # noqa: F401

DATABASE_URL = config_settings.DATABASE_URL

# 1. SQLAlchemy Engine
# Manages the connection pool and dialect. Flag checks run inside request
# handlers, so every database call goes through the asyncio driver.
engine = create_async_engine(
    DATABASE_URL,
    echo=config_settings.DB_ECHO,
    # Only needed for SQLite to handle concurrent requests
    connect_args={"check_same_thread": False} if "sqlite" in DATABASE_URL else {},
)

# 2. SessionLocal
# Each request gets its own session (a unit of work). Objects stay readable
# after commit so services can build responses without another round trip.
SessionLocal = async_sessionmaker(
    bind=engine, autoflush=False, expire_on_commit=False, class_=AsyncSession
)


async def init_models() -> None:
    """Creates the feature flag and assignment tables if they do not exist."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db():
    """
    Dependency that yields a database session for a single request,
    and ensures the session is closed afterward.
    """
    async with SessionLocal() as db:
        yield db
