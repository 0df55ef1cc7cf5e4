import logging
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from abflags.models.orm.feature_flag import FeatureFlagORM
from abflags.models.schemas.feature_flag import FeatureFlagCreateModel

logger = logging.getLogger(__name__)


class FeatureFlagRepository:
    def __init__(self, db: AsyncSession):
        """Initializes the repository with a database session."""
        self.db = db

    async def get_by_key(self, key: str) -> Optional[FeatureFlagORM]:
        stmt = select(FeatureFlagORM).where(FeatureFlagORM.key == key)
        return (await self.db.scalars(stmt)).one_or_none()

    async def get_by_id(self, flag_id: str) -> Optional[FeatureFlagORM]:
        return await self.db.get(FeatureFlagORM, flag_id)

    async def list_flags(self) -> list[FeatureFlagORM]:
        """All flags, newest first."""
        stmt = select(FeatureFlagORM).order_by(
            FeatureFlagORM.created_at.desc(), FeatureFlagORM.key
        )
        return list((await self.db.scalars(stmt)).all())

    async def create_flag(self, flag_data: FeatureFlagCreateModel) -> FeatureFlagORM:
        """
        Creates a new feature flag record.

        Raises:
            ValueError: a flag with the same key already exists.
        """
        flag_dict = flag_data.model_dump()
        flag_dict["id"] = str(uuid.uuid4())

        db_flag = FeatureFlagORM(**flag_dict)
        try:
            self.db.add(db_flag)
            await self.db.commit()
            await self.db.refresh(db_flag)

        except IntegrityError as e:
            await self.db.rollback()
            logger.info("Rejected duplicate feature flag key %r", flag_data.key)
            raise ValueError(f"Feature flag {flag_data.key!r} already exists.") from e

        except SQLAlchemyError:
            await self.db.rollback()
            logger.exception("Database error creating feature flag %r", flag_data.key)
            raise

        return db_flag

    async def update_flag(self, flag_id: str, **values) -> Optional[FeatureFlagORM]:
        """
        Applies column updates to a flag and returns the refreshed row,
        or None when no flag has this id.
        """
        db_flag = await self.get_by_id(flag_id)
        if db_flag is None:
            return None

        try:
            for name, value in values.items():
                setattr(db_flag, name, value)
            await self.db.commit()
            await self.db.refresh(db_flag)

        except SQLAlchemyError:
            await self.db.rollback()
            logger.exception("Database error updating feature flag %s", flag_id)
            raise

        return db_flag
