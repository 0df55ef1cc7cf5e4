from collections import defaultdict
from typing import Iterable, Optional

from sqlalchemy import delete, func, insert, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from abflags.core.exceptions import AssignmentConflictError
from abflags.models.orm.assignment import AssignmentORM
from abflags.models.orm.feature_flag import utcnow


class AssignmentRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_assignment(
        self, user_id: str, flag_id: str
    ) -> Optional[AssignmentORM]:
        """Retrieves the persistent assignment for a user in a specific flag."""
        stmt = select(AssignmentORM).where(
            AssignmentORM.user_id == user_id,
            AssignmentORM.feature_flag_id == flag_id,
        )
        return (await self.db.scalars(stmt)).one_or_none()

    async def get_assignments_for_user(
        self, user_id: str, flag_ids: Iterable[str]
    ) -> list[AssignmentORM]:
        """Retrieves all of a user's assignments for the given flags in one query."""
        flag_ids = list(flag_ids)
        if not flag_ids:
            return []

        stmt = select(AssignmentORM).where(
            AssignmentORM.user_id == user_id,
            AssignmentORM.feature_flag_id.in_(flag_ids),
        )
        return list((await self.db.scalars(stmt)).all())

    async def create_assignment(
        self, user_id: str, flag_id: str, variant: str
    ) -> AssignmentORM:
        """
        Creates a new assignment record.

        Raises:
            AssignmentConflictError: a row for (user_id, flag_id) already exists.
            SQLAlchemyError: any other database failure.
        """
        db_assignment = AssignmentORM(
            user_id=user_id,
            feature_flag_id=flag_id,
            variant=variant,
            assigned_at=utcnow(),
        )
        try:
            self.db.add(db_assignment)
            await self.db.commit()

        except IntegrityError as e:
            await self.db.rollback()
            raise AssignmentConflictError(user_id, flag_id) from e

        except SQLAlchemyError:
            await self.db.rollback()
            raise

        return db_assignment

    async def create_assignments(self, user_id: str, variants_by_flag: dict[str, str]) -> int:
        """
        Inserts all of a user's new assignments with a single statement.

        The batch is all or nothing: one duplicate row fails the whole insert.

        Raises:
            AssignmentConflictError: at least one row already exists.
            SQLAlchemyError: any other database failure.
        """
        if not variants_by_flag:
            return 0

        assigned_at = utcnow()
        rows = [
            {
                "user_id": user_id,
                "feature_flag_id": flag_id,
                "variant": variant,
                "assigned_at": assigned_at,
            }
            for flag_id, variant in variants_by_flag.items()
        ]
        try:
            await self.db.execute(insert(AssignmentORM).values(rows))
            await self.db.commit()

        except IntegrityError as e:
            await self.db.rollback()
            raise AssignmentConflictError(user_id) from e

        except SQLAlchemyError:
            await self.db.rollback()
            raise

        return len(rows)

    async def delete_assignments_for_flag(self, flag_id: str) -> int:
        """Deletes every assignment of a flag and returns how many rows went."""
        stmt = delete(AssignmentORM).where(AssignmentORM.feature_flag_id == flag_id)
        try:
            result = await self.db.execute(stmt)
            await self.db.commit()

        except SQLAlchemyError:
            await self.db.rollback()
            raise

        return result.rowcount

    async def count_by_variant(self) -> dict[str, dict[str, int]]:
        """Assignment counts per flag and variant: {flag_id: {variant: count}}."""
        stmt = select(
            AssignmentORM.feature_flag_id,
            AssignmentORM.variant,
            func.count(),
        ).group_by(AssignmentORM.feature_flag_id, AssignmentORM.variant)

        counts: dict[str, dict[str, int]] = defaultdict(dict)
        for flag_id, variant, count in (await self.db.execute(stmt)).all():
            counts[flag_id][variant] = count
        return dict(counts)
