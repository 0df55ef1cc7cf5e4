# services/experiment_service.py

import logging
import math
from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from abflags.core.exceptions import AssignmentConflictError
from abflags.models.orm.feature_flag import FeatureFlagORM
from abflags.models.schemas.feature_flag import (
    ExperimentCountsModel,
    FeatureFlagCreateModel,
    FeatureFlagResponseModel,
    UserFlagsResponseModel,
)
from abflags.repositories.assignment_repo import AssignmentRepository
from abflags.repositories.feature_flag_repo import FeatureFlagRepository
from abflags.services.bucketing import CONTROL, TREATMENT, rollout_variant

logger = logging.getLogger(__name__)


class ExperimentService:
    def __init__(self, db: AsyncSession):
        self.flag_repo = FeatureFlagRepository(db)
        self.assignment_repo = AssignmentRepository(db)

    @staticmethod
    def _fixed_variant(flag: FeatureFlagORM) -> Optional[str]:
        """
        The variant every user gets when no bucketing is needed, or None.

        Disabled wins over any stored assignment; fully on / fully off flags
        never write assignment rows.
        """
        if not flag.enabled:
            return CONTROL
        if flag.rollout_percentage >= 100:
            return TREATMENT
        if flag.rollout_percentage <= 0:
            return CONTROL
        return None

    # --- Resolution ---

    async def get_variant(self, user_id: str, experiment_key: str) -> str:
        """
        Gets the variant a user is assigned for an experiment.

        1. Unknown, disabled, 0% and 100% flags resolve without touching assignments.
        2. An existing assignment always wins, so rollout changes never flip a user.
        3. Otherwise bucket the user by hash and persist the decision.

        Never raises: lookup failures resolve to the control variant, since a
        flag check must not break the page it gates.
        """
        try:
            flag = await self.flag_repo.get_by_key(experiment_key)
            if flag is None:
                return CONTROL

            fixed = self._fixed_variant(flag)
            if fixed is not None:
                return fixed

            # Plain values: the ORM row is expired if the insert below rolls back
            flag_id, rollout_percentage = flag.id, flag.rollout_percentage

            existing = await self.assignment_repo.get_assignment(user_id, flag_id)
            if existing is not None:
                return existing.variant

        except Exception:
            logger.exception("Error getting variant for %r; using control", experiment_key)
            return CONTROL

        variant = rollout_variant(user_id, experiment_key, rollout_percentage)
        return await self._persist_assignment(user_id, flag_id, variant)

    async def _persist_assignment(self, user_id: str, flag_id: str, variant: str) -> str:
        """
        Stores a freshly computed assignment and returns the variant to serve.

        Losing an insert race means another request already decided; its stored
        variant is served instead of ours. Exactly one re-read is attempted.
        """
        try:
            await self.assignment_repo.create_assignment(user_id, flag_id, variant)
            return variant

        except AssignmentConflictError:
            logger.debug("Assignment race for user %s on flag %s; re-reading", user_id, flag_id)

        except Exception:
            logger.warning(
                "Could not persist assignment for user %s on flag %s; serving %r unrecorded",
                user_id,
                flag_id,
                variant,
                exc_info=True,
            )
            return variant

        try:
            winner = await self.assignment_repo.get_assignment(user_id, flag_id)
        except Exception:
            logger.warning(
                "Re-read after assignment race failed for user %s on flag %s",
                user_id,
                flag_id,
                exc_info=True,
            )
            return variant

        return winner.variant if winner is not None else variant

    async def get_all_variants(self, user_id: str) -> dict[str, str]:
        """
        Resolves every experiment for a user: experiment key -> variant.

        Two reads (flags, then the user's assignments) and at most one batched
        insert. Unlike get_variant, a lost insert race is not re-read; the unique
        key keeps whichever rows got there first and later calls will serve them.
        """
        try:
            flags = await self.flag_repo.list_flags()

            result: dict[str, str] = {}
            bucketed: list[FeatureFlagORM] = []
            for flag in flags:
                fixed = self._fixed_variant(flag)
                if fixed is not None:
                    result[flag.key] = fixed
                else:
                    bucketed.append(flag)

            assignments = await self.assignment_repo.get_assignments_for_user(
                user_id, [flag.id for flag in bucketed]
            )
            stored = {a.feature_flag_id: a.variant for a in assignments}

            new_assignments: dict[str, str] = {}
            for flag in bucketed:
                if flag.id in stored:
                    result[flag.key] = stored[flag.id]
                    continue

                variant = rollout_variant(user_id, flag.key, flag.rollout_percentage)
                result[flag.key] = variant
                new_assignments[flag.id] = variant

        except Exception:
            logger.exception("Error getting all variants for user %s", user_id)
            return {}

        if new_assignments:
            try:
                await self.assignment_repo.create_assignments(user_id, new_assignments)
            except AssignmentConflictError:
                logger.debug("Batch assignment race for user %s; keeping stored rows", user_id)
            except Exception:
                logger.warning(
                    "Error batch-inserting %d assignments for user %s",
                    len(new_assignments),
                    user_id,
                    exc_info=True,
                )

        return result

    async def is_feature_enabled(self, flag_key: str, user_id: str) -> bool:
        """Whether the user is in the treatment variant of a flag."""
        return await self.get_variant(user_id, flag_key) == TREATMENT

    async def get_user_flags(self, user_id: str) -> UserFlagsResponseModel:
        """Every flag for a user, as variant names and as in-treatment booleans."""
        variants = await self.get_all_variants(user_id)
        return UserFlagsResponseModel(
            flags={key: variant == TREATMENT for key, variant in variants.items()},
            variants=variants,
        )

    # --- Administration ---

    async def create_flag(self, flag_data: FeatureFlagCreateModel) -> FeatureFlagResponseModel:
        try:
            flag = await self.flag_repo.create_flag(flag_data)
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

        logger.info(
            "Created feature flag %r (enabled=%s, rollout=%d%%)",
            flag.key,
            flag.enabled,
            flag.rollout_percentage,
        )
        return FeatureFlagResponseModel.model_validate(flag)

    async def _update_flag(self, flag_id: str, **values) -> FeatureFlagResponseModel:
        flag = await self.flag_repo.update_flag(flag_id, **values)
        if flag is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Feature flag {flag_id} not found.",
            )
        return FeatureFlagResponseModel.model_validate(flag)

    async def update_rollout_percentage(
        self, flag_id: str, percentage: float
    ) -> FeatureFlagResponseModel:
        """
        Sets the rollout percentage, rounded half up and clamped to [0, 100].

        Existing assignments are kept; call reset_assignments to re-bucket them.
        """
        clamped = max(0, min(100, math.floor(percentage + 0.5)))
        flag = await self._update_flag(flag_id, rollout_percentage=clamped)
        logger.info("Rollout for flag %r set to %d%%", flag.key, clamped)
        return flag

    async def toggle_feature_flag(self, flag_id: str, enabled: bool) -> FeatureFlagResponseModel:
        flag = await self._update_flag(flag_id, enabled=enabled)
        logger.info("Flag %r %s", flag.key, "enabled" if enabled else "disabled")
        return flag

    async def reset_assignments(self, flag_id: str) -> int:
        """
        Deletes every assignment of a flag, so the whole population is
        re-bucketed on its next evaluation.
        """
        flag = await self.flag_repo.get_by_id(flag_id)
        if flag is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Feature flag {flag_id} not found.",
            )
        flag_key = flag.key

        deleted = await self.assignment_repo.delete_assignments_for_flag(flag_id)
        logger.info("Reset %d assignments for flag %r", deleted, flag_key)
        return deleted

    async def get_experiments_with_counts(self) -> list[ExperimentCountsModel]:
        """All flags, newest first, with per-variant assignment counts."""
        flags = await self.flag_repo.list_flags()
        counts = await self.assignment_repo.count_by_variant()

        return [
            ExperimentCountsModel(
                flag=FeatureFlagResponseModel.model_validate(flag),
                control_count=counts.get(flag.id, {}).get(CONTROL, 0),
                treatment_count=counts.get(flag.id, {}).get(TREATMENT, 0),
            )
            for flag in flags
        ]
