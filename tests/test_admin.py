"""Tests for operator controls: create, rollout, toggle, reset, counts."""

import pytest
from fastapi import HTTPException

from abflags.models.schemas.feature_flag import FeatureFlagCreateModel
from abflags.repositories.assignment_repo import AssignmentRepository
from abflags.services.bucketing import CONTROL, TREATMENT
from abflags.services.experiment_service import ExperimentService


class TestCreateFlag:
    async def test_create(self, db):
        flag = await ExperimentService(db).create_flag(
            FeatureFlagCreateModel(key="onboarding_v2", description="New onboarding", rollout_percentage=25)
        )
        assert flag.key == "onboarding_v2"
        assert flag.enabled is True
        assert flag.rollout_percentage == 25
        assert flag.id

    async def test_stored_row_repr_lists_columns(self, make_flag):
        flag = await make_flag("repr_me", rollout_percentage=10)
        text = repr(flag)
        assert text.startswith("FeatureFlagORM(id=")
        assert "key='repr_me'" in text
        assert "rollout_percentage=10" in text

    async def test_duplicate_key_conflicts(self, db, make_flag):
        await make_flag("taken")
        with pytest.raises(HTTPException) as exc_info:
            await ExperimentService(db).create_flag(FeatureFlagCreateModel(key="taken"))
        assert exc_info.value.status_code == 409

    def test_rollout_out_of_range_is_rejected(self):
        with pytest.raises(ValueError):
            FeatureFlagCreateModel(key="bad", rollout_percentage=101)


class TestUpdateRolloutPercentage:
    @pytest.mark.parametrize(
        "requested, stored",
        [(30, 30), (150, 100), (-5, 0), (33.5, 34), (33.4, 33), (99.6, 100), (0.4, 0)],
    )
    async def test_clamped_and_rounded(self, db, make_flag, requested, stored):
        flag = await make_flag("rollout", rollout_percentage=50)
        updated = await ExperimentService(db).update_rollout_percentage(flag.id, requested)
        assert updated.rollout_percentage == stored

    async def test_existing_assignments_untouched(self, session_factory, make_flag):
        flag = await make_flag("rollout", rollout_percentage=50)
        async with session_factory() as session:
            await AssignmentRepository(session).create_assignment("u-1", flag.id, TREATMENT)
            await ExperimentService(session).update_rollout_percentage(flag.id, 5)

        async with session_factory() as session:
            row = await AssignmentRepository(session).get_assignment("u-1", flag.id)
        assert row.variant == TREATMENT

    async def test_unknown_flag_is_not_found(self, db):
        with pytest.raises(HTTPException) as exc_info:
            await ExperimentService(db).update_rollout_percentage("missing", 10)
        assert exc_info.value.status_code == 404


class TestToggleFeatureFlag:
    async def test_toggle_round_trip(self, db, make_flag):
        flag = await make_flag("toggle", rollout_percentage=100)
        service = ExperimentService(db)

        assert (await service.toggle_feature_flag(flag.id, False)).enabled is False
        assert await service.get_variant("u-1", "toggle") == CONTROL

        assert (await service.toggle_feature_flag(flag.id, True)).enabled is True
        assert await service.get_variant("u-1", "toggle") == TREATMENT

    async def test_unknown_flag_is_not_found(self, db):
        with pytest.raises(HTTPException) as exc_info:
            await ExperimentService(db).toggle_feature_flag("missing", True)
        assert exc_info.value.status_code == 404


class TestResetAssignments:
    async def test_only_target_flag_is_cleared(self, session_factory, make_flag):
        target = await make_flag("target", rollout_percentage=50)
        other = await make_flag("other", rollout_percentage=50)
        async with session_factory() as session:
            repo = AssignmentRepository(session)
            await repo.create_assignment("u-1", target.id, TREATMENT)
            await repo.create_assignment("u-2", target.id, CONTROL)
            await repo.create_assignment("u-1", other.id, CONTROL)

        async with session_factory() as session:
            assert await ExperimentService(session).reset_assignments(target.id) == 2

        async with session_factory() as session:
            repo = AssignmentRepository(session)
            assert await repo.get_assignment("u-1", target.id) is None
            assert (await repo.get_assignment("u-1", other.id)).variant == CONTROL

    async def test_unknown_flag_is_not_found(self, db):
        with pytest.raises(HTTPException) as exc_info:
            await ExperimentService(db).reset_assignments("missing")
        assert exc_info.value.status_code == 404


class TestExperimentsWithCounts:
    async def test_counts_per_variant(self, session_factory, make_flag):
        busy = await make_flag("busy", rollout_percentage=50)
        await make_flag("idle", rollout_percentage=50)
        async with session_factory() as session:
            repo = AssignmentRepository(session)
            await repo.create_assignment("u-1", busy.id, TREATMENT)
            await repo.create_assignment("u-2", busy.id, TREATMENT)
            await repo.create_assignment("u-3", busy.id, CONTROL)

        async with session_factory() as session:
            experiments = await ExperimentService(session).get_experiments_with_counts()

        by_key = {e.flag.key: e for e in experiments}
        assert set(by_key) == {"busy", "idle"}
        assert (by_key["busy"].control_count, by_key["busy"].treatment_count) == (1, 2)
        assert (by_key["idle"].control_count, by_key["idle"].treatment_count) == (0, 0)
