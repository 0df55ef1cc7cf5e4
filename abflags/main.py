import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Path
import uvicorn
from sqlalchemy.ext.asyncio import AsyncSession
from starlette import status

from abflags.core.auth import require_admin_token, require_auth_token
from abflags.core.db import get_db, init_models
from abflags.core.settings import config_settings
from abflags.models.schemas.assignment import VariantAssignmentModel
from abflags.models.schemas.feature_flag import (
    ExperimentListResponseModel,
    FeatureFlagCreateModel,
    FeatureFlagResponseModel,
    FlagToggleModel,
    ResetAssignmentsResponseModel,
    RolloutUpdateModel,
    UserFlagsResponseModel,
)
from abflags.services.bucketing import TREATMENT
from abflags.services.experiment_service import ExperimentService

logging.basicConfig(
    level=config_settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if config_settings.CREATE_TABLES_ON_STARTUP:
        await init_models()
        logger.info("Database tables ready")
    yield


app = FastAPI(
    title="abflags",
    description="Feature flags and A/B experiment assignment",
    version="0.1.0",
    lifespan=lifespan,
)


@app.get("/health", status_code=status.HTTP_200_OK, summary="Liveness probe")
async def health():
    return {"status": "ok"}


# --- Resolution ---


@app.get(
    "/users/{user_id}/feature-flags",
    response_model=UserFlagsResponseModel,
    status_code=status.HTTP_200_OK,
    summary="Resolve every flag for a user",
    dependencies=[Depends(require_auth_token)],
)
async def get_user_feature_flags(
    user_id: str = Path(..., description="The ID of the user."),
    db: AsyncSession = Depends(get_db),
):
    """
    Returns every flag resolved for the user, both as booleans (in treatment or
    not) and as variant names. Missing assignments are created on the way.
    """
    experiment_service = ExperimentService(db)
    return await experiment_service.get_user_flags(user_id)


@app.get(
    "/experiments/{experiment_key}/variant/{user_id}",
    response_model=VariantAssignmentModel,
    status_code=status.HTTP_200_OK,
    summary="Get user variant",
    dependencies=[Depends(require_auth_token)],
)
async def get_user_variant(
    experiment_key: str = Path(..., description="The key of the experiment."),
    user_id: str = Path(..., description="The ID of the user."),
    db: AsyncSession = Depends(get_db),
):
    """
    Retrieves a user's variant. If no assignment exists, a new, persistent
    assignment is created from the experiment's rollout percentage.
    """
    experiment_service = ExperimentService(db)
    variant = await experiment_service.get_variant(user_id, experiment_key)

    return VariantAssignmentModel(
        experiment_key=experiment_key,
        user_id=user_id,
        variant=variant,
        is_in_treatment=variant == TREATMENT,
    )


# --- Administration ---


@app.post(
    "/feature-flags",
    response_model=FeatureFlagResponseModel,
    status_code=status.HTTP_201_CREATED,
    summary="Create a feature flag",
    dependencies=[Depends(require_admin_token)],
)
async def post_feature_flag(
    flag_data: FeatureFlagCreateModel,
    db: AsyncSession = Depends(get_db),
):
    experiment_service = ExperimentService(db)
    return await experiment_service.create_flag(flag_data)


@app.get(
    "/admin/experiments",
    response_model=ExperimentListResponseModel,
    status_code=status.HTTP_200_OK,
    summary="List flags with assignment counts",
    dependencies=[Depends(require_admin_token)],
)
async def get_experiments(db: AsyncSession = Depends(get_db)):
    experiment_service = ExperimentService(db)
    experiments = await experiment_service.get_experiments_with_counts()
    return ExperimentListResponseModel(experiments=experiments)


@app.put(
    "/feature-flags/{flag_id}/rollout",
    response_model=FeatureFlagResponseModel,
    status_code=status.HTTP_200_OK,
    summary="Change rollout percentage",
    dependencies=[Depends(require_admin_token)],
)
async def put_rollout_percentage(
    rollout: RolloutUpdateModel,
    flag_id: str = Path(..., description="The ID of the feature flag."),
    db: AsyncSession = Depends(get_db),
):
    experiment_service = ExperimentService(db)
    return await experiment_service.update_rollout_percentage(
        flag_id, rollout.rollout_percentage
    )


@app.put(
    "/feature-flags/{flag_id}/enabled",
    response_model=FeatureFlagResponseModel,
    status_code=status.HTTP_200_OK,
    summary="Enable or disable a flag",
    dependencies=[Depends(require_admin_token)],
)
async def put_flag_enabled(
    toggle: FlagToggleModel,
    flag_id: str = Path(..., description="The ID of the feature flag."),
    db: AsyncSession = Depends(get_db),
):
    experiment_service = ExperimentService(db)
    return await experiment_service.toggle_feature_flag(flag_id, toggle.enabled)


@app.delete(
    "/feature-flags/{flag_id}/assignments",
    response_model=ResetAssignmentsResponseModel,
    status_code=status.HTTP_200_OK,
    summary="Reset all assignments of a flag",
    dependencies=[Depends(require_admin_token)],
)
async def delete_flag_assignments(
    flag_id: str = Path(..., description="The ID of the feature flag."),
    db: AsyncSession = Depends(get_db),
):
    experiment_service = ExperimentService(db)
    deleted = await experiment_service.reset_assignments(flag_id)
    return ResetAssignmentsResponseModel(flag_id=flag_id, deleted=deleted)


# Entry point for running the application directly (local development)
if __name__ == "__main__":
    uvicorn.run("abflags.main:app", host="0.0.0.0", port=8000, reload=True)
