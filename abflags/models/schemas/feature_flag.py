from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class FeatureFlagCreateModel(BaseModel):
    """Schema for creating a new feature flag / experiment (API Input)."""

    key: str = Field(..., min_length=1, description="Unique flag key, e.g. 'checkout_redesign'")
    description: Optional[str] = None
    enabled: bool = True
    rollout_percentage: int = Field(
        0,
        ge=0,
        le=100,
        description="Percentage of users eligible for the treatment variant.",
    )


class FeatureFlagResponseModel(BaseModel):
    """Data model for a persistent feature flag record."""

    id: str
    key: str
    description: Optional[str] = None
    enabled: bool
    rollout_percentage: int = Field(..., ge=0, le=100)
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RolloutUpdateModel(BaseModel):
    # Out of range values are clamped by the service rather than rejected
    rollout_percentage: float = Field(..., allow_inf_nan=False)


class FlagToggleModel(BaseModel):
    enabled: bool


class ExperimentCountsModel(BaseModel):
    """A flag together with how many users landed in each variant."""

    flag: FeatureFlagResponseModel
    control_count: int = 0
    treatment_count: int = 0


class ResetAssignmentsResponseModel(BaseModel):
    flag_id: str
    deleted: int


class UserFlagsResponseModel(BaseModel):
    """All flags resolved for one user."""

    flags: Dict[str, bool] = Field(
        default_factory=dict, description="key -> whether the user is in treatment"
    )
    variants: Dict[str, str] = Field(
        default_factory=dict, description="key -> variant name ('control' | 'treatment')"
    )


class ExperimentListResponseModel(BaseModel):
    experiments: List[ExperimentCountsModel]
