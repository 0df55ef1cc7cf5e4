from pydantic import BaseModel, Field


class VariantAssignmentModel(BaseModel):
    """The variant a user resolves to for one experiment."""

    experiment_key: str
    user_id: str
    variant: str = Field(..., description="The name of the variant the user was assigned.")
    is_in_treatment: bool
