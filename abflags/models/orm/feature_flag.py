from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from .base import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --- Feature Flag / Experiment Model ---
class FeatureFlagORM(Base):
    __tablename__ = "feature_flags"

    # --- Core Identifiers ---
    id = Column(String, primary_key=True)
    key = Column(String, nullable=False, unique=True, index=True)
    description = Column(Text, nullable=True)

    # --- Rollout ---
    # Disabled flags resolve every user to the baseline variant
    enabled = Column(Boolean, default=True, nullable=False)
    # Share of users eligible for the treatment variant
    rollout_percentage = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "rollout_percentage >= 0 AND rollout_percentage <= 100",
            name="rollout_percentage_range",
        ),
    )

    # One flag has many user assignments; rows go away with the flag
    assignments = relationship(
        "AssignmentORM",
        back_populates="feature_flag",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
