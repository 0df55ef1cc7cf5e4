from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    PrimaryKeyConstraint,
    String,
)
from sqlalchemy.orm import relationship

from .base import Base
from .feature_flag import utcnow


class AssignmentORM(Base):
    __tablename__ = "user_feature_assignments"

    user_id = Column(String, nullable=False, index=True)
    feature_flag_id = Column(
        String,
        ForeignKey("feature_flags.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    variant = Column(String, nullable=False)

    assigned_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    # The composite key is the only guard against two requests assigning the
    # same user concurrently: the second insert fails and must re-read.
    __table_args__ = (
        PrimaryKeyConstraint("user_id", "feature_flag_id", name="assignment_pk"),
    )

    feature_flag = relationship("FeatureFlagORM", back_populates="assignments")
