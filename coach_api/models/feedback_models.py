# coach_api/models/feedback_models.py

from datetime import datetime
from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    ForeignKey,
    Text,
)

from coach_api.db.engine import Base


class UserFoundation(Base):
    """
    Per-user profile context that personalises every feedback prompt.

    At most one row per user; the owner upserts it through /api/foundation.
    """
    __tablename__ = "user_foundations"

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(
        Integer,
        ForeignKey("users.id"),
        unique=True,
        nullable=False,
        index=True,
    )

    voice_guide = Column(Text, nullable=True)
    target_audience = Column(Text, nullable=True)
    audience_pain_points = Column(Text, nullable=True)
    unique_positioning = Column(Text, nullable=True)
    audience_observations = Column(Text, nullable=True)
    offer_description = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)


class FeedbackRequest(Base):
    """
    History of generated feedback. Append-only: one row per successful
    completion call.
    """
    __tablename__ = "feedback_requests"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # The raw content the member submitted
    content = Column(Text, nullable=False)

    # Tool identifier as submitted, e.g. "week1Recognition"
    tool_type = Column(String, nullable=False)

    feedback = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
