# coach_api/services/feedback_service.py

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from coach_api.config import FEEDBACK_MAX_TOKENS
from coach_api.models.feedback_models import FeedbackRequest, UserFoundation
from coach_api.services.llm_client import CompletionClient
from coach_api.services.prompt_composer import FOUNDATION_FIELDS, compose_system_prompt

logger = logging.getLogger("coach_api.feedback")

# Returned when the provider answers without any text
FALLBACK_FEEDBACK = "Unable to generate feedback"


class FeedbackValidationError(Exception):
    message = "Missing required fields: content and toolType"


def get_foundation(db: Session, user_id: int) -> Optional[UserFoundation]:
    return (
        db.query(UserFoundation)
        .filter(UserFoundation.user_id == user_id)
        .one_or_none()
    )


def save_foundation(db: Session, user_id: int, data: Dict[str, Any]) -> UserFoundation:
    """
    Create the user's foundation or update the fields present in `data`.
    Keys outside the six foundation attributes are ignored.
    """
    allowed = {attr for _, attr in FOUNDATION_FIELDS}
    values = {k: v for k, v in data.items() if k in allowed}

    foundation = get_foundation(db, user_id)
    if foundation:
        for key, value in values.items():
            setattr(foundation, key, value)
        foundation.updated_at = datetime.utcnow()
    else:
        foundation = UserFoundation(user_id=user_id, **values)
        db.add(foundation)

    db.commit()
    db.refresh(foundation)
    return foundation


def submit_feedback(
    db: Session,
    completion_client: CompletionClient,
    user_id: int,
    content: Optional[str],
    tool_type: Optional[str],
    voice_guide: Optional[str] = None,
    week_guide: Optional[str] = None,
    max_tokens: int = FEEDBACK_MAX_TOKENS,
) -> str:
    """
    Generate coaching feedback for `content` and record it.

    The record is written before returning; if that write fails the error
    propagates and the generated text is not returned.
    """
    if not content or not tool_type:
        raise FeedbackValidationError()

    foundation = get_foundation(db, user_id)
    system_prompt = compose_system_prompt(tool_type, foundation, voice_guide, week_guide)

    text = completion_client.complete(system_prompt, content, max_tokens=max_tokens)
    feedback = text or FALLBACK_FEEDBACK

    try:
        db.add(
            FeedbackRequest(
                user_id=user_id,
                content=content,
                tool_type=tool_type,
                feedback=feedback,
            )
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.error(
            "Discarding generated feedback for user %s: could not persist (%d chars)",
            user_id,
            len(feedback),
        )
        raise

    logger.info("Feedback generated for user %s with tool %s", user_id, tool_type)
    return feedback
