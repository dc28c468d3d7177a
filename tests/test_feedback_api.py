import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from coach_api.main import app, get_db
from coach_api.models.feedback_models import FeedbackRequest, UserFoundation
from coach_api.services.feedback_service import (
    FALLBACK_FEEDBACK,
    FeedbackValidationError,
    submit_feedback,
)
from coach_api.services.llm_client import CompletionError, CompletionTimeout
from coach_api.services.prompt_composer import ToolType, template_for


FOUNDATION = {
    "voiceGuide": "Plain-spoken and warm",
    "targetAudience": "New coaches",
    "audiencePainPoints": "Nobody replies to posts",
    "uniquePositioning": "Recognition first",
    "audienceObservations": "They lurk at night",
    "offerDescription": "Group program",
}


@pytest.fixture
def member(make_user, login_as):
    user_id, email, _ = make_user()
    login_as(user_id, email)
    return user_id


# ═══════════════════════════════════════════════════════
# FEEDBACK
# ═══════════════════════════════════════════════════════

def test_feedback_requires_session(client, completion_client):
    response = client.post("/api/feedback", json={"content": "Hello", "toolType": "socialPost"})

    assert response.status_code == 401
    assert completion_client.calls == []


def test_feedback_missing_content(client, member, completion_client):
    response = client.post("/api/feedback", json={"toolType": "socialPost"})

    assert response.status_code == 400
    assert response.json() == {"error": "Missing required fields: content and toolType"}
    assert completion_client.calls == []


def test_feedback_missing_tool_type(client, member):
    response = client.post("/api/feedback", json={"content": "Hello"})
    assert response.status_code == 400


def test_feedback_success_is_recorded(client, member, completion_client, session_factory):
    response = client.post(
        "/api/feedback",
        json={"content": "I help coaches grow.", "toolType": "week1Recognition"},
    )

    assert response.status_code == 200
    assert response.json() == {"feedback": completion_client.reply}

    call = completion_client.calls[0]
    assert call["system_prompt"] == template_for(ToolType.WEEK1_RECOGNITION)
    assert call["user_message"] == "I help coaches grow."
    assert call["max_tokens"] == 4096

    db = session_factory()
    try:
        rows = db.query(FeedbackRequest).all()
        assert len(rows) == 1
        assert rows[0].user_id == member
        assert rows[0].tool_type == "week1Recognition"
        assert rows[0].feedback == completion_client.reply
    finally:
        db.close()


def test_feedback_uses_foundation_and_guides(client, member, completion_client):
    assert client.post("/api/foundation", json=FOUNDATION).status_code == 200

    response = client.post(
        "/api/feedback",
        json={
            "content": "Draft email",
            "toolType": "emailAnalyzer",
            "voiceGuide": "No hype words",
            "weekGuide": "Week 7 worksheet",
        },
    )

    assert response.status_code == 200
    prompt = completion_client.calls[0]["system_prompt"]
    assert prompt.startswith("USER'S FOUNDATION (Use this context for all analysis):")
    assert "Target Audience: New coaches" in prompt
    assert "ADDITIONAL VOICE GUIDE:\nNo hype words" in prompt
    assert "WEEK IMPLEMENTATION GUIDE:\nWeek 7 worksheet" in prompt
    assert prompt.endswith(template_for(ToolType.EMAIL_ANALYZER))


def test_unknown_tool_uses_generic_template(client, member, completion_client):
    response = client.post("/api/feedback", json={"content": "Hi", "toolType": "mystery"})

    assert response.status_code == 200
    assert completion_client.calls[0]["system_prompt"] == template_for(ToolType.CONTENT_CRITIQUE)


def test_empty_completion_gets_fallback_text(client, member, completion_client):
    completion_client.reply = None

    response = client.post("/api/feedback", json={"content": "Hi", "toolType": "socialPost"})

    assert response.status_code == 200
    assert response.json() == {"feedback": FALLBACK_FEEDBACK}


def test_provider_failure_is_500(client, member, completion_client, session_factory):
    completion_client.error = CompletionError("quota exceeded")

    response = client.post("/api/feedback", json={"content": "Hi", "toolType": "socialPost"})

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to generate feedback"}

    db = session_factory()
    try:
        assert db.query(FeedbackRequest).count() == 0
    finally:
        db.close()


def test_provider_timeout_is_500_and_retryable(client, member, completion_client):
    completion_client.error = CompletionTimeout("timed out")

    response = client.post("/api/feedback", json={"content": "Hi", "toolType": "socialPost"})

    assert response.status_code == 500
    assert response.json() == {"error": "Feedback generation timed out, please try again"}


def test_persistence_failure_discards_feedback(client, engine, member, completion_client):
    class FailingCommitSession(Session):
        def commit(self):
            raise OperationalError("INSERT INTO feedback_requests", {}, Exception("disk full"))

    FailingSession = sessionmaker(bind=engine, class_=FailingCommitSession)

    def failing_get_db():
        db = FailingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = failing_get_db

    response = client.post("/api/feedback", json={"content": "Hi", "toolType": "socialPost"})

    assert len(completion_client.calls) == 1
    assert response.status_code == 500
    assert response.json() == {"error": "Failed to generate feedback"}
    assert "feedback" not in response.json()


def test_deactivated_member_cannot_request_feedback(client, make_user, login_as, completion_client):
    user_id, email, _ = make_user(is_active=False)
    login_as(user_id, email)

    response = client.post("/api/feedback", json={"content": "Hi", "toolType": "socialPost"})

    assert response.status_code == 403
    assert completion_client.calls == []


def test_submit_feedback_validates_before_calling_provider(db_session, completion_client):
    with pytest.raises(FeedbackValidationError):
        submit_feedback(db_session, completion_client, user_id=1, content="", tool_type="socialPost")
    assert completion_client.calls == []


# ═══════════════════════════════════════════════════════
# FOUNDATION
# ═══════════════════════════════════════════════════════

def test_foundation_empty_by_default(client, member):
    response = client.get("/api/foundation")
    assert response.status_code == 200
    assert response.json() == {"foundation": None}


def test_foundation_requires_session(client):
    assert client.get("/api/foundation").status_code == 401
    assert client.post("/api/foundation", json=FOUNDATION).status_code == 401


def test_foundation_upsert(client, member, session_factory):
    response = client.post("/api/foundation", json=FOUNDATION)
    assert response.status_code == 200
    assert response.json() == {"message": "Foundation saved successfully"}

    response = client.post("/api/foundation", json={"targetAudience": "Seasoned coaches"})
    assert response.status_code == 200

    foundation = client.get("/api/foundation").json()["foundation"]
    assert foundation["targetAudience"] == "Seasoned coaches"
    assert foundation["voiceGuide"] == "Plain-spoken and warm"
    assert foundation["updatedAt"] is not None

    db = session_factory()
    try:
        assert db.query(UserFoundation).filter(UserFoundation.user_id == member).count() == 1
    finally:
        db.close()


def test_tools_listing(client):
    response = client.get("/api/tools")
    assert response.status_code == 200
    tools = response.json()["tools"]
    assert len(tools) == 12
    assert tools[0] == "contentCritique"
    assert "week8Refinement" in tools
