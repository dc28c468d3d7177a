import os

# Must be set before coach_api is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("PASSWORD_HASH_ROUNDS", "1000")

import pytest
from faker import Faker
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from coach_api.config import AUTH_COOKIE_NAME
from coach_api.db.engine import Base
from coach_api.main import app, get_completion_client, get_db
from coach_api.models.user_models import User
from coach_api.services.auth_utils import SessionIdentity, hash_password

fake = Faker()


class FakeCompletionClient:
    """Stands in for the LLM provider and records every call."""

    def __init__(self, reply="Lead with their 3 AM thought, not your credentials."):
        self.reply = reply
        self.error = None
        self.calls = []

    def complete(self, system_prompt, user_message, max_tokens):
        self.calls.append(
            {
                "system_prompt": system_prompt,
                "user_message": user_message,
                "max_tokens": max_tokens,
            }
        )
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    db = session_factory()
    yield db
    db.close()


@pytest.fixture
def completion_client():
    return FakeCompletionClient()


@pytest.fixture
def client(session_factory, completion_client):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_completion_client] = lambda: completion_client
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def token_service():
    return app.state.token_service


@pytest.fixture
def make_user(session_factory):
    """Insert a user directly and return (id, email, password)."""

    def _make_user(email=None, password="pw123456", is_admin=False, is_active=True):
        email = email or fake.unique.email()
        db = session_factory()
        try:
            user = User(
                email=email,
                hashed_password=hash_password(password),
                is_admin=is_admin,
                is_active=is_active,
            )
            db.add(user)
            db.commit()
            return user.id, email, password
        finally:
            db.close()

    return _make_user


@pytest.fixture
def login_as(client, token_service):
    """Put a session cookie for the given user on the test client; returns the token."""

    def _login_as(user_id, email, is_admin=False):
        token = token_service.issue(
            SessionIdentity(user_id=user_id, email=email, is_admin=is_admin)
        )
        client.cookies.set(AUTH_COOKIE_NAME, token)
        return token

    return _login_as
