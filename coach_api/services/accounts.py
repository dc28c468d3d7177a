# coach_api/services/accounts.py

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from coach_api.models.user_models import User
from coach_api.services.auth_utils import (
    dummy_verify_password,
    hash_password,
    verify_password,
)

logger = logging.getLogger("coach_api.accounts")


class InvalidCredentials(Exception):
    message = "Invalid credentials"


class AccountDeactivated(Exception):
    message = "Account deactivated"


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(User.email == email).one_or_none()


def get_user_by_id(db: Session, user_id: int) -> Optional[User]:
    return db.query(User).filter(User.id == user_id).one_or_none()


def list_users(db: Session) -> List[User]:
    return db.query(User).order_by(User.id).all()


def authenticate(db: Session, email: str, password: str) -> User:
    """
    Check credentials and return the user.

    Unknown email and wrong password both raise InvalidCredentials so the
    caller cannot tell which accounts exist. The active flag is only
    checked after the password matches.
    """
    user = get_user_by_email(db, email)
    if not user:
        dummy_verify_password()
        raise InvalidCredentials()

    if not verify_password(password, user.hashed_password):
        raise InvalidCredentials()

    if not user.is_active:
        raise AccountDeactivated()

    return user


def set_user_active(db: Session, user_id: int, is_active: bool) -> Optional[User]:
    """Returns None when no such user exists."""
    user = get_user_by_id(db, user_id)
    if not user:
        return None

    user.is_active = is_active
    db.commit()
    db.refresh(user)

    logger.info("User %s %s", user.id, "activated" if is_active else "deactivated")
    return user


def ensure_bootstrap_admin(db: Session, email: str, password: str) -> User:
    """
    Create the first admin account if `email` is not registered yet.

    An existing account is returned untouched; its password is never reset.
    """
    existing = get_user_by_email(db, email)
    if existing:
        if not existing.is_admin:
            logger.warning("Bootstrap admin %s exists but is not an admin", email)
        return existing

    user = User(
        email=email,
        hashed_password=hash_password(password),
        is_admin=True,
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)

    logger.info("Bootstrap admin %s created", email)
    return user
