# coach_api/services/invites.py

import logging
import secrets
from datetime import datetime
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from coach_api.models.user_models import InviteCode, User
from coach_api.services.auth_utils import hash_password

logger = logging.getLogger("coach_api.invites")

# 16 random bytes -> 32 hex characters
INVITE_CODE_BYTES = 16


class InviteRejected(Exception):
    """The invite code does not exist or has already been redeemed."""

    message = "Invalid or already used invite code"


class EmailAlreadyRegistered(Exception):
    message = "Email already registered"


def generate_invite_code(db: Session, created_by: Optional[int] = None) -> InviteCode:
    """
    Mint and persist a fresh, unused invite code.

    Collisions are not retried: 128 random bits make them negligible, and
    the unique index would surface one as an IntegrityError anyway.
    """
    invite = InviteCode(
        code=secrets.token_hex(INVITE_CODE_BYTES),
        is_used=False,
        created_by=created_by,
    )
    db.add(invite)
    db.commit()
    db.refresh(invite)

    logger.info("Invite code %s… minted by user %s", invite.code[:6], created_by)
    return invite


def find_unused_invite(db: Session, code: str) -> Optional[InviteCode]:
    return (
        db.query(InviteCode)
        .filter(InviteCode.code == code, InviteCode.is_used.is_(False))
        .one_or_none()
    )


def invite_url(base_url: str, code: str) -> str:
    return f"{base_url.rstrip('/')}/signup?invite={code}"


def _mark_invite_used(db: Session, code: str, user_id: int) -> bool:
    """
    Flip the invite to used only if it is still unused.

    The `is_used = false` predicate is the concurrency guard: when two
    signups race for one code, only the first UPDATE matches a row.
    """
    result = db.execute(
        update(InviteCode)
        .where(InviteCode.code == code, InviteCode.is_used.is_(False))
        .values(is_used=True, used_by=user_id, used_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def signup_with_invite(db: Session, email: str, password: str, code: str) -> User:
    """
    Create a member account by redeeming an invite code.

    The user row and the invite consumption commit together or not at all:
    a code is never marked used without its user, and a used code always
    raises InviteRejected.
    """
    if find_unused_invite(db, code) is None:
        raise InviteRejected()

    existing = db.query(User).filter(User.email == email).one_or_none()
    if existing:
        raise EmailAlreadyRegistered()

    # Hash before touching the database so the write transaction stays short
    hashed = hash_password(password)

    try:
        user = User(
            email=email,
            hashed_password=hashed,
            invite_code=code,
            is_active=True,
            is_admin=False,
        )
        db.add(user)
        db.flush()

        if not _mark_invite_used(db, code, user.id):
            db.rollback()
            logger.info("Signup for %s lost the race for invite %s…", email, code[:6])
            raise InviteRejected()

        db.commit()
    except IntegrityError:
        db.rollback()
        raise EmailAlreadyRegistered()

    db.refresh(user)
    logger.info("User %s signed up with invite %s…", user.id, code[:6])
    return user
