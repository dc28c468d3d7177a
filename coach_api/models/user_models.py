# coach_api/models/user_models.py

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey
from datetime import datetime

from coach_api.db.engine import Base


class User(Base):
    """
    Invited member (or admin).
    Rows are created by signup with a valid invite code and are never deleted;
    admins only flip `is_active`.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    # Stored exactly as submitted, lookups are case-sensitive
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)

    # Code redeemed at signup (empty for the bootstrap admin)
    invite_code = Column(String, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)
    is_admin = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)


class InviteCode(Base):
    """
    Single-use signup capability.

    `is_used` flips to True exactly once, in the same transaction that creates
    the user recorded in `used_by`.
    """
    __tablename__ = "invite_codes"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String, unique=True, index=True, nullable=False)

    is_used = Column(Boolean, default=False, nullable=False)
    used_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    used_at = Column(DateTime, nullable=True)

    # Admin who minted the code
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
