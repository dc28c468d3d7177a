# coach_api/services/auth_utils.py

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from coach_api.config import PASSWORD_HASH_ROUNDS

logger = logging.getLogger("coach_api.auth")

# Use pbkdf2_sha256 instead of bcrypt to avoid bcrypt/version issues on deploy
_context_kwargs = {}
if PASSWORD_HASH_ROUNDS:
    _context_kwargs["pbkdf2_sha256__default_rounds"] = PASSWORD_HASH_ROUNDS

pwd_context = CryptContext(
    schemes=["pbkdf2_sha256"],
    deprecated="auto",
    **_context_kwargs,
)


def hash_password(password: str) -> str:
    """
    Hash a plain-text password for storage.
    """
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a plain-text password against the stored hash.

    A wrong password returns False. A stored value passlib cannot identify
    raises ValueError: that is a broken record, not a failed login.
    """
    return pwd_context.verify(plain_password, hashed_password)


def dummy_verify_password() -> None:
    """
    Spend the same time as a real verify when the account does not exist.
    """
    pwd_context.dummy_verify()


@dataclass(frozen=True)
class SessionIdentity:
    """Who the session cookie says the caller is."""

    user_id: int
    email: str
    is_admin: bool


class SessionTokenService:
    """
    Issues and verifies signed, time-limited session tokens (JWT).

    There is no revocation list: a token stays valid until it expires or
    the secret is rotated. Logging out only drops the client's cookie.
    """

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        expires_in: timedelta = timedelta(days=30),
    ):
        if not secret_key:
            raise ValueError("secret_key must not be empty")
        self._secret_key = secret_key
        self._algorithm = algorithm
        self.expires_in = expires_in

    def issue(
        self,
        identity: SessionIdentity,
        expires_delta: Optional[timedelta] = None,
    ) -> str:
        if expires_delta is None:
            expires_delta = self.expires_in

        now = datetime.now(timezone.utc)
        to_encode = {
            "sub": str(identity.user_id),
            "userId": identity.user_id,
            "email": identity.email,
            "isAdmin": identity.is_admin,
            "iat": now,
            "exp": now + expires_delta,
        }
        return jwt.encode(to_encode, self._secret_key, algorithm=self._algorithm)

    def verify(self, token: str) -> Optional[SessionIdentity]:
        """
        Returns the identity, or None for any malformed, tampered or expired
        token. The failure reason only goes to the log.
        """
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except ExpiredSignatureError:
            logger.info("Rejected session token: expired")
            return None
        except JWTError as exc:
            logger.info("Rejected session token: %s", exc.__class__.__name__)
            return None

        try:
            user_id = payload["userId"]
            email = payload["email"]
            is_admin = payload["isAdmin"]
        except KeyError:
            logger.info("Rejected session token: missing claims")
            return None

        if (
            not isinstance(user_id, int)
            or isinstance(user_id, bool)
            or not isinstance(email, str)
            or not isinstance(is_admin, bool)
        ):
            logger.info("Rejected session token: malformed claims")
            return None

        return SessionIdentity(user_id=user_id, email=email, is_admin=is_admin)
