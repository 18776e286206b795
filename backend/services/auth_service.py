"""
Authentication: password hashing and JWT bearer tokens.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from utils.exceptions import UnauthorizedError

logger = logging.getLogger(__name__)

# Password hashing context
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


class Authenticator:
    """Issues and verifies access tokens that identify a user by id."""

    def __init__(self, secret_key: str, algorithm: str = "HS256", expire_minutes: int = 60 * 24):
        if not secret_key:
            raise ValueError("JWT secret key is not configured")
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.expire_minutes = expire_minutes

    @staticmethod
    def hash_password(password: str) -> str:
        return pwd_context.hash(password)

    @staticmethod
    def verify_password(plain_password: str, hashed_password: str) -> bool:
        return pwd_context.verify(plain_password, hashed_password)

    def create_access_token(self, user_id: int, expires_delta: Optional[timedelta] = None) -> str:
        """Create a new JWT access token for ``user_id``."""
        expire = datetime.utcnow() + (expires_delta or timedelta(minutes=self.expire_minutes))
        to_encode = {"sub": str(user_id), "exp": expire}
        return jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)

    def authenticate(self, token: str) -> int:
        """Return the user id carried by ``token``, or raise UnauthorizedError."""
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except ExpiredSignatureError:
            raise UnauthorizedError("Not authorized, token expired")
        except JWTError:
            raise UnauthorizedError("Not authorized, invalid token")

        subject = payload.get("sub")
        if subject is None or not str(subject).isdigit():
            raise UnauthorizedError("Not authorized, invalid token")
        return int(subject)
