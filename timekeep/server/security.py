"""Password hashing and bearer tokens for the auth endpoints."""

from datetime import datetime, timedelta, timezone

import jwt
from passlib.context import CryptContext

JWT_ALG = "HS256"

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


class InvalidTokenError(Exception):
    """The bearer token is malformed, forged, or expired."""


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return pwd_context.verify(password, hashed)


class TokenIssuer:
    """Issues and checks HS256 tokens carrying the user id."""

    def __init__(self, secret: str, expire_days: int = 365):
        self._secret = secret
        self.expire_days = expire_days

    def create(self, user_id: str, expires_delta: timedelta | None = None) -> str:
        expire = datetime.now(timezone.utc) + (
            expires_delta or timedelta(days=self.expire_days)
        )
        return jwt.encode(
            {"id": user_id, "exp": expire}, self._secret, algorithm=JWT_ALG
        )

    def decode(self, token: str) -> str:
        """Return the user id in a valid token.

        Raises:
            InvalidTokenError: If the token cannot be trusted.
        """
        try:
            payload = jwt.decode(token, self._secret, algorithms=[JWT_ALG])
        except jwt.ExpiredSignatureError as e:
            raise InvalidTokenError("Token expired") from e
        except jwt.PyJWTError as e:
            raise InvalidTokenError("Invalid token") from e

        user_id = payload.get("id")
        if not user_id:
            raise InvalidTokenError("Invalid token payload")
        return user_id
