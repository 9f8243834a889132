"""JWT token handling."""
from datetime import datetime, timedelta, timezone
from uuid import UUID

from jose import JWTError, jwt

from app.core.exceptions import AuthenticationError


def create_access_token(
    subject: str | UUID,
    secret: str,
    algorithm: str = "HS256",
    expires_minutes: int = 60,
) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    to_encode = {"sub": str(subject), "exp": expire, "type": "access"}
    return jwt.encode(to_encode, secret, algorithm=algorithm)


def decode_token(token: str, secret: str, algorithm: str = "HS256") -> dict | None:
    try:
        return jwt.decode(token, secret, algorithms=[algorithm])
    except JWTError:
        return None


def validate_access_token(token: str, secret: str, algorithm: str = "HS256") -> UUID:
    """Return the user id carried by a valid access token."""
    payload = decode_token(token, secret, algorithm)
    if not payload or payload.get("type") != "access":
        raise AuthenticationError("Couldn't validate JWT")
    try:
        return UUID(payload.get("sub") or "")
    except ValueError:
        raise AuthenticationError("Couldn't validate JWT") from None
