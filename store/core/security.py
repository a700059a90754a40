from __future__ import annotations

from datetime import datetime, timedelta, timezone

import bcrypt
import jwt

from store.core.config import settings

ACCESS_TOKEN_TYPE = "access"
MIN_PASSWORD_LENGTH = 8

# claims every store token must carry
_REQUIRED_CLAIMS = ["iss", "sub", "role", "type", "iat", "exp"]


class TokenError(Exception):
    pass


# -------------------------
# Passwords
# -------------------------
def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=12)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # malformed stored hash
        return False


# -------------------------
# Access tokens
# -------------------------
def create_access_token(*, user_id: int, role: str, minutes: int | None = None) -> str:
    """Signed bearer token for the store API; ``role`` is informational, the user row is authoritative."""
    issued = datetime.now(timezone.utc)
    lifetime = timedelta(minutes=settings.JWT_ACCESS_MINUTES if minutes is None else minutes)
    payload = {
        "iss": settings.JWT_ISSUER,
        "sub": str(user_id),
        "role": role,
        "type": ACCESS_TOKEN_TYPE,
        "iat": int(issued.timestamp()),
        "exp": int((issued + lifetime).timestamp()),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)


def decode_access_token(token: str) -> dict:
    """
    Verify signature, expiry and issuer, then check the token is an access
    token with a numeric subject. Raises ``TokenError`` otherwise.
    """
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALG],
            issuer=settings.JWT_ISSUER,
            options={"require": _REQUIRED_CLAIMS},
        )
    except jwt.ExpiredSignatureError as e:
        raise TokenError("Token expired") from e
    except jwt.InvalidTokenError as e:
        raise TokenError("Invalid token") from e

    if payload["type"] != ACCESS_TOKEN_TYPE:
        raise TokenError("Invalid token type")
    if not str(payload["sub"]).isdigit():
        raise TokenError("Invalid user id in token")
    return payload
