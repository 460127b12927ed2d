"""JWT verification (and minting, for development and tests).

Learn: tokens are HS256-signed with the secret shared with the account
service. Its logins carry `id` and `email` only; tokens minted here for
development and tests carry `sub` and `user_type`.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from placement.config import settings


class TokenError(Exception):
    """Raised when token creation/verification fails."""


def create_access_token(
    user_id: str,
    user_type: str,
    email: Optional[str] = None,
    expires_minutes: Optional[int] = None,
) -> str:
    """Create a JWT access token."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "user_type": user_type,
        "type": "access",
        "exp": now + timedelta(
            minutes=expires_minutes or settings.access_token_expire_minutes
        ),
        "iat": now,
    }
    if email:
        payload["email"] = email
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> dict:
    """Verify and decode a JWT access token.

    Accepts both token shapes in circulation:
    - account service logins: `{"id": <uuid>, "email": ...}`, no role claim
      (the role is looked up, see placement.auth.roles)
    - tokens minted here: `{"sub": ..., "user_type": ...}`

    Returns the payload with `user_id` set, and `user_type` set to the
    claim or None. Raises TokenError on failure.
    """
    try:
        payload = jwt.decode(
            token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]
        )
    except jwt.ExpiredSignatureError:
        raise TokenError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise TokenError(f"Invalid token: {e}")

    if payload.get("type", "access") != "access":
        raise TokenError("Not an access token")

    if "id" in payload:
        try:
            user_id = str(uuid.UUID(str(payload["id"])))
        except ValueError:
            raise TokenError("Token id is not a UUID")
    elif payload.get("sub"):
        user_id = str(payload["sub"])
    else:
        raise TokenError("Token is missing the user id")

    payload["user_id"] = user_id
    payload["user_type"] = payload.get("user_type") or None
    return payload
