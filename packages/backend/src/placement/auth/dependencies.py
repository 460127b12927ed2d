"""FastAPI auth dependencies.

Learn: the browser's EventSource cannot set headers, so the access
token comes from the `accessToken` cookie first. The Authorization
header is still accepted for scripts and the CLI.

Error codes follow the platform's existing clients:
- no token at all → 403 "No token provided!"
- bad or expired token → 401
- valid token for another role → 403
- account-service login whose id is not in the role's table → 401
"""

from typing import Optional

from fastapi import Cookie, Depends, Header, HTTPException

from placement.auth.jwt import TokenError, verify_token
from placement.auth.roles import AccountLookup, get_account_lookup


class CurrentIdentity:
    """The authenticated user making the request."""

    def __init__(self, user_id: str, user_type: Optional[str], email: Optional[str] = None):
        self.user_id = user_id
        self.user_type = user_type
        self.email = email

    def __repr__(self) -> str:
        return f"<CurrentIdentity {self.user_type}:{self.user_id}>"


def _extract_token(
    cookie_token: Optional[str], authorization: Optional[str]
) -> Optional[str]:
    if cookie_token:
        return cookie_token
    if authorization and authorization.startswith("Bearer "):
        return authorization[7:]
    return None


async def get_current_user(
    access_token: Optional[str] = Cookie(None, alias="accessToken"),
    authorization: Optional[str] = Header(None),
) -> CurrentIdentity:
    """Resolve the request's identity (required)."""
    token = _extract_token(access_token, authorization)
    if not token:
        raise HTTPException(status_code=403, detail="No token provided!")

    try:
        payload = verify_token(token)
    except TokenError as e:
        raise HTTPException(
            status_code=401,
            detail=f"Unauthorized! {e}",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return CurrentIdentity(
        user_id=payload["user_id"],
        user_type=payload["user_type"],
        email=payload.get("email"),
    )


def require_role(role: str):
    """Dependency factory: the identity must belong to `role`.

    A token with a `user_type` claim is checked against it (403 on
    mismatch). An account-service login has no claim, so the user id is
    looked up in the role's account table (401 when absent).
    """

    async def _check(
        identity: CurrentIdentity = Depends(get_current_user),
        accounts: AccountLookup = Depends(get_account_lookup),
    ) -> CurrentIdentity:
        if identity.user_type is None:
            if not await accounts.has_role(identity.user_id, role):
                raise HTTPException(status_code=401, detail="Unauthorized!")
            identity.user_type = role
        elif identity.user_type != role:
            raise HTTPException(status_code=403, detail=f"Require {role} role!")
        return identity

    return _check
