from typing import Annotated, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import ValidationError

from libs.auth.models import AuthUser
from libs.common.config import get_settings
from libs.common.errors import forbidden, unauthorized

security = HTTPBearer(auto_error=False)


def decode_token(token: str) -> AuthUser:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"verify_aud": False},
        )
        return AuthUser(**payload)
    except (JWTError, ValidationError):
        raise unauthorized()


def create_token(user_id: str, role: str, email: Optional[str] = None) -> str:
    """Sign a token the way the identity provider does. Used by tests and tooling."""
    settings = get_settings()
    claims = {"sub": user_id, "role": role}
    if email:
        claims["email"] = email
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


async def get_current_user(
    token: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> AuthUser:
    """
    Validate the bearer JWT and return the authenticated user.
    """
    if token is None:
        raise unauthorized("Missing bearer token")
    return decode_token(token.credentials)


async def require_admin(
    current_user: Annotated[AuthUser, Depends(get_current_user)],
) -> AuthUser:
    if not current_user.is_admin:
        raise forbidden("Admin privileges required")
    return current_user


def require_role(*roles: str):
    """Dependency factory allowing the given roles (admins always pass)."""

    async def _dependency(
        current_user: Annotated[AuthUser, Depends(get_current_user)],
    ) -> AuthUser:
        if current_user.role not in roles and not current_user.is_admin:
            raise forbidden(f"Requires one of roles: {', '.join(roles)}")
        return current_user

    return _dependency
