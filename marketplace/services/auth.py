"""
Session authentication: bearer JWT verification and FastAPI dependencies.

Tokens are issued by the identity provider; `sub` carries the provider subject that
links to users.idp_subject.
"""

import os
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Request
from jose import JWTError, jwt

from marketplace.models.schemas import MEMBER_VERIFIED, ROLE_ADMIN, User
from marketplace.services.catalog_service import get_member
from marketplace.services.errors import AuthenticationRequiredError, PermissionDeniedError
from marketplace.services.user_service import UserService

JWT_SECRET = os.environ.get("JWT_SECRET", "change-me-to-a-random-secret-key")
JWT_ALGORITHM = "HS256"
JWT_EXPIRE_HOURS = 24


def create_token(subject: str, expire_hours: int = JWT_EXPIRE_HOURS) -> str:
    """Issue a session token for an identity-provider subject."""
    expire = datetime.now(timezone.utc) + timedelta(hours=expire_hours)
    payload = {"sub": subject, "exp": expire}
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def verify_token(token: str) -> dict:
    """
    Decode and validate a session token.

    Raises:
        ValueError: token malformed, expired or missing its subject.
    """
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        raise ValueError(f"Invalid token: {e}")
    if "sub" not in payload:
        raise ValueError("Token has no subject")
    return payload


def _bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def get_optional_user(request: Request) -> Optional[User]:
    """
    FastAPI dependency: the authenticated user, or None when no bearer token is sent.

    A token that is present but invalid is still an error, never an anonymous request.
    """
    token = _bearer_token(request)
    if not token:
        return None

    try:
        payload = verify_token(token)
    except ValueError:
        raise AuthenticationRequiredError(
            "Invalid or expired token", code="INVALID_TOKEN"
        )

    user = UserService().get_by_subject(payload["sub"])
    if not user:
        raise PermissionDeniedError(
            "User not found. Please complete registration first.",
            code="USER_NOT_REGISTERED",
        )
    return user


def get_current_user(user: Optional[User] = Depends(get_optional_user)) -> User:
    """FastAPI dependency: an authenticated user is mandatory."""
    if user is None:
        raise AuthenticationRequiredError("No authorization token provided")
    return user


def is_verified_member(user: User) -> bool:
    if not user.fraternity_member_id:
        return False
    member = get_member(user.fraternity_member_id)
    return member is not None and member.verification_status == MEMBER_VERIFIED


def require_verified_member(user: User = Depends(get_current_user)) -> User:
    """FastAPI dependency: the user must carry a VERIFIED fraternity member profile."""
    if not user.fraternity_member_id:
        raise PermissionDeniedError(
            "A member profile is required", code="MEMBER_PROFILE_REQUIRED"
        )
    if not is_verified_member(user):
        raise PermissionDeniedError(
            "Your membership has not been verified yet", code="MEMBER_NOT_VERIFIED"
        )
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != ROLE_ADMIN:
        raise PermissionDeniedError("Admin access required", code="ADMIN_REQUIRED")
    return user
