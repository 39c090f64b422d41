"""
Authentication dependencies for FastAPI.
"""
from typing import Optional
from fastapi import Depends, HTTPException, status, Security
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from database.models import User, UserRole
from auth.security import security, decode_access_token
from policy.identity import Identity
import config


def get_db_session():
    """Get database session."""
    if not config.db:
        raise HTTPException(status_code=503, detail="Database not initialized")
    with config.db.get_session() as session:
        yield session


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security),
    db: Session = Depends(get_db_session)
) -> User:
    """
    Get current authenticated user from JWT token.

    Raises:
        HTTPException: 401 if the token is missing, invalid or names no user
    """
    if credentials is None:
        raise _unauthorized("Not authenticated")

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise _unauthorized("Invalid authentication credentials")

    sub = payload.get("sub")
    try:
        user_id = int(sub)
    except (TypeError, ValueError):
        raise _unauthorized("Invalid authentication credentials")

    user = db.query(User).filter(User.user_id == user_id).first()
    if user is None:
        raise _unauthorized("User not found")

    if not user.is_active:
        raise _unauthorized("User account is inactive")

    return user


async def get_identity(current_user: User = Depends(get_current_user)) -> Identity:
    """Identity context of the caller, built once per request."""
    return Identity.from_user(current_user)


def require_role(allowed_roles: list[str]):
    """
    Dependency factory for coarse role gating ahead of the policy checks.

    Args:
        allowed_roles: List of allowed role values

    Returns:
        Dependency function
    """
    async def role_checker(identity: Identity = Depends(get_identity)) -> Identity:
        if identity.role is None or identity.role.value not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required roles: {', '.join(allowed_roles)}"
            )
        return identity

    return role_checker


require_program_leader = require_role([UserRole.PROGRAM_LEADER.value])
require_reviewer = require_role([UserRole.PRINCIPAL_LECTURER.value, UserRole.PROGRAM_LEADER.value])
