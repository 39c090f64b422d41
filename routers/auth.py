"""
Authentication endpoints: registration, login, logout, current user and password change.
"""
from fastapi import APIRouter, Depends, HTTPException, status, Request
from sqlalchemy.orm import Session
from pydantic import BaseModel, EmailStr, Field
from typing import Optional

from database.models import User, UserRole
from auth.dependencies import get_db_session, get_current_user, get_identity
from auth.security import verify_password, validate_password, get_password_hash
from policy.identity import Identity
from policy.evaluator import Action
from policy.resources import ResourceType
from policy.guard import guard
from routers.users import user_to_dict
from services.auth_service import AuthService
from services.audit_service import AuditService
from core.logger import logger
import config


router = APIRouter(prefix="/api/auth", tags=["authentication"])


class LoginRequest(BaseModel):
    """Login request."""
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    """Token response."""
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: dict


class ChangePasswordRequest(BaseModel):
    """Change password request."""
    currentPassword: str
    newPassword: str


class RegisterRequest(BaseModel):
    """Self-registration request."""
    fullName: str = Field(..., min_length=2, max_length=255)
    email: EmailStr
    password: str
    role: str
    streamId: Optional[int] = None


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def register(
    body: RegisterRequest,
    request: Request,
    db: Session = Depends(get_db_session)
):
    """
    Create an account and sign it in.

    Only the roles in SELF_REGISTRATION_ROLES may register themselves, and
    every stream-scoped role must name an existing stream.
    """
    try:
        role = UserRole(body.role.lower())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid role: {body.role}"
        )
    if role.value not in config.SELF_REGISTRATION_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Role '{role.value}' cannot register itself"
        )

    try:
        user = AuthService.create_user(
            db,
            full_name=body.fullName,
            email=body.email,
            password=body.password,
            role=role,
            stream_id=body.streamId,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    AuditService.log_from_request(
        db=db,
        request=request,
        action="user_register",
        user_id=user.user_id,
        resource_type="user",
        resource_id=str(user.user_id)
    )
    logger.info(f"User registered: {user.email} ({role.value})")

    return TokenResponse(
        access_token=AuthService.issue_token(user),
        expires_in=config.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=user_to_dict(user)
    )


@router.post("/login", response_model=TokenResponse)
async def login(
    credentials: LoginRequest,
    request: Request,
    db: Session = Depends(get_db_session)
):
    """
    Login with email + password.
    Returns a JWT access token and user info.
    """
    user = AuthService.authenticate_user(db=db, email=credentials.email, password=credentials.password)

    if not user:
        AuditService.log_from_request(
            db=db,
            request=request,
            action="login_failed",
            resource_type="user",
            details={"email": credentials.email}
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password"
        )

    access_token = AuthService.issue_token(user)

    AuditService.log_from_request(
        db=db,
        request=request,
        action="user_login",
        user_id=user.user_id,
        resource_type="user",
        resource_id=str(user.user_id)
    )
    logger.info(f"User logged in: {user.email} ({user.role.value})")

    return TokenResponse(
        access_token=access_token,
        expires_in=config.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=user_to_dict(user)
    )


@router.post("/logout")
async def logout(
    request: Request,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db_session)
):
    """Tokens are stateless; the client drops its token. The sign-out is audited."""
    AuditService.log_from_request(
        db=db,
        request=request,
        action="user_logout",
        user_id=identity.user_id,
        resource_type="user",
        resource_id=str(identity.user_id)
    )
    logger.info(f"User logged out: {identity.user_id}")
    return {"message": "Logged out successfully"}


@router.get("/me", response_model=dict)
async def get_current_user_info(current_user: User = Depends(get_current_user)):
    """Get current user information."""
    return user_to_dict(current_user)


@router.patch("/change-password")
async def change_password(
    body: ChangePasswordRequest,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db_session)
):
    """Change the caller's own password."""
    is_valid, error_message = validate_password(body.newPassword)
    if not is_valid:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error_message)

    def perform(user: User) -> User:
        if not verify_password(body.currentPassword, user.hashed_password):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Current password is incorrect"
            )
        user.hashed_password = get_password_hash(body.newPassword)
        return user

    guard(
        db, identity, Action.UPDATE, ResourceType.USER, identity.user_id, perform,
        changed_fields={"hashed_password"}, timeout_ms=config.GUARD_TIMEOUT_MS,
    )
    return {"message": "Password changed successfully"}
