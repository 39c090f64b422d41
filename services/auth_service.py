"""
Authentication service: account creation and credential checks.
"""
from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Session
from sqlalchemy import func

from database.models import User, UserRole, Stream, STREAM_SCOPED_ROLES
from auth.security import verify_password, get_password_hash, validate_password, create_access_token
from core.logger import logger


class AuthService:
    """Service for authentication operations."""

    @staticmethod
    def check_stream_assignment(db: Session, role: UserRole, stream_id: Optional[int]) -> None:
        """
        Every role except program_leader belongs to exactly one existing stream.

        Raises:
            ValueError: stream missing for a stream-scoped role, or unknown stream
        """
        if role in STREAM_SCOPED_ROLES and stream_id is None:
            raise ValueError(f"A stream is required for role '{role.value}'")
        if stream_id is not None and db.query(Stream).filter(Stream.stream_id == stream_id).first() is None:
            raise ValueError("Stream not found")

    @staticmethod
    def create_user(
        db: Session,
        full_name: str,
        email: str,
        password: str,
        role: UserRole,
        stream_id: Optional[int] = None,
    ) -> User:
        """
        Create a new user. The caller's transaction is flushed, not committed.

        Args:
            db: Database session
            full_name: Full name
            email: Email address (login identifier, unique)
            password: Plain text password
            role: User role
            stream_id: Stream the user belongs to (optional for program_leader)

        Returns:
            Created User

        Raises:
            ValueError: weak password, duplicate email or bad stream assignment
        """
        is_valid, error_message = validate_password(password)
        if not is_valid:
            raise ValueError(error_message)

        email = email.strip().lower()
        if db.query(User).filter(func.lower(User.email) == email).first():
            raise ValueError("User with this email already exists")

        AuthService.check_stream_assignment(db, role, stream_id)

        user = User(
            full_name=full_name.strip(),
            email=email,
            hashed_password=get_password_hash(password),
            role=role,
            stream_id=stream_id,
            is_active=True,
        )
        db.add(user)
        db.flush()
        logger.info(f"User created: {email} ({role.value})")
        return user

    @staticmethod
    def authenticate_user(db: Session, email: str, password: str) -> Optional[User]:
        """
        Authenticate a user by email and password.

        Returns:
            User if authenticated, None otherwise
        """
        user = db.query(User).filter(func.lower(User.email) == email.strip().lower()).first()
        if not user:
            return None

        if not user.is_active:
            logger.warning(f"Login attempt for inactive account: {email}")
            return None

        if not verify_password(password, user.hashed_password):
            logger.warning(f"Failed login attempt: {email}")
            return None

        user.last_login = datetime.utcnow()
        db.flush()
        return user

    @staticmethod
    def issue_token(user: User) -> str:
        return create_access_token({"sub": user.user_id, "role": user.role.value})
