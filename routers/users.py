"""
User management APIs.
"""
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from sqlalchemy import or_, func
from pydantic import BaseModel, EmailStr
from typing import Optional, List

from database.models import User, UserRole
from auth.dependencies import get_db_session, get_identity, require_program_leader, require_reviewer
from auth.security import validate_password, get_password_hash
from policy.identity import Identity
from policy.evaluator import Action
from policy.resources import ResourceType
from policy.scoper import Op, Predicate, scoped_query, load_visible
from policy.guard import guard
from services.auth_service import AuthService
import config


router = APIRouter(prefix="/api/users", tags=["users"])


# Request/Response Models
class UserCreate(BaseModel):
    """Create user request."""
    fullName: str
    email: EmailStr
    password: str
    role: str
    streamId: Optional[int] = None


class UserUpdate(BaseModel):
    """Update user request. role and streamId are program leader only."""
    fullName: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = None
    role: Optional[str] = None
    streamId: Optional[int] = None


class UserListResponse(BaseModel):
    """User list response."""
    data: List[dict]
    total: int
    page: int
    limit: int


def user_to_dict(user: User) -> dict:
    return {
        "id": user.user_id,
        "fullName": user.full_name,
        "email": user.email,
        "role": user.role.value if isinstance(user.role, UserRole) else user.role,
        "streamId": user.stream_id,
        "streamName": user.stream.stream_name if user.stream else None,
        "isActive": user.is_active,
        "lastLogin": user.last_login.isoformat() if user.last_login else None,
        "createdAt": user.created_at.isoformat() if user.created_at else None,
        "updatedAt": user.updated_at.isoformat() if user.updated_at else None,
    }


def _parse_role(value: str) -> UserRole:
    try:
        return UserRole(value.lower())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid role: {value}"
        )


@router.get("", response_model=UserListResponse)
async def list_users(
    role: Optional[str] = Query(None, description="Filter by role"),
    search: Optional[str] = Query(None, description="Search by name or email"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db_session)
):
    """
    List users (paginated, filterable).
    Principal lecturers see their stream, program leaders everyone.
    """
    filters = []
    if role:
        filters.append(Predicate("users.role", Op.EQ, _parse_role(role).value))

    query = scoped_query(db, identity, ResourceType.USER, filters)
    if search:
        query = query.filter(
            or_(
                User.full_name.ilike(f"%{search}%"),
                User.email.ilike(f"%{search}%")
            )
        )

    total = query.count()
    offset = (page - 1) * limit
    users = query.order_by(User.full_name).offset(offset).limit(limit).all()

    return UserListResponse(
        data=[user_to_dict(u) for u in users],
        total=total,
        page=page,
        limit=limit
    )


@router.get("/stats/overview")
async def user_stats(
    identity: Identity = Depends(require_program_leader),
    db: Session = Depends(get_db_session)
):
    """User counts by role. Program leader only."""
    counts = dict(db.query(User.role, func.count(User.user_id)).group_by(User.role).all())
    by_role = {r.value: 0 for r in UserRole}
    for role, count in counts.items():
        by_role[role.value if isinstance(role, UserRole) else role] = count
    return {"totalUsers": sum(by_role.values()), "byRole": by_role}


@router.get("/stream/{stream_id}/lecturers")
async def stream_lecturers(
    stream_id: int,
    identity: Identity = Depends(require_reviewer),
    db: Session = Depends(get_db_session)
):
    """Lecturers of a stream, for course assignment."""
    load_visible(db, identity, ResourceType.STREAM, stream_id)
    lecturers = (
        scoped_query(db, identity, ResourceType.USER, [
            Predicate("users.role", Op.EQ, UserRole.LECTURER.value),
            Predicate("users.stream_id", Op.EQ, stream_id),
        ])
        .order_by(User.full_name)
        .all()
    )
    return {
        "streamId": stream_id,
        "data": [{"id": u.user_id, "fullName": u.full_name, "email": u.email} for u in lecturers],
    }


@router.get("/{user_id}")
async def get_user(
    user_id: int,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db_session)
):
    """Get user by ID. Everyone may read their own account."""
    user = load_visible(db, identity, ResourceType.USER, user_id)
    return user_to_dict(user)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_user(
    user_data: UserCreate,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db_session)
):
    """Create a user in a stream (stream optional for program leaders)."""
    role = _parse_role(user_data.role)

    def perform(stream) -> User:
        try:
            return AuthService.create_user(
                db,
                full_name=user_data.fullName,
                email=user_data.email,
                password=user_data.password,
                role=role,
                stream_id=stream.stream_id if stream is not None else None,
            )
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    user = guard(
        db, identity, Action.CREATE, ResourceType.USER, user_data.streamId, perform,
        timeout_ms=config.GUARD_TIMEOUT_MS,
    )
    return user_to_dict(user)


@router.put("/{user_id}")
async def update_user(
    user_id: int,
    user_data: UserUpdate,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db_session)
):
    """
    Update user.
    Anyone may edit their own name, email and password; role and stream
    changes need a program leader.
    """
    provided = user_data.model_dump(exclude_unset=True)
    if not provided:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No fields to update"
        )
    changed_fields = set()
    if "role" in provided:
        changed_fields.add("role")
    if "streamId" in provided:
        changed_fields.add("stream_id")

    new_role = _parse_role(user_data.role) if user_data.role is not None else None

    def perform(user: User) -> User:
        if user_data.fullName is not None:
            if not user_data.fullName.strip():
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Full name cannot be empty")
            user.full_name = user_data.fullName.strip()
        if user_data.email is not None:
            email = user_data.email.lower()
            existing = db.query(User).filter(func.lower(User.email) == email, User.user_id != user.user_id).first()
            if existing:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="User with this email already exists"
                )
            user.email = email
        if user_data.password is not None:
            is_valid, error_message = validate_password(user_data.password)
            if not is_valid:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error_message)
            user.hashed_password = get_password_hash(user_data.password)
        if changed_fields:
            role = new_role if new_role is not None else user.role
            stream_id = provided["streamId"] if "streamId" in provided else user.stream_id
            try:
                AuthService.check_stream_assignment(db, role, stream_id)
            except ValueError as e:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
            user.role = role
            user.stream_id = stream_id
        return user

    user = guard(
        db, identity, Action.UPDATE, ResourceType.USER, user_id, perform,
        changed_fields=changed_fields, timeout_ms=config.GUARD_TIMEOUT_MS,
    )
    return user_to_dict(user)


@router.delete("/{user_id}")
async def delete_user(
    user_id: int,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db_session)
):
    """Delete user."""
    if user_id == identity.user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You cannot delete your own account"
        )
    guard(
        db, identity, Action.DELETE, ResourceType.USER, user_id, db.delete,
        timeout_ms=config.GUARD_TIMEOUT_MS,
    )
    return {"message": "User deleted successfully"}
