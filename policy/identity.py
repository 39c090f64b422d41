"""
Identity context: who is calling, derived once per request.
"""
from dataclasses import dataclass
from typing import Optional, Union

from database.models import User, UserRole


@dataclass(frozen=True)
class Identity:
    """Authenticated caller. Immutable for the lifetime of the request."""
    user_id: int
    role: Optional[UserRole]
    stream_id: Optional[int] = None

    @property
    def is_program_leader(self) -> bool:
        return self.role is UserRole.PROGRAM_LEADER

    @property
    def has_stream(self) -> bool:
        return self.stream_id is not None

    @classmethod
    def from_user(cls, user: User) -> "Identity":
        return cls(user_id=user.user_id, role=parse_role(user.role), stream_id=user.stream_id)


def parse_role(value: Union[UserRole, str, None]) -> Optional[UserRole]:
    """Map a stored role to UserRole. Unknown values become None and are denied everything."""
    if isinstance(value, UserRole):
        return value
    if isinstance(value, str):
        try:
            return UserRole(value)
        except ValueError:
            return None
    return None
