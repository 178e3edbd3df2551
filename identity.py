from dataclasses import dataclass
from typing import Optional

from sqlmodel import Session

from errors import IdentityError
from models import User, UserRole


@dataclass(frozen=True)
class Caller:
    """An authenticated user as seen by the lifecycle manager."""

    user_id: int
    role: UserRole


def load_user(session: Session, user_id: int) -> User:
    """
    Look up an active user.
    Raises IdentityError if the user is unknown or deactivated.
    """
    user = session.get(User, user_id)
    if user is None:
        raise IdentityError("User not found for this session")
    if not user.is_active:
        raise IdentityError("User account is inactive")
    return user


def resolve_caller(session: Session, user_id: int) -> Caller:
    user = load_user(session, user_id)
    return Caller(user_id=user.id, role=user.role)


def display_name(session: Session, user_id: Optional[int]) -> Optional[str]:
    if user_id is None:
        return None
    user = session.get(User, user_id)
    return user.name if user else None
