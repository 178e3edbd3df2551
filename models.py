from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(str, Enum):
    DONOR = "DONOR"
    RECEIVER = "RECEIVER"
    ADMIN = "ADMIN"


class ResourceStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    CLAIMED = "CLAIMED"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class ResourceCategory(str, Enum):
    CLOTHING = "CLOTHING"
    FOOD = "FOOD"
    TOOLS = "TOOLS"
    TOYS = "TOYS"
    FURNITURE = "FURNITURE"
    ELECTRONICS = "ELECTRONICS"
    BOOKS = "BOOKS"
    HYGIENE = "HYGIENE"
    SCHOOL_SUPPLIES = "SCHOOL_SUPPLIES"
    OTHERS = "OTHERS"


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True)
    name: str
    role: UserRole
    is_active: bool = True
    password_hash: str
    created_at: datetime = Field(default_factory=utcnow)


class Resource(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    title: str
    description: str = Field(max_length=1000)
    category: ResourceCategory = Field(index=True)
    latitude: float
    longitude: float
    address: Optional[str] = Field(default=None, max_length=500)
    image_url: Optional[str] = Field(default=None, max_length=1000)

    # lifecycle
    status: ResourceStatus = Field(default=ResourceStatus.AVAILABLE, index=True)
    auto_confirm: bool = False
    donor_id: int = Field(foreign_key="user.id", index=True)
    receiver_id: Optional[int] = Field(default=None, foreign_key="user.id", index=True)

    created_at: datetime = Field(default_factory=utcnow)
    claimed_at: Optional[datetime] = None
    # also stamped on cancellation
    delivered_at: Optional[datetime] = None
