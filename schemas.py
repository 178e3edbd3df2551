from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from models import ResourceCategory, ResourceStatus, UserRole


class ResourceCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str = Field(min_length=1, max_length=1000)
    category: ResourceCategory
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    address: Optional[str] = Field(default=None, max_length=500)
    image_url: Optional[str] = Field(default=None, max_length=1000)

    model_config = ConfigDict(str_strip_whitespace=True)


class ResourceRead(BaseModel):
    id: int
    title: str
    description: str
    category: ResourceCategory
    status: ResourceStatus
    auto_confirm: bool

    donor_id: int
    donor_name: Optional[str] = None
    receiver_id: Optional[int] = None
    receiver_name: Optional[str] = None

    latitude: float
    longitude: float
    address: Optional[str] = None
    image_url: Optional[str] = None

    created_at: datetime
    claimed_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None


class DonorStats(BaseModel):
    donor_id: int
    total: int
    delivered: int
    by_status: dict[ResourceStatus, int]


class UserCreate(BaseModel):
    email: EmailStr
    name: str = Field(min_length=1)
    password: str = Field(min_length=6)
    role: UserRole

    @field_validator("role")
    @classmethod
    def no_self_service_admin(cls, role: UserRole) -> UserRole:
        if role == UserRole.ADMIN:
            raise ValueError("Users must register as DONOR or RECEIVER")
        return role


class UserRead(BaseModel):
    id: int
    email: EmailStr
    name: str
    role: UserRole
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class LoginData(BaseModel):
    email: EmailStr
    password: str
