"""Resident model - building host who invites guests"""
from typing import Optional
from datetime import datetime
from sqlmodel import SQLModel, Field
from uuid import UUID, uuid4

from ..clock import UTCTimestamp, utcnow


class ResidentBase(SQLModel):
    name: str = Field(index=True)
    email: str = Field(index=True, unique=True)
    phone: Optional[str] = None
    unit: Optional[str] = None
    role: str = Field(default="resident")  # resident | staff | admin
    is_verified: bool = Field(default=False)  # active building membership
    verified_at: Optional[datetime] = Field(default=None, sa_type=UTCTimestamp)

class Resident(ResidentBase, table=True):
    __tablename__ = "residents"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    membership_user_id: Optional[str] = Field(default=None, index=True)
    membership_refresh_token: Optional[str] = None  # Link to membership API credentials
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCTimestamp)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCTimestamp)

class ResidentRead(ResidentBase):
    id: UUID
    created_at: datetime
    updated_at: datetime
