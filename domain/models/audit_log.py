"""AuditLog model - append-only audit trail of pass transitions."""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Dict, Any
from uuid import UUID, uuid4

from sqlalchemy import JSON
from sqlmodel import SQLModel, Field, Column

from ..clock import UTCTimestamp, utcnow


class AuditLogBase(SQLModel):
    pass_id: Optional[UUID] = Field(foreign_key="guest_passes.id", index=True, default=None)

    actor_type: str  # resident | staff | guest | provider | system
    actor_id: Optional[str] = None

    action: str  # invite | register | complete_registration | verification_verified | check_in | ...
    status: str = Field(default="success")  # success | failure
    message: Optional[str] = None
    extra_data: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))


class AuditLog(AuditLogBase, table=True):
    __tablename__ = "audit_logs"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCTimestamp)


class AuditLogRead(AuditLogBase):
    id: UUID
    created_at: datetime
