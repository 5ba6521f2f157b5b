"""GuestPass model - the guest access record tracked through its lifecycle."""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON
from sqlmodel import SQLModel, Field, Column

from ..clock import UTCTimestamp, utcnow
from .pass_details import PassDetails


class PassStatus(str, Enum):
    INVITED = "invited"
    REGISTERED = "registered"
    SCHEDULED = "scheduled"
    PENDING_VERIFICATION = "pending_verification"
    APPROVED = "approved"
    VERIFICATION_FAILED = "verification_failed"
    VERIFICATION_CANCELED = "verification_canceled"
    CHECKED_IN = "checked_in"
    CHECKED_OUT = "checked_out"
    CANCELED = "canceled"
    EXPIRED = "expired"


# States from which cancel and expiry apply.
PRE_TERMINAL = frozenset({
    PassStatus.INVITED,
    PassStatus.REGISTERED,
    PassStatus.SCHEDULED,
    PassStatus.PENDING_VERIFICATION,
    PassStatus.APPROVED,
    PassStatus.VERIFICATION_FAILED,
    PassStatus.VERIFICATION_CANCELED,
})

# States from which a guest may submit registration details.
REGISTRABLE = frozenset({
    PassStatus.INVITED,
    PassStatus.SCHEDULED,
    PassStatus.REGISTERED,
})


class GuestPassBase(SQLModel):
    resident_id: UUID = Field(foreign_key="residents.id", index=True)

    guest_name: Optional[str] = None
    guest_email: Optional[str] = Field(default=None, index=True)
    guest_phone: Optional[str] = None

    visit_date: date = Field(index=True)
    status: str = Field(default=PassStatus.SCHEDULED.value, index=True)

    extended_data: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))

    checked_in_at: Optional[datetime] = Field(default=None, sa_type=UTCTimestamp)
    checked_out_at: Optional[datetime] = Field(default=None, sa_type=UTCTimestamp)


class GuestPass(GuestPassBase, table=True):
    __tablename__ = "guest_passes"

    id: UUID = Field(default_factory=uuid4, primary_key=True)

    # Live single-use nonce of the outstanding prereg/verification token.
    token_nonce: Optional[str] = None
    verification_session_id: Optional[str] = Field(default=None, index=True)

    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCTimestamp)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCTimestamp)

    @property
    def contact(self) -> str:
        """Guest identity bound into the wallet QR hash (email, or phone for walk-ins)."""
        return self.guest_email or self.guest_phone or ""

    @property
    def details(self) -> PassDetails:
        return PassDetails.from_column(self.extended_data)

    def effective_status(self, today: date) -> PassStatus:
        """Stored status, or EXPIRED for a pre-terminal pass whose day has passed."""
        current = PassStatus(self.status)
        if current in PRE_TERMINAL and self.visit_date < today:
            return PassStatus.EXPIRED
        return current


class GuestPassRead(GuestPassBase):
    id: UUID
    created_at: datetime
    updated_at: datetime
    effective_status: Optional[str] = None

    @classmethod
    def build(cls, guest_pass: GuestPass, today: date) -> "GuestPassRead":
        data = guest_pass.model_dump(exclude={"token_nonce", "verification_session_id"})
        data["effective_status"] = guest_pass.effective_status(today).value
        return cls.model_validate(data)
