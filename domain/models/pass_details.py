"""Typed contents of GuestPass.extended_data.

Each lifecycle stage owns one optional section. The engine validates the whole
structure on every transition and writes it back with ``to_column()``, so the
JSON column never holds free-form keys.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class _Section(BaseModel):
    model_config = ConfigDict(extra="ignore")


class InviteDetails(_Section):
    pass_type: str = "guest_access"  # guest_access | delivery
    floor: Optional[str] = None
    purpose_of_visit: Optional[str] = None
    special_instructions: Optional[str] = None
    host_name: Optional[str] = None
    created_at: Optional[datetime] = None


class RegistrationDetails(_Section):
    first_name: str
    last_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    id_country: Optional[str] = None
    id_type: Optional[str] = None
    id_last4: Optional[str] = None
    policy_version: Optional[str] = None
    is_delivery: bool = False
    completed_at: datetime


class VerificationDetails(_Section):
    status: str  # started | verified | requires_input | canceled
    session_id: str
    started_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    provider_metadata: Dict[str, str] = Field(default_factory=dict)


class WalletDetails(_Section):
    wallet_url: Optional[str] = None
    security_hash: Optional[str] = None
    valid_until: Optional[datetime] = None
    issued_at: Optional[datetime] = None


class CancelDetails(_Section):
    actor_id: Optional[str] = None
    reason: Optional[str] = None
    canceled_at: datetime


class PassDetails(_Section):
    invite: Optional[InviteDetails] = None
    registration: Optional[RegistrationDetails] = None
    verification: Optional[VerificationDetails] = None
    wallet: Optional[WalletDetails] = None
    cancel: Optional[CancelDetails] = None

    @classmethod
    def from_column(cls, raw: Optional[Dict[str, Any]]) -> "PassDetails":
        return cls.model_validate(raw or {})

    def to_column(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)
