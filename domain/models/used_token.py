"""UsedToken model - append-only replay ledger of consumed access tokens."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlmodel import SQLModel, Field

from ..clock import UTCTimestamp, utcnow


class UsedToken(SQLModel, table=True):
    __tablename__ = "used_tokens"

    # (pass_id, token_id) is unique: existence means "already processed",
    # never "allowed".
    pass_id: UUID = Field(foreign_key="guest_passes.id", primary_key=True)
    token_id: str = Field(primary_key=True)

    method: str = Field(default="signed")  # signed | hash_bound
    used_at: datetime = Field(default_factory=utcnow, sa_type=UTCTimestamp)
