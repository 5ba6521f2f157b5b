"""Record store contract used by the lifecycle engine.

The engine holds no locks. Everything that must not happen twice relies on
two primitives here:

- ``compare_and_set``: a conditional single-row update (status, nonce and
  verification session must still match) that reports whether it applied.
- ``record_check_in``: ledger insert plus pass update in one transaction.

Implementations raise ``StoreUnavailable`` when the backing store fails or
times out.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

from .models import AuditLog, GuestPass, Resident, UsedToken


class CheckInWrite(str, Enum):
    APPLIED = "applied"
    CONFLICT = "conflict"  # ledger row already exists (concurrent or earlier request)
    STALE = "stale"  # pass left 'scheduled' before the write


@dataclass(frozen=True)
class BuildingCounts:
    in_building: int
    checked_in_today: int
    scheduled_today: int
    total_passes: int


@dataclass(frozen=True)
class HostedPass:
    guest_pass: GuestPass
    host: Optional[Resident]


@dataclass(frozen=True)
class ActivityEntry:
    entry: AuditLog
    guest_pass: Optional[GuestPass]
    host: Optional[Resident]


@dataclass(frozen=True)
class ResidentActivity:
    resident: Resident
    total_passes: int
    active_passes: int
    last_pass_at: Optional[datetime]


class PassStore(ABC):
    # --- residents ---

    @abstractmethod
    async def get_resident(self, resident_id: UUID) -> Optional[Resident]:
        ...

    @abstractmethod
    async def get_resident_by_email(self, email: str) -> Optional[Resident]:
        ...

    @abstractmethod
    async def save_resident(self, resident: Resident) -> Resident:
        ...

    # --- passes ---

    @abstractmethod
    async def create_pass(self, guest_pass: GuestPass, audit: Optional[AuditLog] = None) -> GuestPass:
        ...

    @abstractmethod
    async def get_pass(self, pass_id: UUID) -> Optional[GuestPass]:
        ...

    @abstractmethod
    async def list_passes(self, resident_id: UUID, limit: int = 100) -> List[GuestPass]:
        ...

    @abstractmethod
    async def compare_and_set(
        self,
        pass_id: UUID,
        *,
        expected_status: Iterable[str],
        changes: Dict[str, Any],
        expected_nonce: Optional[str] = None,
        expected_session_id: Optional[str] = None,
        audit: Optional[AuditLog] = None,
    ) -> Optional[GuestPass]:
        """Apply ``changes`` only if the row still matches; return the new row or None."""

    # --- replay ledger ---

    @abstractmethod
    async def find_used_token(self, pass_id: UUID, token_id: str) -> Optional[UsedToken]:
        ...

    @abstractmethod
    async def record_check_in(
        self,
        pass_id: UUID,
        token_id: str,
        *,
        method: str,
        at: datetime,
        audit: Optional[AuditLog] = None,
    ) -> CheckInWrite:
        """Insert (pass_id, token_id) and move the pass scheduled -> checked_in, all or nothing."""

    # --- building-wide views (front desk) ---

    @abstractmethod
    async def count_building(self, *, day: date, day_start: datetime, day_end: datetime) -> BuildingCounts:
        """Counts for one building-local day; ``day_start``/``day_end`` bound it in UTC."""

    @abstractmethod
    async def list_building_passes(self, limit: int = 100) -> List[HostedPass]:
        ...

    @abstractmethod
    async def recent_activity(self, limit: int = 50) -> List[ActivityEntry]:
        ...

    @abstractmethod
    async def resident_activity(self) -> List[ResidentActivity]:
        ...
