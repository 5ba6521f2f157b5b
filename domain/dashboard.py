"""Front desk dashboard: building-wide counts, pass list and activity feed.

Read-only views for staff. "Today" is the building-local calendar day, so the
check-in window is computed in the building timezone and queried in UTC.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, List, Optional, Tuple
from zoneinfo import ZoneInfo

from .clock import utcnow
from .lifecycle import Actor
from .models import GuestPass
from .results import FailureKind, Ok, Result, fail
from .store import ActivityEntry, BuildingCounts, HostedPass, PassStore, ResidentActivity

MAX_ROWS = 500


@dataclass(frozen=True)
class BuildingMetrics:
    day: date
    counts: BuildingCounts


class FrontDeskDashboard:
    def __init__(
        self,
        store: PassStore,
        building_timezone: str = "UTC",
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.tz = ZoneInfo(building_timezone)
        self.clock = clock

    def today(self) -> date:
        return self.clock().astimezone(self.tz).date()

    def day_window(self, day: date) -> Tuple[datetime, datetime]:
        """UTC bounds of one building-local day, end exclusive."""
        start = datetime.combine(day, time.min, tzinfo=self.tz)
        end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=self.tz)
        return start.astimezone(timezone.utc), end.astimezone(timezone.utc)

    @staticmethod
    def _clamp(limit: int) -> int:
        return max(1, min(limit, MAX_ROWS))

    async def metrics(self, actor: Actor) -> Result[BuildingMetrics]:
        if not actor.is_staff:
            return fail(FailureKind.FORBIDDEN, "Staff only")
        day = self.today()
        start, end = self.day_window(day)
        counts = await self.store.count_building(day=day, day_start=start, day_end=end)
        return Ok(BuildingMetrics(day=day, counts=counts))

    async def passes(self, actor: Actor, limit: int = 100) -> Result[List[HostedPass]]:
        if not actor.is_staff:
            return fail(FailureKind.FORBIDDEN, "Staff only")
        return Ok(await self.store.list_building_passes(self._clamp(limit)))

    async def activity(self, actor: Actor, limit: int = 50) -> Result[List[ActivityEntry]]:
        if not actor.is_staff:
            return fail(FailureKind.FORBIDDEN, "Staff only")
        return Ok(await self.store.recent_activity(self._clamp(limit)))

    async def residents(self, actor: Actor) -> Result[List[ResidentActivity]]:
        if not actor.is_staff:
            return fail(FailureKind.FORBIDDEN, "Staff only")
        return Ok(await self.store.resident_activity())


def guest_display_name(guest_pass: Optional[GuestPass]) -> Optional[str]:
    if guest_pass is None:
        return None
    return guest_pass.guest_name or guest_pass.guest_email
