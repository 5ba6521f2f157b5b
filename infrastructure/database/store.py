"""SQL implementation of the pass record store (SQLModel + async SQLAlchemy)."""
import asyncio
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, Type, TypeVar
from uuid import UUID

import structlog
from sqlalchemy import case, func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from domain.clock import utcnow
from domain.errors import StoreUnavailable
from domain.models import AuditLog, GuestPass, PassStatus, Resident, UsedToken
from domain.store import (
    ActivityEntry,
    BuildingCounts,
    CheckInWrite,
    HostedPass,
    PassStore,
    ResidentActivity,
)

logger = structlog.get_logger()

T = TypeVar("T")


class _StaleCheckIn(Exception):
    """Raised inside the check-in transaction to roll back the ledger insert."""


class SqlPassStore(PassStore):
    def __init__(self, session_maker: sessionmaker, timeout: float = 5.0):
        self.session_maker = session_maker
        self.timeout = timeout

    async def _transaction(self, work: Callable[[AsyncSession], Awaitable[T]]) -> T:
        async with self.session_maker() as session:
            async with session.begin():
                return await work(session)

    async def _run(
        self,
        work: Callable[[AsyncSession], Awaitable[T]],
        passthrough: Tuple[Type[BaseException], ...] = (),
    ) -> T:
        try:
            return await asyncio.wait_for(self._transaction(work), timeout=self.timeout)
        except passthrough:
            raise
        except asyncio.TimeoutError as e:
            logger.error("store_timeout", timeout=self.timeout)
            raise StoreUnavailable("Record store timed out") from e
        except (SQLAlchemyError, OSError) as e:
            logger.error("store_error", error=str(e))
            raise StoreUnavailable(str(e)) from e

    # --- residents ---

    async def get_resident(self, resident_id: UUID) -> Optional[Resident]:
        async def work(session: AsyncSession):
            return await session.get(Resident, resident_id)
        return await self._run(work)

    async def get_resident_by_email(self, email: str) -> Optional[Resident]:
        async def work(session: AsyncSession):
            result = await session.exec(select(Resident).where(Resident.email == email))
            return result.first()
        return await self._run(work)

    async def save_resident(self, resident: Resident) -> Resident:
        async def work(session: AsyncSession):
            resident.updated_at = utcnow()
            merged = await session.merge(resident)
            await session.flush()
            await session.refresh(merged)
            return merged
        return await self._run(work)

    # --- passes ---

    async def create_pass(self, guest_pass: GuestPass, audit: Optional[AuditLog] = None) -> GuestPass:
        async def work(session: AsyncSession):
            session.add(guest_pass)
            await session.flush()
            if audit is not None:
                session.add(audit)
            await session.flush()
            await session.refresh(guest_pass)
            return guest_pass
        return await self._run(work)

    async def get_pass(self, pass_id: UUID) -> Optional[GuestPass]:
        async def work(session: AsyncSession):
            return await session.get(GuestPass, pass_id)
        return await self._run(work)

    async def list_passes(self, resident_id: UUID, limit: int = 100) -> List[GuestPass]:
        async def work(session: AsyncSession):
            query = (
                select(GuestPass)
                .where(GuestPass.resident_id == resident_id)
                .order_by(GuestPass.visit_date.desc(), GuestPass.created_at.desc())
                .limit(limit)
            )
            result = await session.exec(query)
            return list(result.all())
        return await self._run(work)

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
        statuses = list(expected_status)

        async def work(session: AsyncSession):
            stmt = (
                update(GuestPass)
                .where(GuestPass.id == pass_id)
                .where(GuestPass.status.in_(statuses))
            )
            if expected_nonce is not None:
                stmt = stmt.where(GuestPass.token_nonce == expected_nonce)
            if expected_session_id is not None:
                stmt = stmt.where(GuestPass.verification_session_id == expected_session_id)
            stmt = stmt.values(**changes, updated_at=utcnow()).execution_options(
                synchronize_session=False
            )

            result = await session.execute(stmt)
            if result.rowcount != 1:
                return None
            if audit is not None:
                session.add(audit)
            await session.flush()
            return await session.get(GuestPass, pass_id, populate_existing=True)

        return await self._run(work)

    # --- replay ledger ---

    async def find_used_token(self, pass_id: UUID, token_id: str) -> Optional[UsedToken]:
        async def work(session: AsyncSession):
            return await session.get(UsedToken, (pass_id, token_id))
        return await self._run(work)

    async def record_check_in(
        self,
        pass_id: UUID,
        token_id: str,
        *,
        method: str,
        at: datetime,
        audit: Optional[AuditLog] = None,
    ) -> CheckInWrite:
        async def work(session: AsyncSession):
            session.add(UsedToken(pass_id=pass_id, token_id=token_id, method=method, used_at=at))
            await session.flush()

            result = await session.execute(
                update(GuestPass)
                .where(GuestPass.id == pass_id)
                .where(GuestPass.status == PassStatus.SCHEDULED.value)
                .values(status=PassStatus.CHECKED_IN.value, checked_in_at=at, updated_at=at)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise _StaleCheckIn()
            if audit is not None:
                session.add(audit)
            return CheckInWrite.APPLIED

        try:
            return await self._run(work, passthrough=(IntegrityError, _StaleCheckIn))
        except IntegrityError:
            logger.info("check_in_conflict", pass_id=str(pass_id), token_id=token_id)
            return CheckInWrite.CONFLICT
        except _StaleCheckIn:
            return CheckInWrite.STALE

    # --- building-wide views ---

    async def count_building(self, *, day: date, day_start: datetime, day_end: datetime) -> BuildingCounts:
        async def count(session: AsyncSession, *conditions) -> int:
            result = await session.exec(select(func.count(GuestPass.id)).where(*conditions))
            return int(result.one() or 0)

        async def work(session: AsyncSession):
            return BuildingCounts(
                in_building=await count(
                    session,
                    GuestPass.status == PassStatus.CHECKED_IN.value,
                    GuestPass.checked_out_at.is_(None),
                    GuestPass.checked_in_at >= day_start,
                ),
                checked_in_today=await count(
                    session,
                    GuestPass.checked_in_at >= day_start,
                    GuestPass.checked_in_at < day_end,
                ),
                scheduled_today=await count(
                    session,
                    GuestPass.status.in_([PassStatus.APPROVED.value, PassStatus.SCHEDULED.value]),
                    GuestPass.visit_date == day,
                ),
                total_passes=await count(session),
            )
        return await self._run(work)

    async def list_building_passes(self, limit: int = 100) -> List[HostedPass]:
        async def work(session: AsyncSession):
            result = await session.exec(
                select(GuestPass, Resident)
                .join(Resident, Resident.id == GuestPass.resident_id, isouter=True)
                .order_by(GuestPass.created_at.desc())
                .limit(limit)
            )
            return [HostedPass(guest_pass=p, host=r) for p, r in result.all()]
        return await self._run(work)

    async def recent_activity(self, limit: int = 50) -> List[ActivityEntry]:
        async def work(session: AsyncSession):
            result = await session.exec(
                select(AuditLog, GuestPass, Resident)
                .join(GuestPass, GuestPass.id == AuditLog.pass_id, isouter=True)
                .join(Resident, Resident.id == GuestPass.resident_id, isouter=True)
                .order_by(AuditLog.created_at.desc())
                .limit(limit)
            )
            return [ActivityEntry(entry=a, guest_pass=p, host=r) for a, p, r in result.all()]
        return await self._run(work)

    async def resident_activity(self) -> List[ResidentActivity]:
        active = [
            PassStatus.APPROVED.value,
            PassStatus.SCHEDULED.value,
            PassStatus.CHECKED_IN.value,
        ]

        async def work(session: AsyncSession):
            result = await session.exec(
                select(
                    Resident,
                    func.count(GuestPass.id),
                    func.coalesce(func.sum(case((GuestPass.status.in_(active), 1), else_=0)), 0),
                    func.max(GuestPass.created_at),
                )
                .join(GuestPass, GuestPass.resident_id == Resident.id, isouter=True)
                .group_by(Resident.id)
                .order_by(Resident.name)
            )
            return [
                ResidentActivity(
                    resident=resident,
                    total_passes=int(total or 0),
                    active_passes=int(active_count or 0),
                    last_pass_at=last,
                )
                for resident, total, active_count, last in result.all()
            ]
        return await self._run(work)
