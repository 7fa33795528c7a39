from __future__ import annotations

from datetime import date
from typing import AsyncContextManager, Iterable, List, Optional, Sequence

from sqlalchemy import Select, case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.repositories import (
    ApplicationRepository,
    DateCapacityRepository,
    OpportunityRepository,
    TimeSlotRepository,
)
from ..models import (
    Application,
    ApplicationStatus,
    CapacityOverride,
    DateCapacity,
    Opportunity,
    TimeSlot,
    TimeSlotStatus,
)
from ..utils.time import utc_now_naive

_LIVE_EXCLUDED = (ApplicationStatus.REJECTED, ApplicationStatus.CANCELLED)


class SqlAlchemyOpportunityRepository(OpportunityRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, opportunity_id: int) -> Opportunity | None:
        result = await self.session.scalar(select(Opportunity).where(Opportunity.id == opportunity_id))
        return result if isinstance(result, Opportunity) else None

    async def set_has_time_slots(self, opportunity: Opportunity, value: bool = True) -> None:
        if opportunity.has_time_slots == value:
            return
        opportunity.has_time_slots = value
        opportunity.updated_at = utc_now_naive()
        self.session.add(opportunity)
        await self.session.flush()


class SqlAlchemyTimeSlotRepository(TimeSlotRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, opportunity_id: int, time_slot_id: int, *, for_update: bool = False) -> TimeSlot | None:
        stmt = select(TimeSlot).where(TimeSlot.id == time_slot_id, TimeSlot.opportunity_id == opportunity_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.scalar(stmt)
        return result if isinstance(result, TimeSlot) else None

    async def create(
        self,
        *,
        opportunity_id: int,
        start_date: date,
        end_date: date,
        default_capacity: int,
        minimum_stay: int,
        description: str,
        overrides: Sequence[tuple[date, date, int]],
    ) -> TimeSlot:
        now = utc_now_naive()
        slot = TimeSlot(
            opportunity_id=opportunity_id,
            start_date=start_date,
            end_date=end_date,
            default_capacity=default_capacity,
            minimum_stay=minimum_stay,
            description=description,
            applied_count=0,
            confirmed_count=0,
            status=TimeSlotStatus.OPEN,
            created_at=now,
            updated_at=now,
            capacity_overrides=[
                CapacityOverride(start_date=o_start, end_date=o_end, capacity=capacity)
                for o_start, o_end, capacity in overrides
            ],
        )
        self.session.add(slot)
        await self.session.flush()
        return slot

    async def list_for_opportunity(self, opportunity_id: int) -> List[TimeSlot]:
        stmt = select(TimeSlot).where(TimeSlot.opportunity_id == opportunity_id).order_by(TimeSlot.start_date)
        return list((await self.session.scalars(stmt)).all())

    async def save(self, slot: TimeSlot) -> TimeSlot:
        slot.updated_at = utc_now_naive()
        self.session.add(slot)
        await self.session.flush()
        return slot

    async def replace_overrides(self, slot: TimeSlot, overrides: Sequence[tuple[date, date, int]]) -> None:
        # Orphaned rows are deleted by the relationship cascade.
        slot.capacity_overrides = [
            CapacityOverride(start_date=o_start, end_date=o_end, capacity=capacity)
            for o_start, o_end, capacity in overrides
        ]
        await self.session.flush()

    async def has_applications(self, time_slot_id: int) -> bool:
        stmt = select(Application.id).where(Application.time_slot_id == time_slot_id).limit(1)
        return await self.session.scalar(stmt) is not None

    async def delete(self, slot: TimeSlot) -> None:
        await self.session.delete(slot)
        await self.session.flush()

    async def adjust_counters(self, time_slot_id: int, *, applied: int = 0, confirmed: int = 0) -> None:
        # One UPDATE statement; both counters floor at zero.
        applied_expr = TimeSlot.applied_count + applied
        confirmed_expr = TimeSlot.confirmed_count + confirmed
        stmt = (
            update(TimeSlot)
            .where(TimeSlot.id == time_slot_id)
            .values(
                applied_count=case((applied_expr < 0, 0), else_=applied_expr),
                confirmed_count=case((confirmed_expr < 0, 0), else_=confirmed_expr),
                updated_at=utc_now_naive(),
            )
            .execution_options(synchronize_session="fetch")
        )
        await self.session.execute(stmt)


class SqlAlchemyDateCapacityRepository(DateCapacityRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def existing_days(self, opportunity_id: int, time_slot_id: int, days: Sequence[date]) -> set[date]:
        if not days:
            return set()
        stmt = select(DateCapacity.day).where(
            DateCapacity.opportunity_id == opportunity_id,
            DateCapacity.time_slot_id == time_slot_id,
            DateCapacity.day.in_(list(days)),
        )
        return set((await self.session.scalars(stmt)).all())

    async def insert_many(self, opportunity_id: int, time_slot_id: int, rows: Iterable[tuple[date, int]]) -> int:
        now = utc_now_naive()
        records = [
            DateCapacity(
                opportunity_id=opportunity_id,
                time_slot_id=time_slot_id,
                day=day,
                capacity=capacity,
                booked_count=0,
                created_at=now,
                updated_at=now,
            )
            for day, capacity in rows
        ]
        self.session.add_all(records)
        await self.session.flush()
        return len(records)

    async def lock_days(self, opportunity_id: int, time_slot_id: int, days: Sequence[date]) -> dict[date, DateCapacity]:
        if not days:
            return {}
        # Always lock in date order.
        stmt: Select[tuple[DateCapacity]] = (
            select(DateCapacity)
            .where(
                DateCapacity.opportunity_id == opportunity_id,
                DateCapacity.time_slot_id == time_slot_id,
                DateCapacity.day.in_(list(days)),
            )
            .order_by(DateCapacity.day)
            .with_for_update()
        )
        records = (await self.session.scalars(stmt)).all()
        return {record.day: record for record in records}

    async def lock_slot(self, opportunity_id: int, time_slot_id: int) -> dict[date, DateCapacity]:
        stmt: Select[tuple[DateCapacity]] = (
            select(DateCapacity)
            .where(DateCapacity.opportunity_id == opportunity_id, DateCapacity.time_slot_id == time_slot_id)
            .order_by(DateCapacity.day)
            .with_for_update()
        )
        records = (await self.session.scalars(stmt)).all()
        return {record.day: record for record in records}

    async def set_capacities(self, changes: Sequence[tuple[DateCapacity, int]]) -> None:
        now = utc_now_naive()
        for record, capacity in changes:
            record.capacity = capacity
            record.updated_at = now
        await self.session.flush()

    async def delete_records(self, records: Sequence[DateCapacity]) -> None:
        for record in records:
            await self.session.delete(record)
        await self.session.flush()

    async def increment(self, records: Sequence[DateCapacity]) -> None:
        now = utc_now_naive()
        for record in records:
            record.booked_count += 1
            record.updated_at = now
        await self.session.flush()

    async def decrement(self, records: Sequence[DateCapacity]) -> None:
        now = utc_now_naive()
        for record in records:
            record.booked_count = max(record.booked_count - 1, 0)
            record.updated_at = now
        await self.session.flush()

    async def list_range(
        self,
        opportunity_id: int,
        start: date,
        end: date,
        time_slot_id: int | None = None,
    ) -> List[DateCapacity]:
        stmt = select(DateCapacity).where(
            DateCapacity.opportunity_id == opportunity_id,
            DateCapacity.day >= start,
            DateCapacity.day <= end,
        )
        if time_slot_id is not None:
            stmt = stmt.where(DateCapacity.time_slot_id == time_slot_id)
        stmt = stmt.order_by(DateCapacity.day, DateCapacity.time_slot_id)
        return list((await self.session.scalars(stmt)).all())

    def savepoint(self) -> AsyncContextManager[object]:
        return self.session.begin_nested()


class SqlAlchemyApplicationRepository(ApplicationRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def has_live(self, user_id: int, opportunity_id: int, time_slot_id: int | None) -> bool:
        stmt = select(Application.id).where(
            Application.user_id == user_id,
            Application.opportunity_id == opportunity_id,
            Application.status.not_in(_LIVE_EXCLUDED),
        )
        if time_slot_id is None:
            stmt = stmt.where(Application.time_slot_id.is_(None))
        else:
            stmt = stmt.where(Application.time_slot_id == time_slot_id)
        return await self.session.scalar(stmt.limit(1)) is not None

    async def create(
        self,
        *,
        user_id: int,
        opportunity_id: int,
        host_id: int,
        time_slot_id: int | None,
        status: ApplicationStatus,
        start_date: date,
        end_date: date,
        duration_days: int,
        message: str,
    ) -> Application:
        now = utc_now_naive()
        application = Application(
            user_id=user_id,
            opportunity_id=opportunity_id,
            host_id=host_id,
            time_slot_id=time_slot_id,
            status=status,
            start_date=start_date,
            end_date=end_date,
            duration_days=duration_days,
            message=message,
            version=1,
            created_at=now,
            updated_at=now,
        )
        self.session.add(application)
        await self.session.flush()
        return application

    async def get(self, application_id: int) -> Optional[Application]:
        result = await self.session.scalar(select(Application).where(Application.id == application_id))
        return result if isinstance(result, Application) else None

    async def get_for_update(self, application_id: int) -> Optional[Application]:
        stmt = select(Application).where(Application.id == application_id).with_for_update()
        result = await self.session.scalar(stmt)
        return result if isinstance(result, Application) else None

    async def list_by_user(self, user_id: int, status: ApplicationStatus | None = None) -> List[Application]:
        stmt = select(Application).where(Application.user_id == user_id)
        if status is not None:
            stmt = stmt.where(Application.status == status)
        return list((await self.session.scalars(stmt.order_by(Application.created_at.desc()))).all())

    async def list_by_host(self, host_id: int, status: ApplicationStatus | None = None) -> List[Application]:
        stmt = select(Application).where(Application.host_id == host_id)
        if status is not None:
            stmt = stmt.where(Application.status == status)
        return list((await self.session.scalars(stmt.order_by(Application.created_at.desc()))).all())

    async def save(self, application: Application) -> Application:
        self.session.add(application)
        await self.session.flush()
        return application
