from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, AsyncIterator, Iterable, Optional, Sequence

import pytest
from workstay.models import Application, ApplicationStatus, CapacityOverride, Opportunity, TimeSlot, TimeSlotStatus
from workstay.usecases.allocator import BookingAllocator
from workstay.usecases.applications import ApplicationLifecycle
from workstay.usecases.ledger import DateCapacityLedger
from workstay.usecases.time_slots import TimeSlotRegistry

HOST_ID = 10
OPPORTUNITY_ID = 1

_NOW = datetime(2025, 1, 1, 0, 0, 0)


@dataclass
class FakeDayRow:
    opportunity_id: int
    time_slot_id: int
    day: date
    capacity: int
    booked_count: int = 0


@dataclass
class _Txn:
    held: list[asyncio.Lock] = field(default_factory=list)
    journal: list[tuple[Any, str, Any]] = field(default_factory=list)


class FakeStore:
    """
    In-memory stand-in for the database: row locks held until the enclosing
    transaction ends, and an undo journal so a failed transaction leaves no trace.
    """

    def __init__(self) -> None:
        self._locks: dict[tuple[Any, ...], asyncio.Lock] = {}
        self._txn: ContextVar[Optional[_Txn]] = ContextVar("fake_txn", default=None)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        txn = _Txn()
        token = self._txn.set(txn)
        try:
            yield
        except BaseException:
            self._undo(txn.journal, 0)
            raise
        finally:
            for lock in txn.held:
                lock.release()
            self._txn.reset(token)

    @asynccontextmanager
    async def savepoint(self) -> AsyncIterator[None]:
        txn = self._txn.get()
        mark = len(txn.journal) if txn is not None else 0
        try:
            yield
        except BaseException:
            if txn is not None:
                self._undo(txn.journal, mark)
            raise

    async def lock(self, key: tuple[Any, ...]) -> None:
        txn = self._txn.get()
        if txn is None:
            return
        lock = self._locks.setdefault(key, asyncio.Lock())
        if lock in txn.held:
            return
        await lock.acquire()
        txn.held.append(lock)

    def write(self, obj: Any, attr: str, value: Any) -> None:
        txn = self._txn.get()
        if txn is not None:
            txn.journal.append((obj, attr, getattr(obj, attr)))
        setattr(obj, attr, value)

    @staticmethod
    def _undo(journal: list[tuple[Any, str, Any]], mark: int) -> None:
        while len(journal) > mark:
            obj, attr, old = journal.pop()
            setattr(obj, attr, old)


class FakeOpportunityRepo:
    def __init__(self, store: FakeStore) -> None:
        self.store = store
        self.rows: dict[int, Opportunity] = {}

    def add(self, opportunity_id: int, host_id: int, *, has_time_slots: bool = False) -> Opportunity:
        opportunity = Opportunity(
            id=opportunity_id,
            host_id=host_id,
            title=f"opportunity {opportunity_id}",
            has_time_slots=has_time_slots,
            created_at=_NOW,
            updated_at=_NOW,
        )
        self.rows[opportunity_id] = opportunity
        return opportunity

    async def get(self, opportunity_id: int) -> Opportunity | None:
        return self.rows.get(opportunity_id)

    async def set_has_time_slots(self, opportunity: Opportunity, value: bool = True) -> None:
        self.store.write(opportunity, "has_time_slots", value)


class FakeTimeSlotRepo:
    def __init__(self, store: FakeStore, applications: FakeApplicationRepo) -> None:
        self.store = store
        self.applications = applications
        self.rows: dict[int, TimeSlot] = {}
        self._next_id = 100

    async def get(self, opportunity_id: int, time_slot_id: int, *, for_update: bool = False) -> TimeSlot | None:
        slot = self.rows.get(time_slot_id)
        if slot is None or slot.opportunity_id != opportunity_id:
            return None
        if for_update:
            await self.store.lock(("time_slot", time_slot_id))
        return slot

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
        self._next_id += 1
        slot = TimeSlot(
            id=self._next_id,
            opportunity_id=opportunity_id,
            start_date=start_date,
            end_date=end_date,
            default_capacity=default_capacity,
            minimum_stay=minimum_stay,
            description=description,
            applied_count=0,
            confirmed_count=0,
            status=TimeSlotStatus.OPEN,
            created_at=_NOW,
            updated_at=_NOW,
            capacity_overrides=[
                CapacityOverride(start_date=o_start, end_date=o_end, capacity=capacity)
                for o_start, o_end, capacity in overrides
            ],
        )
        self.rows[slot.id] = slot
        return slot

    async def list_for_opportunity(self, opportunity_id: int) -> list[TimeSlot]:
        slots = [s for s in self.rows.values() if s.opportunity_id == opportunity_id]
        return sorted(slots, key=lambda s: (s.start_date, s.id))

    async def save(self, slot: TimeSlot) -> TimeSlot:
        return slot

    async def replace_overrides(self, slot: TimeSlot, overrides: Sequence[tuple[date, date, int]]) -> None:
        replacement = [
            CapacityOverride(start_date=o_start, end_date=o_end, capacity=capacity)
            for o_start, o_end, capacity in overrides
        ]
        self.store.write(slot, "capacity_overrides", replacement)

    async def has_applications(self, time_slot_id: int) -> bool:
        return any(a.time_slot_id == time_slot_id for a in self.applications.rows.values())

    async def delete(self, slot: TimeSlot) -> None:
        del self.rows[slot.id]

    async def adjust_counters(self, time_slot_id: int, *, applied: int = 0, confirmed: int = 0) -> None:
        slot = self.rows[time_slot_id]
        if applied:
            self.store.write(slot, "applied_count", max(slot.applied_count + applied, 0))
        if confirmed:
            self.store.write(slot, "confirmed_count", max(slot.confirmed_count + confirmed, 0))


class FakeDateCapacityRepo:
    def __init__(self, store: FakeStore) -> None:
        self.store = store
        self.rows: dict[tuple[int, int, date], FakeDayRow] = {}

    def booked(self, time_slot_id: int) -> dict[date, int]:
        return {
            day: row.booked_count
            for (_, slot_id, day), row in sorted(self.rows.items())
            if slot_id == time_slot_id
        }

    async def existing_days(self, opportunity_id: int, time_slot_id: int, days: Sequence[date]) -> set[date]:
        return {day for day in days if (opportunity_id, time_slot_id, day) in self.rows}

    async def insert_many(self, opportunity_id: int, time_slot_id: int, rows: Iterable[tuple[date, int]]) -> int:
        count = 0
        for day, capacity in rows:
            self.rows[(opportunity_id, time_slot_id, day)] = FakeDayRow(opportunity_id, time_slot_id, day, capacity)
            count += 1
        return count

    async def lock_days(self, opportunity_id: int, time_slot_id: int, days: Sequence[date]) -> dict[date, Any]:
        locked = {}
        for day in sorted(set(days)):
            row = self.rows.get((opportunity_id, time_slot_id, day))
            if row is None:
                continue
            await self.store.lock(("date_capacity", opportunity_id, time_slot_id, day))
            await asyncio.sleep(0)
            locked[day] = row
        return locked

    async def lock_slot(self, opportunity_id: int, time_slot_id: int) -> dict[date, Any]:
        locked = {}
        for (opp_id, slot_id, day), row in sorted(self.rows.items()):
            if opp_id != opportunity_id or slot_id != time_slot_id:
                continue
            await self.store.lock(("date_capacity", opportunity_id, time_slot_id, day))
            locked[day] = row
        return locked

    async def set_capacities(self, changes: Sequence[tuple[Any, int]]) -> None:
        for record, capacity in changes:
            self.store.write(record, "capacity", capacity)

    async def delete_records(self, records: Sequence[Any]) -> None:
        for record in records:
            del self.rows[(record.opportunity_id, record.time_slot_id, record.day)]

    async def increment(self, records: Sequence[Any]) -> None:
        for record in records:
            await asyncio.sleep(0)
            self.store.write(record, "booked_count", record.booked_count + 1)

    async def decrement(self, records: Sequence[Any]) -> None:
        for record in records:
            self.store.write(record, "booked_count", max(record.booked_count - 1, 0))

    async def list_range(
        self,
        opportunity_id: int,
        start: date,
        end: date,
        time_slot_id: int | None = None,
    ) -> list[Any]:
        return [
            row
            for (opp_id, slot_id, day), row in sorted(self.rows.items())
            if opp_id == opportunity_id
            and start <= day <= end
            and (time_slot_id is None or slot_id == time_slot_id)
        ]

    def savepoint(self):
        return self.store.savepoint()


class FakeApplicationRepo:
    def __init__(self, store: FakeStore) -> None:
        self.store = store
        self.rows: dict[int, Application] = {}
        self._next_id = 500

    async def has_live(self, user_id: int, opportunity_id: int, time_slot_id: int | None) -> bool:
        return any(
            a.user_id == user_id
            and a.opportunity_id == opportunity_id
            and a.time_slot_id == time_slot_id
            and a.status not in (ApplicationStatus.REJECTED, ApplicationStatus.CANCELLED)
            for a in self.rows.values()
        )

    async def create(self, **fields: Any) -> Application:
        self._next_id += 1
        application = Application(
            id=self._next_id,
            version=1,
            created_at=_NOW,
            updated_at=_NOW,
            **fields,
        )
        self.rows[application.id] = application
        return application

    async def get(self, application_id: int) -> Application | None:
        return self.rows.get(application_id)

    async def get_for_update(self, application_id: int) -> Application | None:
        application = self.rows.get(application_id)
        if application is not None:
            await self.store.lock(("application", application_id))
        return application

    async def list_by_user(self, user_id: int, status: ApplicationStatus | None = None) -> list[Application]:
        return [
            a for a in self.rows.values() if a.user_id == user_id and (status is None or a.status == status)
        ]

    async def list_by_host(self, host_id: int, status: ApplicationStatus | None = None) -> list[Application]:
        return [
            a for a in self.rows.values() if a.host_id == host_id and (status is None or a.status == status)
        ]

    async def save(self, application: Application) -> Application:
        return application


@dataclass
class Booking:
    store: FakeStore
    opportunities: FakeOpportunityRepo
    slots: FakeTimeSlotRepo
    capacities: FakeDateCapacityRepo
    applications: FakeApplicationRepo
    ledger: DateCapacityLedger
    registry: TimeSlotRegistry
    allocator: BookingAllocator
    lifecycle: ApplicationLifecycle

    async def open_slot(
        self,
        start: date,
        end: date,
        capacity: int,
        *,
        minimum_stay: int = 0,
        overrides: Sequence[Any] = (),
    ) -> TimeSlot:
        async with self.store.transaction():
            return await self.registry.open_slot(
                opportunity_id=OPPORTUNITY_ID,
                actor_id=HOST_ID,
                start_date=start,
                end_date=end,
                default_capacity=capacity,
                minimum_stay=minimum_stay,
                overrides=overrides,
            )


@pytest.fixture
def booking() -> Booking:
    store = FakeStore()
    opportunities = FakeOpportunityRepo(store)
    opportunities.add(OPPORTUNITY_ID, HOST_ID)
    applications = FakeApplicationRepo(store)
    slots = FakeTimeSlotRepo(store, applications)
    capacities = FakeDateCapacityRepo(store)
    ledger = DateCapacityLedger(capacities)
    registry = TimeSlotRegistry(slots, opportunities, ledger, default_minimum_stay=14)
    allocator = BookingAllocator(registry, ledger)
    lifecycle = ApplicationLifecycle(applications, opportunities, registry, allocator)
    return Booking(
        store=store,
        opportunities=opportunities,
        slots=slots,
        capacities=capacities,
        applications=applications,
        ledger=ledger,
        registry=registry,
        allocator=allocator,
        lifecycle=lifecycle,
    )
