from __future__ import annotations

from datetime import date
from typing import AsyncContextManager, Iterable, Protocol, Sequence

from ..models import Application, ApplicationStatus, DateCapacity, Opportunity, TimeSlot


class OpportunityRepository(Protocol):
    async def get(self, opportunity_id: int) -> Opportunity | None: ...

    async def set_has_time_slots(self, opportunity: Opportunity, value: bool = True) -> None: ...


class TimeSlotRepository(Protocol):
    async def get(self, opportunity_id: int, time_slot_id: int, *, for_update: bool = False) -> TimeSlot | None: ...

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
    ) -> TimeSlot: ...

    async def list_for_opportunity(self, opportunity_id: int) -> list[TimeSlot]: ...

    async def save(self, slot: TimeSlot) -> TimeSlot: ...

    async def replace_overrides(self, slot: TimeSlot, overrides: Sequence[tuple[date, date, int]]) -> None: ...

    async def has_applications(self, time_slot_id: int) -> bool: ...

    async def delete(self, slot: TimeSlot) -> None: ...

    async def adjust_counters(self, time_slot_id: int, *, applied: int = 0, confirmed: int = 0) -> None: ...


class DateCapacityRepository(Protocol):
    async def existing_days(self, opportunity_id: int, time_slot_id: int, days: Sequence[date]) -> set[date]: ...

    async def insert_many(self, opportunity_id: int, time_slot_id: int, rows: Iterable[tuple[date, int]]) -> int: ...

    async def lock_days(self, opportunity_id: int, time_slot_id: int, days: Sequence[date]) -> dict[date, DateCapacity]: ...

    async def lock_slot(self, opportunity_id: int, time_slot_id: int) -> dict[date, DateCapacity]: ...

    async def set_capacities(self, changes: Sequence[tuple[DateCapacity, int]]) -> None: ...

    async def delete_records(self, records: Sequence[DateCapacity]) -> None: ...

    async def increment(self, records: Sequence[DateCapacity]) -> None: ...

    async def decrement(self, records: Sequence[DateCapacity]) -> None: ...

    async def list_range(
        self,
        opportunity_id: int,
        start: date,
        end: date,
        time_slot_id: int | None = None,
    ) -> list[DateCapacity]: ...

    def savepoint(self) -> AsyncContextManager[object]: ...


class ApplicationRepository(Protocol):
    async def has_live(self, user_id: int, opportunity_id: int, time_slot_id: int | None) -> bool: ...

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
    ) -> Application: ...

    async def get(self, application_id: int) -> Application | None: ...

    async def get_for_update(self, application_id: int) -> Application | None: ...

    async def list_by_user(self, user_id: int, status: ApplicationStatus | None = None) -> list[Application]: ...

    async def list_by_host(self, host_id: int, status: ApplicationStatus | None = None) -> list[Application]: ...

    async def save(self, application: Application) -> Application: ...
