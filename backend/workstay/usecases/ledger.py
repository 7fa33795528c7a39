from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Callable, Sequence

from ..domain.errors import CapacityBelowBookedError
from ..domain.repositories import DateCapacityRepository
from ..domain.services import check_days, expand_days

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DayAvailability:
    day: date
    time_slot_id: int | None
    capacity: int
    booked_count: int

    @property
    def available(self) -> int:
        return max(self.capacity - self.booked_count, 0)

    @property
    def is_available(self) -> bool:
        return self.booked_count < self.capacity


class DateCapacityLedger:
    """
    Per-day capacity counters for a time slot.

    This is the only component that writes `booked_count`. A day with no
    record is not bookable. Every call runs inside the caller's transaction;
    reservations lock the day rows before checking them.
    """

    def __init__(self, repo: DateCapacityRepository) -> None:
        self.repo = repo

    async def ensure_range(
        self,
        opportunity_id: int,
        time_slot_id: int,
        start: date,
        end: date,
        capacity_for: Callable[[date], int],
    ) -> int:
        days = expand_days(start, end)
        existing = await self.repo.existing_days(opportunity_id, time_slot_id, days)
        missing = [(day, capacity_for(day)) for day in days if day not in existing]
        if not missing:
            return 0
        created = await self.repo.insert_many(opportunity_id, time_slot_id, missing)
        logger.info(
            "created %d capacity records for opportunity=%s time_slot=%s", created, opportunity_id, time_slot_id
        )
        return created

    async def resize(
        self,
        opportunity_id: int,
        time_slot_id: int,
        start: date,
        end: date,
        capacity_for: Callable[[date], int],
    ) -> None:
        """
        Reshape a slot's day records to a new window and capacity plan.

        Records outside [start, end] are removed, records inside get their
        recomputed capacity and missing days are created. A booked day that
        would fall outside the window or below its booked count raises
        CapacityBelowBookedError, earliest day first, before anything is written.
        """
        records = await self.repo.lock_slot(opportunity_id, time_slot_id)
        window = set(expand_days(start, end))
        outside = []
        changes = []
        for day in sorted(records):
            record = records[day]
            if day not in window:
                if record.booked_count > 0:
                    raise CapacityBelowBookedError(
                        f"{day.isoformat()} has {record.booked_count} bookings outside the new window", day=day
                    )
                outside.append(record)
                continue
            capacity = capacity_for(day)
            if capacity < record.booked_count:
                raise CapacityBelowBookedError(
                    f"{day.isoformat()} has {record.booked_count} bookings, more than capacity {capacity}", day=day
                )
            if capacity != record.capacity:
                changes.append((record, capacity))

        if outside:
            await self.repo.delete_records(outside)
        if changes:
            await self.repo.set_capacities(changes)
        missing = [(day, capacity_for(day)) for day in sorted(window) if day not in records]
        if missing:
            await self.repo.insert_many(opportunity_id, time_slot_id, missing)
        logger.info(
            "resized ledger for opportunity=%s time_slot=%s: %d removed, %d changed, %d created",
            opportunity_id,
            time_slot_id,
            len(outside),
            len(changes),
            len(missing),
        )

    async def drop_slot(self, opportunity_id: int, time_slot_id: int) -> int:
        records = await self.repo.lock_slot(opportunity_id, time_slot_id)
        if records:
            await self.repo.delete_records(list(records.values()))
        return len(records)

    async def check_and_reserve(self, opportunity_id: int, time_slot_id: int, days: Sequence[date]) -> list[date]:
        records = await self.repo.lock_days(opportunity_id, time_slot_id, days)
        # Raises before any counter moves, so a failed check leaves every day untouched.
        ordered = check_days(records, days)
        await self.repo.increment([records[day] for day in ordered])
        return ordered

    async def release(self, opportunity_id: int, time_slot_id: int, days: Sequence[date]) -> int:
        records = await self.repo.lock_days(opportunity_id, time_slot_id, days)
        releasable = []
        for day in sorted(set(days)):
            record = records.get(day)
            if record is None:
                logger.error(
                    "ledger inconsistency: no capacity record for %s (opportunity=%s time_slot=%s)",
                    day.isoformat(),
                    opportunity_id,
                    time_slot_id,
                )
                continue
            if record.booked_count <= 0:
                logger.error(
                    "ledger inconsistency: booked_count already 0 for %s (opportunity=%s time_slot=%s)",
                    day.isoformat(),
                    opportunity_id,
                    time_slot_id,
                )
                continue
            releasable.append(record)
        if releasable:
            await self.repo.decrement(releasable)
        return len(releasable)

    async def list_range(
        self,
        opportunity_id: int,
        start: date,
        end: date,
        time_slot_id: int | None = None,
    ) -> list[DayAvailability]:
        records = await self.repo.list_range(opportunity_id, start, end, time_slot_id)
        by_day: dict[date, list[DayAvailability]] = {}
        for record in records:
            by_day.setdefault(record.day, []).append(
                DayAvailability(
                    day=record.day,
                    time_slot_id=record.time_slot_id,
                    capacity=record.capacity,
                    booked_count=record.booked_count,
                )
            )
        items: list[DayAvailability] = []
        for day in expand_days(start, end):
            entries = by_day.get(day)
            if entries:
                items.extend(entries)
            else:
                items.append(DayAvailability(day=day, time_slot_id=time_slot_id, capacity=0, booked_count=0))
        return items
