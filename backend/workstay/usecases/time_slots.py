from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Sequence

from ..domain.errors import (
    InvalidTimeSlotError,
    OpportunityNotFoundError,
    PermissionDeniedError,
    SlotInUseError,
    SlotNotFoundError,
)
from ..domain.repositories import OpportunityRepository, TimeSlotRepository
from ..domain.services import OverrideLike, SlotWindow, capacity_for_day, stay_length, validate_window
from ..models import Opportunity, TimeSlot, TimeSlotStatus
from .ledger import DateCapacityLedger


@dataclass(frozen=True)
class OverrideSpec:
    start_date: date
    end_date: date
    capacity: int


class TimeSlotRegistry:
    """Time-slot metadata, window policy and the applied/confirmed rollups."""

    def __init__(
        self,
        slot_repo: TimeSlotRepository,
        opportunity_repo: OpportunityRepository,
        ledger: DateCapacityLedger,
        *,
        default_minimum_stay: int = 14,
    ) -> None:
        self.slot_repo = slot_repo
        self.opportunity_repo = opportunity_repo
        self.ledger = ledger
        self.default_minimum_stay = default_minimum_stay

    async def get_slot(self, opportunity_id: int, time_slot_id: int, *, for_update: bool = False) -> TimeSlot:
        slot = await self.slot_repo.get(opportunity_id, time_slot_id, for_update=for_update)
        if slot is None:
            raise SlotNotFoundError("time slot not found")
        return slot

    def validate_window(self, slot: TimeSlot, start: date, end: date) -> int:
        window = SlotWindow(
            status=slot.status,
            start_date=slot.start_date,
            end_date=slot.end_date,
            minimum_stay=slot.minimum_stay,
        )
        return validate_window(window, start=start, end=end)

    async def list_slots(self, opportunity_id: int) -> list[TimeSlot]:
        await self.get_opportunity(opportunity_id)
        return await self.slot_repo.list_for_opportunity(opportunity_id)

    async def open_slot(
        self,
        *,
        opportunity_id: int,
        actor_id: int,
        start_date: date,
        end_date: date,
        default_capacity: int,
        minimum_stay: int | None = None,
        description: str = "",
        overrides: Sequence[OverrideSpec] = (),
    ) -> TimeSlot:
        opportunity = await self.get_opportunity(opportunity_id)
        _ensure_host(opportunity, actor_id)

        if minimum_stay is None:
            minimum_stay = self.default_minimum_stay
        _validate_slot_policy(start_date, end_date, default_capacity, minimum_stay)
        _validate_overrides(start_date, end_date, overrides)

        slot = await self.slot_repo.create(
            opportunity_id=opportunity_id,
            start_date=start_date,
            end_date=end_date,
            default_capacity=default_capacity,
            minimum_stay=minimum_stay,
            description=description,
            overrides=[(o.start_date, o.end_date, o.capacity) for o in overrides],
        )
        await self.opportunity_repo.set_has_time_slots(opportunity)
        await self._ensure_ledger(slot, overrides)
        return slot

    async def update_slot(
        self,
        *,
        opportunity_id: int,
        time_slot_id: int,
        actor_id: int,
        start_date: date | None = None,
        end_date: date | None = None,
        default_capacity: int | None = None,
        minimum_stay: int | None = None,
        description: str | None = None,
        status: TimeSlotStatus | None = None,
        overrides: Sequence[OverrideSpec] | None = None,
    ) -> TimeSlot:
        """
        Change a slot's window, capacity plan, policy or status.

        Omitted fields keep their current value; `overrides`, when given,
        replaces the whole override list. Day records follow the new window
        and capacities. Booked days are never dropped or shrunk below their
        booked count.
        """
        opportunity = await self.get_opportunity(opportunity_id)
        _ensure_host(opportunity, actor_id)
        slot = await self.get_slot(opportunity_id, time_slot_id, for_update=True)

        new_start = start_date if start_date is not None else slot.start_date
        new_end = end_date if end_date is not None else slot.end_date
        new_capacity = default_capacity if default_capacity is not None else slot.default_capacity
        new_minimum_stay = minimum_stay if minimum_stay is not None else slot.minimum_stay
        new_overrides: Sequence[OverrideLike] = overrides if overrides is not None else list(slot.capacity_overrides)
        _validate_slot_policy(new_start, new_end, new_capacity, new_minimum_stay)
        _validate_overrides(new_start, new_end, new_overrides)

        reshaped = (
            (new_start, new_end, new_capacity) != (slot.start_date, slot.end_date, slot.default_capacity)
            or overrides is not None
        )
        reopened = status == TimeSlotStatus.OPEN and slot.status != TimeSlotStatus.OPEN
        if reshaped or reopened:
            await self.ledger.resize(
                opportunity_id,
                slot.id,
                new_start,
                new_end,
                lambda day: capacity_for_day(day, default_capacity=new_capacity, overrides=new_overrides),
            )

        slot.start_date = new_start
        slot.end_date = new_end
        slot.default_capacity = new_capacity
        slot.minimum_stay = new_minimum_stay
        if description is not None:
            slot.description = description
        if status is not None:
            # Closing only blocks new reservations; booked days stay booked.
            slot.status = status
        if overrides is not None:
            await self.slot_repo.replace_overrides(slot, [(o.start_date, o.end_date, o.capacity) for o in overrides])
        return await self.slot_repo.save(slot)

    async def delete_slot(self, *, opportunity_id: int, time_slot_id: int, actor_id: int) -> TimeSlot:
        """Remove a slot nobody has applied to, with its day records."""
        opportunity = await self.get_opportunity(opportunity_id)
        _ensure_host(opportunity, actor_id)
        slot = await self.get_slot(opportunity_id, time_slot_id, for_update=True)
        if await self.slot_repo.has_applications(slot.id):
            raise SlotInUseError("time slot has applications; close it instead")

        await self.ledger.drop_slot(opportunity_id, slot.id)
        await self.slot_repo.delete(slot)
        if not await self.slot_repo.list_for_opportunity(opportunity_id):
            await self.opportunity_repo.set_has_time_slots(opportunity, False)
        return slot

    async def increment_applied(self, time_slot_id: int) -> None:
        await self.slot_repo.adjust_counters(time_slot_id, applied=1)

    async def decrement_applied(self, time_slot_id: int) -> None:
        await self.slot_repo.adjust_counters(time_slot_id, applied=-1)

    async def increment_confirmed(self, time_slot_id: int) -> None:
        await self.slot_repo.adjust_counters(time_slot_id, confirmed=1)

    async def decrement_confirmed(self, time_slot_id: int) -> None:
        await self.slot_repo.adjust_counters(time_slot_id, confirmed=-1)

    async def get_opportunity(self, opportunity_id: int) -> Opportunity:
        opportunity = await self.opportunity_repo.get(opportunity_id)
        if opportunity is None:
            raise OpportunityNotFoundError("opportunity not found")
        return opportunity

    async def _ensure_ledger(self, slot: TimeSlot, overrides: Sequence[OverrideLike]) -> int:
        return await self.ledger.ensure_range(
            slot.opportunity_id,
            slot.id,
            slot.start_date,
            slot.end_date,
            lambda day: capacity_for_day(day, default_capacity=slot.default_capacity, overrides=overrides),
        )


def _ensure_host(opportunity: Opportunity, actor_id: int) -> None:
    if opportunity.host_id != actor_id:
        raise PermissionDeniedError("only the host can manage time slots")


def _validate_slot_policy(start_date: date, end_date: date, default_capacity: int, minimum_stay: int) -> None:
    if start_date > end_date:
        raise InvalidTimeSlotError("start_date must not be after end_date")
    if default_capacity < 1:
        raise InvalidTimeSlotError("default_capacity must be >= 1")
    if minimum_stay < 0:
        raise InvalidTimeSlotError("minimum_stay must be >= 0")
    if minimum_stay > stay_length(start_date, end_date):
        raise InvalidTimeSlotError("minimum_stay is longer than the time slot")


def _validate_overrides(start_date: date, end_date: date, overrides: Sequence[OverrideLike]) -> None:
    for override in overrides:
        if override.start_date > override.end_date:
            raise InvalidTimeSlotError("override start_date must not be after end_date")
        if override.start_date < start_date or override.end_date > end_date:
            raise InvalidTimeSlotError("override range must lie inside the time slot")
        if override.capacity < 1:
            raise InvalidTimeSlotError("override capacity must be >= 1")
