from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Protocol

from ..domain.services import expand_days
from .ledger import DateCapacityLedger
from .time_slots import TimeSlotRegistry

logger = logging.getLogger(__name__)


class StayRequest(Protocol):
    opportunity_id: int
    time_slot_id: int | None
    start_date: date
    end_date: date


@dataclass(frozen=True)
class ReservationToken:
    """The exact day-set a reservation holds, so release mirrors reserve."""

    opportunity_id: int
    time_slot_id: int
    days: tuple[date, ...]


class BookingAllocator:
    def __init__(self, registry: TimeSlotRegistry, ledger: DateCapacityLedger) -> None:
        self.registry = registry
        self.ledger = ledger

    async def reserve(self, application: StayRequest) -> ReservationToken:
        """
        Validate the stay against its time slot and take one unit of capacity
        on every covered day. Either every day is reserved or none is; errors
        from the registry and the ledger propagate unchanged.
        """
        if application.time_slot_id is None:
            raise ValueError("application has no time slot to reserve against")
        slot = await self.registry.get_slot(application.opportunity_id, application.time_slot_id)
        self.registry.validate_window(slot, application.start_date, application.end_date)
        days = expand_days(application.start_date, application.end_date)
        reserved = await self.ledger.check_and_reserve(application.opportunity_id, slot.id, days)
        return ReservationToken(
            opportunity_id=application.opportunity_id,
            time_slot_id=slot.id,
            days=tuple(reserved),
        )

    async def release(self, token: ReservationToken) -> int:
        async with self.ledger.repo.savepoint():
            released = await self.ledger.release(token.opportunity_id, token.time_slot_id, token.days)
        if released != len(token.days):
            logger.warning(
                "released %d of %d days for opportunity=%s time_slot=%s",
                released,
                len(token.days),
                token.opportunity_id,
                token.time_slot_id,
            )
        return released

    @staticmethod
    def token_for(application: StayRequest) -> ReservationToken:
        if application.time_slot_id is None:
            raise ValueError("application has no time slot")
        return ReservationToken(
            opportunity_id=application.opportunity_id,
            time_slot_id=application.time_slot_id,
            days=tuple(expand_days(application.start_date, application.end_date)),
        )
