from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, Mapping, Protocol, Sequence

from ..models import ActorRole, ApplicationStatus, TimeSlotStatus
from .errors import (
    CapacityExceededError,
    CapacityRecordMissingError,
    DateRangeOutOfBoundsError,
    InvalidTransitionError,
    MinimumStayViolationError,
    PermissionDeniedError,
    SlotClosedError,
)


def stay_length(start: date, end: date) -> int:
    """Number of calendar days covered by the inclusive range [start, end]."""
    return (end - start).days + 1


def expand_days(start: date, end: date) -> list[date]:
    """
    Expand an inclusive date range into its calendar days.
    Validation, reservation and release all use this one expansion.
    """
    if start > end:
        raise ValueError("start must not be after end")
    return [start + timedelta(days=offset) for offset in range(stay_length(start, end))]


@dataclass(frozen=True)
class SlotWindow:
    status: TimeSlotStatus
    start_date: date
    end_date: date
    minimum_stay: int


def validate_window(window: SlotWindow, *, start: date, end: date) -> int:
    """
    Pure validation of a requested stay against a slot's policy.
    Returns the stay length in days if OK. Raises domain errors otherwise.
    """
    if window.status != TimeSlotStatus.OPEN:
        raise SlotClosedError("time slot is not open for applications")
    if start > end:
        raise DateRangeOutOfBoundsError("start date must not be after end date")
    if start < window.start_date or end > window.end_date:
        raise DateRangeOutOfBoundsError(
            f"requested dates {start.isoformat()}..{end.isoformat()} fall outside "
            f"{window.start_date.isoformat()}..{window.end_date.isoformat()}"
        )
    days = stay_length(start, end)
    if days < window.minimum_stay:
        raise MinimumStayViolationError(
            f"minimum stay is {window.minimum_stay} days, requested {days}",
            minimum_stay=window.minimum_stay,
            requested_days=days,
        )
    return days


class OverrideLike(Protocol):
    start_date: date
    end_date: date
    capacity: int


def capacity_for_day(day: date, *, default_capacity: int, overrides: Sequence[OverrideLike] = ()) -> int:
    # First matching override wins.
    for override in overrides:
        if override.start_date <= day <= override.end_date:
            return override.capacity
    return default_capacity


class DayCounter(Protocol):
    capacity: int
    booked_count: int


def check_days(records: Mapping[date, DayCounter], days: Iterable[date]) -> list[date]:
    """
    Check that every day has a capacity record with room left.
    Missing records are reported before full days; within each kind the
    earliest day is named. Returns the sorted day list if OK.
    """
    ordered = sorted(set(days))
    for day in ordered:
        if day not in records:
            raise CapacityRecordMissingError(f"{day.isoformat()} is not bookable", day=day)
    for day in ordered:
        record = records[day]
        if record.booked_count >= record.capacity:
            raise CapacityExceededError(f"{day.isoformat()} has no available slots", day=day)
    return ordered


ALLOWED_TRANSITIONS: dict[ApplicationStatus, frozenset[ApplicationStatus]] = {
    ApplicationStatus.DRAFT: frozenset({ApplicationStatus.PENDING, ApplicationStatus.CANCELLED}),
    ApplicationStatus.PENDING: frozenset(
        {
            ApplicationStatus.ACCEPTED,
            ApplicationStatus.REJECTED,
            ApplicationStatus.ACTIVE,
            ApplicationStatus.CANCELLED,
        }
    ),
    ApplicationStatus.ACCEPTED: frozenset(
        {ApplicationStatus.ACTIVE, ApplicationStatus.REJECTED, ApplicationStatus.CANCELLED}
    ),
    ApplicationStatus.ACTIVE: frozenset({ApplicationStatus.COMPLETED, ApplicationStatus.CANCELLED}),
    ApplicationStatus.REJECTED: frozenset(),
    ApplicationStatus.COMPLETED: frozenset(),
    ApplicationStatus.CANCELLED: frozenset(),
}

# Statuses whose days are held in the ledger.
RESERVED_STATUSES = frozenset({ApplicationStatus.PENDING, ApplicationStatus.ACCEPTED, ApplicationStatus.ACTIVE})
RELEASING_STATUSES = frozenset({ApplicationStatus.REJECTED, ApplicationStatus.CANCELLED})

_USER_TARGETS = frozenset({ApplicationStatus.PENDING, ApplicationStatus.CANCELLED})
_HOST_TARGETS = frozenset(
    {
        ApplicationStatus.ACCEPTED,
        ApplicationStatus.REJECTED,
        ApplicationStatus.ACTIVE,
        ApplicationStatus.COMPLETED,
        ApplicationStatus.CANCELLED,
    }
)


def check_actor(current: ApplicationStatus, target: ApplicationStatus, *, initiator: ActorRole) -> None:
    """Raise PermissionDeniedError unless `initiator` may move an application from `current` to `target`."""
    allowed_for_actor = _USER_TARGETS if initiator == ActorRole.USER else _HOST_TARGETS
    if target not in allowed_for_actor:
        raise PermissionDeniedError(f"{initiator.value} may not move an application to {target.value}")
    # A draft has not been submitted yet; only its author acts on it.
    if current == ApplicationStatus.DRAFT and initiator != ActorRole.USER:
        raise PermissionDeniedError(f"{initiator.value} may not act on a draft application")


def validate_transition(
    current: ApplicationStatus,
    target: ApplicationStatus,
    *,
    initiator: ActorRole,
) -> None:
    check_actor(current, target, initiator=initiator)
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(f"cannot move application from {current.value} to {target.value}")
