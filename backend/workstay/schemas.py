from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_serializer, model_validator

from .models import ActorRole, Application, ApplicationStatus, TimeSlot, TimeSlotStatus
from .usecases.ledger import DayAvailability


class CapacityOverrideIn(BaseModel):
    start_date: date
    end_date: date
    capacity: int = Field(ge=1)


class CapacityOverrideRead(BaseModel):
    start_date: date
    end_date: date
    capacity: int


class TimeSlotCreate(BaseModel):
    start_date: date
    end_date: date
    default_capacity: int = Field(ge=1)
    minimum_stay: Optional[int] = Field(default=None, ge=0)
    description: str = ""
    capacity_overrides: List[CapacityOverrideIn] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_window(self) -> "TimeSlotCreate":
        if self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class TimeSlotUpdate(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    default_capacity: Optional[int] = Field(default=None, ge=1)
    minimum_stay: Optional[int] = Field(default=None, ge=0)
    description: Optional[str] = None
    status: Optional[TimeSlotStatus] = None
    # None keeps the current overrides; a list (even empty) replaces them.
    capacity_overrides: Optional[List[CapacityOverrideIn]] = None

    @model_validator(mode="after")
    def _check_window(self) -> "TimeSlotUpdate":
        if self.start_date is not None and self.end_date is not None and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class TimeSlotRead(BaseModel):
    time_slot_id: int
    opportunity_id: int
    start_date: date
    end_date: date
    default_capacity: int
    minimum_stay: int
    description: str
    status: TimeSlotStatus
    applied_count: int
    confirmed_count: int
    capacity_overrides: List[CapacityOverrideRead]

    @classmethod
    def from_db(cls, *, slot: TimeSlot) -> "TimeSlotRead":
        return cls(
            time_slot_id=slot.id,
            opportunity_id=slot.opportunity_id,
            start_date=slot.start_date,
            end_date=slot.end_date,
            default_capacity=slot.default_capacity,
            minimum_stay=slot.minimum_stay,
            description=slot.description,
            status=slot.status,
            applied_count=slot.applied_count,
            confirmed_count=slot.confirmed_count,
            capacity_overrides=[
                CapacityOverrideRead(start_date=o.start_date, end_date=o.end_date, capacity=o.capacity)
                for o in slot.capacity_overrides
            ],
        )


class DateCapacityRead(BaseModel):
    day: date = Field(serialization_alias="date")
    time_slot_id: Optional[int]
    capacity: int
    booked_count: int
    available: int
    is_available: bool

    @classmethod
    def from_entry(cls, entry: DayAvailability) -> "DateCapacityRead":
        return cls(
            day=entry.day,
            time_slot_id=entry.time_slot_id,
            capacity=entry.capacity,
            booked_count=entry.booked_count,
            available=entry.available,
            is_available=entry.is_available,
        )


class ApplicationCreate(BaseModel):
    opportunity_id: int
    time_slot_id: Optional[int] = None
    start_date: date
    end_date: date
    message: str = Field(default="", max_length=5000)
    draft: bool = False


class ApplicationTransition(BaseModel):
    status: ApplicationStatus
    reason: Optional[str] = Field(default=None, max_length=2000)
    version: Optional[int] = Field(default=None, ge=1)


class ApplicationRead(BaseModel):
    application_id: int
    user_id: int
    opportunity_id: int
    host_id: int
    time_slot_id: Optional[int]
    status: ApplicationStatus
    start_date: date
    end_date: date
    duration_days: int
    message: str
    status_note: Optional[str]
    cancelled_by: Optional[ActorRole]
    cancellation_reason: Optional[str]
    confirmed_at: Optional[datetime]
    version: int
    created_at: datetime
    updated_at: datetime

    @field_serializer("confirmed_at", "created_at", "updated_at")
    def _ser_datetime(self, dt: Optional[datetime]) -> Optional[str]:
        # Stored as naive UTC.
        return None if dt is None else dt.isoformat() + "Z"

    @classmethod
    def from_db(cls, *, application: Application) -> "ApplicationRead":
        return cls(
            application_id=application.id,
            user_id=application.user_id,
            opportunity_id=application.opportunity_id,
            host_id=application.host_id,
            time_slot_id=application.time_slot_id,
            status=application.status,
            start_date=application.start_date,
            end_date=application.end_date,
            duration_days=application.duration_days,
            message=application.message,
            status_note=application.status_note,
            cancelled_by=application.cancelled_by,
            cancellation_reason=application.cancellation_reason,
            confirmed_at=application.confirmed_at,
            version=application.version,
            created_at=application.created_at,
            updated_at=application.updated_at,
        )
