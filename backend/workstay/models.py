from __future__ import annotations

from datetime import date, datetime
from enum import StrEnum
from typing import Optional

from sqlalchemy import CheckConstraint, Enum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql.sqltypes import BigInteger, Boolean, Date, DateTime, Integer, String, Text


class Base(DeclarativeBase):
    pass


class TimeSlotStatus(StrEnum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class ApplicationStatus(StrEnum):
    DRAFT = "DRAFT"
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class ActorRole(StrEnum):
    USER = "user"
    HOST = "host"


def _str_enum(enum_cls: type[StrEnum]) -> Enum:
    return Enum(
        enum_cls,
        values_callable=lambda cls: [e.value for e in cls],
        native_enum=False,
    )


class User(Base):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("email", name="uq_users_email"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class Opportunity(Base):
    __tablename__ = "opportunities"
    __table_args__ = (Index("idx_opportunities_host", "host_id"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    host_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    has_time_slots: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    time_slots: Mapped[list["TimeSlot"]] = relationship(back_populates="opportunity")


class TimeSlot(Base):
    __tablename__ = "time_slots"
    __table_args__ = (
        CheckConstraint("start_date <= end_date", name="chk_time_slots_window"),
        CheckConstraint("default_capacity >= 1", name="chk_time_slots_capacity"),
        CheckConstraint("minimum_stay >= 0", name="chk_time_slots_minimum_stay"),
        CheckConstraint("applied_count >= 0", name="chk_time_slots_applied"),
        CheckConstraint("confirmed_count >= 0 AND confirmed_count <= applied_count", name="chk_time_slots_confirmed"),
        Index("idx_time_slots_opportunity", "opportunity_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    opportunity_id: Mapped[int] = mapped_column(ForeignKey("opportunities.id"), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    default_capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    minimum_stay: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    applied_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    confirmed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[TimeSlotStatus] = mapped_column(
        _str_enum(TimeSlotStatus),
        nullable=False,
        default=TimeSlotStatus.OPEN,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    opportunity: Mapped["Opportunity"] = relationship(back_populates="time_slots")
    capacity_overrides: Mapped[list["CapacityOverride"]] = relationship(
        back_populates="time_slot",
        cascade="all, delete-orphan",
        order_by="CapacityOverride.id",
        lazy="selectin",
    )


class CapacityOverride(Base):
    __tablename__ = "time_slot_capacity_overrides"
    __table_args__ = (
        CheckConstraint("start_date <= end_date", name="chk_overrides_window"),
        CheckConstraint("capacity >= 1", name="chk_overrides_capacity"),
        Index("idx_overrides_time_slot", "time_slot_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    time_slot_id: Mapped[int] = mapped_column(ForeignKey("time_slots.id"), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)

    time_slot: Mapped["TimeSlot"] = relationship(back_populates="capacity_overrides")


class DateCapacity(Base):
    __tablename__ = "date_capacities"
    __table_args__ = (
        CheckConstraint("capacity >= 0", name="chk_date_capacities_capacity"),
        CheckConstraint("booked_count >= 0 AND booked_count <= capacity", name="chk_date_capacities_booked"),
        UniqueConstraint("opportunity_id", "time_slot_id", "date", name="uq_date_capacities"),
        Index("idx_date_capacities_date", "date"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    opportunity_id: Mapped[int] = mapped_column(ForeignKey("opportunities.id"), nullable=False)
    time_slot_id: Mapped[int] = mapped_column(ForeignKey("time_slots.id"), nullable=False)
    day: Mapped[date] = mapped_column("date", Date, nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    booked_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class Application(Base):
    __tablename__ = "applications"
    __table_args__ = (
        CheckConstraint("start_date <= end_date", name="chk_applications_dates"),
        CheckConstraint("duration_days >= 1", name="chk_applications_duration"),
        Index("idx_applications_user_opportunity", "user_id", "opportunity_id", "time_slot_id"),
        Index("idx_applications_host", "host_id"),
        Index("idx_applications_status", "status"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    opportunity_id: Mapped[int] = mapped_column(ForeignKey("opportunities.id"), nullable=False)
    host_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    time_slot_id: Mapped[Optional[int]] = mapped_column(ForeignKey("time_slots.id"), nullable=True)
    status: Mapped[ApplicationStatus] = mapped_column(
        _str_enum(ApplicationStatus),
        nullable=False,
        default=ApplicationStatus.PENDING,
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    duration_days: Mapped[int] = mapped_column(Integer, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancelled_by: Mapped[Optional[ActorRole]] = mapped_column(
        _str_enum(ActorRole),
        nullable=True,
    )
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    capacity_released_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
