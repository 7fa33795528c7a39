from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterator

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .config import Settings, get_settings
from .database import Database
from .infrastructure.repositories import (
    SqlAlchemyApplicationRepository,
    SqlAlchemyDateCapacityRepository,
    SqlAlchemyOpportunityRepository,
    SqlAlchemyTimeSlotRepository,
)
from .models import User
from .usecases.allocator import BookingAllocator
from .usecases.applications import ApplicationLifecycle
from .usecases.ledger import DateCapacityLedger
from .usecases.time_slots import TimeSlotRegistry
from .utils.auth import read_token

_BEARER_CHALLENGE = {"WWW-Authenticate": "Bearer"}


@dataclass
class BookingCore:
    ledger: DateCapacityLedger
    registry: TimeSlotRegistry
    allocator: BookingAllocator
    lifecycle: ApplicationLifecycle
    applications: SqlAlchemyApplicationRepository


def build_booking_core(session: AsyncSession, settings: Settings) -> BookingCore:
    """Wire the booking components onto one session so they share its transaction."""
    opportunity_repo = SqlAlchemyOpportunityRepository(session)
    ledger = DateCapacityLedger(SqlAlchemyDateCapacityRepository(session))
    registry = TimeSlotRegistry(
        SqlAlchemyTimeSlotRepository(session),
        opportunity_repo,
        ledger,
        default_minimum_stay=settings.default_minimum_stay,
    )
    allocator = BookingAllocator(registry, ledger)
    app_repo = SqlAlchemyApplicationRepository(session)
    lifecycle = ApplicationLifecycle(app_repo, opportunity_repo, registry, allocator)
    return BookingCore(
        ledger=ledger,
        registry=registry,
        allocator=allocator,
        lifecycle=lifecycle,
        applications=app_repo,
    )


def get_database(request: Request) -> Database:
    return request.app.state.db


async def get_session(db: Database = Depends(get_database)) -> AsyncIterator[AsyncSession]:
    async with db.session() as session:
        yield session


async def get_current_user_id(
    authorization: str | None = Header(default=None),
    session: AsyncSession = Depends(get_session),
) -> int:
    if authorization is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="bearer token required",
            headers=_BEARER_CHALLENGE,
        )
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="bearer token required",
            headers=_BEARER_CHALLENGE,
        )
    try:
        user_id = read_token(token.strip(), settings=get_settings())
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="invalid token",
            headers=_BEARER_CHALLENGE,
        ) from exc

    try:
        exists = await session.scalar(select(User.id).where(User.id == user_id))
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="user lookup failed",
        ) from exc
    finally:
        # End the implicit read transaction so handlers can begin their own.
        await session.rollback()
    if exists is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="user not found",
            headers=_BEARER_CHALLENGE,
        )
    return user_id
