from typing import List

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..deps import build_booking_core, get_current_user_id, get_session
from ..domain.errors import BookingError
from ..infrastructure.transaction import run_in_transaction
from ..schemas import CapacityOverrideIn, TimeSlotCreate, TimeSlotRead, TimeSlotUpdate
from ..usecases.time_slots import OverrideSpec
from ..utils.audit_log import emit_audit_log
from .errors import conflict, to_http_exception

router = APIRouter(prefix="/opportunities", tags=["time-slots"])


def _override_specs(items: List[CapacityOverrideIn]) -> list[OverrideSpec]:
    return [OverrideSpec(start_date=o.start_date, end_date=o.end_date, capacity=o.capacity) for o in items]


@router.get("/{opportunity_id}/time-slots", response_model=List[TimeSlotRead])
async def list_time_slots(
    opportunity_id: int,
    session: AsyncSession = Depends(get_session),
) -> list[TimeSlotRead]:
    core = build_booking_core(session, get_settings())
    try:
        slots = await core.registry.list_slots(opportunity_id)
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    return [TimeSlotRead.from_db(slot=slot) for slot in slots]


@router.get("/{opportunity_id}/time-slots/{time_slot_id}", response_model=TimeSlotRead)
async def get_time_slot(
    opportunity_id: int,
    time_slot_id: int,
    session: AsyncSession = Depends(get_session),
) -> TimeSlotRead:
    core = build_booking_core(session, get_settings())
    try:
        slot = await core.registry.get_slot(opportunity_id, time_slot_id)
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    return TimeSlotRead.from_db(slot=slot)


@router.post(
    "/{opportunity_id}/time-slots",
    response_model=TimeSlotRead,
    status_code=status.HTTP_201_CREATED,
)
async def open_time_slot(
    opportunity_id: int,
    payload: TimeSlotCreate,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> TimeSlotRead:
    settings = get_settings()
    core = build_booking_core(session, settings)

    async def work():
        return await core.registry.open_slot(
            opportunity_id=opportunity_id,
            actor_id=user_id,
            start_date=payload.start_date,
            end_date=payload.end_date,
            default_capacity=payload.default_capacity,
            minimum_stay=payload.minimum_stay,
            description=payload.description,
            overrides=_override_specs(payload.capacity_overrides),
        )

    try:
        slot = await run_in_transaction(
            session,
            work,
            attempts=settings.reserve_max_attempts,
            timeout=settings.storage_timeout_seconds,
            backoff=settings.reserve_backoff_seconds,
        )
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except IntegrityError as exc:
        raise conflict("time slot conflicts with existing data") from exc

    try:
        emit_audit_log(
            action="time_slot.opened",
            initiator="host",
            opportunity_id=opportunity_id,
            time_slot_id=slot.id,
            user_id=user_id,
            extra={"start_date": slot.start_date.isoformat(), "end_date": slot.end_date.isoformat()},
        )
    except RuntimeError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="audit log failed")
    return TimeSlotRead.from_db(slot=slot)


@router.patch("/{opportunity_id}/time-slots/{time_slot_id}", response_model=TimeSlotRead)
async def update_time_slot(
    opportunity_id: int,
    time_slot_id: int,
    payload: TimeSlotUpdate,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> TimeSlotRead:
    settings = get_settings()
    core = build_booking_core(session, settings)

    async def work():
        return await core.registry.update_slot(
            opportunity_id=opportunity_id,
            time_slot_id=time_slot_id,
            actor_id=user_id,
            start_date=payload.start_date,
            end_date=payload.end_date,
            default_capacity=payload.default_capacity,
            minimum_stay=payload.minimum_stay,
            description=payload.description,
            status=payload.status,
            overrides=_override_specs(payload.capacity_overrides) if payload.capacity_overrides is not None else None,
        )

    try:
        slot = await run_in_transaction(
            session,
            work,
            attempts=settings.reserve_max_attempts,
            timeout=settings.storage_timeout_seconds,
            backoff=settings.reserve_backoff_seconds,
        )
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except IntegrityError as exc:
        raise conflict("time slot conflicts with existing data") from exc

    try:
        emit_audit_log(
            action="time_slot.updated",
            initiator="host",
            opportunity_id=opportunity_id,
            time_slot_id=slot.id,
            user_id=user_id,
            extra={
                "slot_status": slot.status.value,
                "start_date": slot.start_date.isoformat(),
                "end_date": slot.end_date.isoformat(),
            },
        )
    except RuntimeError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="audit log failed")
    return TimeSlotRead.from_db(slot=slot)


@router.delete("/{opportunity_id}/time-slots/{time_slot_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_time_slot(
    opportunity_id: int,
    time_slot_id: int,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> Response:
    settings = get_settings()
    core = build_booking_core(session, settings)

    async def work():
        return await core.registry.delete_slot(
            opportunity_id=opportunity_id,
            time_slot_id=time_slot_id,
            actor_id=user_id,
        )

    try:
        slot = await run_in_transaction(
            session,
            work,
            attempts=settings.reserve_max_attempts,
            timeout=settings.storage_timeout_seconds,
            backoff=settings.reserve_backoff_seconds,
        )
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except IntegrityError as exc:
        raise conflict("time slot is still referenced") from exc

    try:
        emit_audit_log(
            action="time_slot.deleted",
            initiator="host",
            opportunity_id=opportunity_id,
            time_slot_id=slot.id,
            user_id=user_id,
            extra={"start_date": slot.start_date.isoformat(), "end_date": slot.end_date.isoformat()},
        )
    except RuntimeError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="audit log failed")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
