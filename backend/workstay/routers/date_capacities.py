from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..deps import build_booking_core, get_session
from ..domain.errors import BookingError
from ..domain.services import stay_length
from ..schemas import DateCapacityRead
from .errors import to_http_exception

MAX_CALENDAR_DAYS = 366

router = APIRouter(prefix="/opportunities", tags=["date-capacities"])


@router.get("/{opportunity_id}/date-capacities", response_model=List[DateCapacityRead])
async def list_date_capacities(
    opportunity_id: int,
    start: date = Query(..., description="first day (YYYY-MM-DD), inclusive"),
    end: date = Query(..., description="last day (YYYY-MM-DD), inclusive"),
    time_slot_id: Optional[int] = Query(default=None),
    session: AsyncSession = Depends(get_session),
) -> list[DateCapacityRead]:
    if start > end:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="end must not be before start")
    if stay_length(start, end) > MAX_CALENDAR_DAYS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"range is limited to {MAX_CALENDAR_DAYS} days",
        )
    core = build_booking_core(session, get_settings())
    try:
        await core.registry.get_opportunity(opportunity_id)
        entries = await core.ledger.list_range(opportunity_id, start, end, time_slot_id)
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    return [DateCapacityRead.from_entry(entry) for entry in entries]
