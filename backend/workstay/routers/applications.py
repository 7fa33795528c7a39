from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Path, Query, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..deps import build_booking_core, get_current_user_id, get_session
from ..domain.errors import BookingError
from ..infrastructure.transaction import run_in_transaction
from ..models import ApplicationStatus
from ..schemas import ApplicationCreate, ApplicationRead, ApplicationTransition
from ..usecases import applications as application_usecase
from ..usecases.applications import BookingRequest
from ..utils.audit_log import action_for_status, emit_audit_log
from .errors import conflict, to_http_exception

router = APIRouter(prefix="", tags=["applications"])


def _extract_version(if_match: Optional[str], payload: Optional[ApplicationTransition]) -> int:
    """Take the expected version from If-Match (ETag style) or fall back to the body."""
    if if_match:
        raw = if_match.strip()
        if raw.startswith("W/"):
            raw = raw[2:]
        raw = raw.strip('"')
        try:
            version = int(raw)
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid If-Match header")
        if version < 1:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="version must be >= 1")
        return version
    if payload is not None and payload.version is not None:
        if payload.version < 1:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="version must be >= 1")
        return payload.version
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="version is required (If-Match or body)")


def _audit_failed() -> HTTPException:
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="audit log failed")


@router.post("/applications", response_model=ApplicationRead, status_code=status.HTTP_201_CREATED)
async def create_application(
    payload: ApplicationCreate,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> ApplicationRead:
    settings = get_settings()
    core = build_booking_core(session, settings)
    request = BookingRequest(
        user_id=user_id,
        opportunity_id=payload.opportunity_id,
        time_slot_id=payload.time_slot_id,
        start_date=payload.start_date,
        end_date=payload.end_date,
        message=payload.message,
        draft=payload.draft,
    )

    async def work():
        return await core.lifecycle.create(request)

    try:
        application = await run_in_transaction(
            session,
            work,
            attempts=settings.reserve_max_attempts,
            timeout=settings.storage_timeout_seconds,
            backoff=settings.reserve_backoff_seconds,
        )
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except IntegrityError as exc:
        raise conflict("application conflicts with existing data") from exc

    try:
        emit_audit_log(
            action="application.created",
            initiator="user",
            application_id=application.id,
            opportunity_id=application.opportunity_id,
            time_slot_id=application.time_slot_id,
            user_id=user_id,
            status_to=application.status,
            version=application.version,
            extra={
                "start_date": application.start_date.isoformat(),
                "end_date": application.end_date.isoformat(),
            },
        )
    except RuntimeError:
        raise _audit_failed()
    return ApplicationRead.from_db(application=application)


@router.post("/applications/{application_id}/transition", response_model=ApplicationRead)
async def transition_application(
    payload: ApplicationTransition,
    application_id: int = Path(..., ge=1),
    if_match: Optional[str] = Header(default=None, alias="If-Match"),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> ApplicationRead:
    version = _extract_version(if_match, payload)
    settings = get_settings()
    core = build_booking_core(session, settings)

    async def work():
        return await core.lifecycle.transition(
            application_id=application_id,
            actor_id=user_id,
            target=payload.status,
            version=version,
            reason=payload.reason,
        )

    try:
        result = await run_in_transaction(
            session,
            work,
            attempts=settings.reserve_max_attempts,
            timeout=settings.storage_timeout_seconds,
            backoff=settings.reserve_backoff_seconds,
        )
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except IntegrityError as exc:
        raise conflict("transition conflicts with existing data") from exc

    application = result.application
    if result.status_from != application.status:
        try:
            emit_audit_log(
                action=action_for_status(application.status),
                initiator=result.initiator.value,
                application_id=application.id,
                opportunity_id=application.opportunity_id,
                time_slot_id=application.time_slot_id,
                user_id=user_id,
                status_from=result.status_from,
                status_to=application.status,
                version=application.version,
                message=payload.reason,
                extra={"capacity_released": application.capacity_released_at is not None}
                if application.status in (ApplicationStatus.REJECTED, ApplicationStatus.CANCELLED)
                else None,
            )
        except RuntimeError:
            raise _audit_failed()
    return ApplicationRead.from_db(application=application)


@router.get("/me/applications", response_model=List[ApplicationRead])
async def list_my_applications(
    status_filter: Optional[ApplicationStatus] = Query(default=None, alias="status"),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> list[ApplicationRead]:
    core = build_booking_core(session, get_settings())
    rows = await application_usecase.list_user_applications(core.applications, user_id=user_id, status=status_filter)
    return [ApplicationRead.from_db(application=row) for row in rows]


@router.get("/me/applications/{application_id}", response_model=ApplicationRead)
async def get_my_application(
    application_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> ApplicationRead:
    core = build_booking_core(session, get_settings())
    application = await application_usecase.get_application(
        core.applications,
        application_id=application_id,
        actor_id=user_id,
    )
    if application is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="application not found")
    return ApplicationRead.from_db(application=application)


@router.get("/hosts/me/applications", response_model=List[ApplicationRead])
async def list_host_applications(
    status_filter: Optional[ApplicationStatus] = Query(default=None, alias="status"),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> list[ApplicationRead]:
    core = build_booking_core(session, get_settings())
    rows = await application_usecase.list_host_applications(core.applications, host_id=user_id, status=status_filter)
    return [ApplicationRead.from_db(application=row) for row in rows]
