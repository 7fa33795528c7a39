from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date

from ..domain.errors import (
    ApplicationNotFoundError,
    DateRangeOutOfBoundsError,
    DuplicateApplicationError,
    OpportunityNotFoundError,
    PermissionDeniedError,
    SlotNotFoundError,
    VersionConflictError,
)
from ..domain.repositories import ApplicationRepository, OpportunityRepository
from ..domain.services import (
    RELEASING_STATUSES,
    RESERVED_STATUSES,
    check_actor,
    stay_length,
    validate_transition,
)
from ..infrastructure.transaction import is_transient
from ..models import ActorRole, Application, ApplicationStatus
from ..utils.time import utc_now_naive
from .allocator import BookingAllocator
from .time_slots import TimeSlotRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookingRequest:
    user_id: int
    opportunity_id: int
    time_slot_id: int | None
    start_date: date
    end_date: date
    message: str = ""
    draft: bool = False


@dataclass(frozen=True)
class TransitionResult:
    application: Application
    status_from: ApplicationStatus
    initiator: ActorRole


class ApplicationLifecycle:
    """
    State machine for booking requests.

    DRAFT -> PENDING -> {ACCEPTED, REJECTED}; ACCEPTED -> {ACTIVE, REJECTED};
    PENDING -> ACTIVE; ACTIVE -> COMPLETED; any live state -> CANCELLED.
    Entering PENDING reserves capacity, entering ACTIVE confirms it and
    entering REJECTED/CANCELLED releases it.
    """

    def __init__(
        self,
        app_repo: ApplicationRepository,
        opportunity_repo: OpportunityRepository,
        registry: TimeSlotRegistry,
        allocator: BookingAllocator,
    ) -> None:
        self.app_repo = app_repo
        self.opportunity_repo = opportunity_repo
        self.registry = registry
        self.allocator = allocator

    async def create(self, request: BookingRequest) -> Application:
        opportunity = await self.opportunity_repo.get(request.opportunity_id)
        if opportunity is None:
            raise OpportunityNotFoundError("opportunity not found")
        if opportunity.host_id == request.user_id:
            raise PermissionDeniedError("hosts cannot apply to their own opportunity")
        if request.start_date > request.end_date:
            raise DateRangeOutOfBoundsError("start date must not be after end date")
        if request.time_slot_id is None and opportunity.has_time_slots:
            raise SlotNotFoundError("a time slot must be chosen for this opportunity")

        slot = None
        if request.time_slot_id is not None:
            # Row lock on the slot serializes applicants so the duplicate check holds.
            slot = await self.registry.get_slot(request.opportunity_id, request.time_slot_id, for_update=True)

        if await self.app_repo.has_live(request.user_id, request.opportunity_id, request.time_slot_id):
            raise DuplicateApplicationError("user already has an active application for this time slot")

        status = ApplicationStatus.DRAFT if request.draft else ApplicationStatus.PENDING
        if slot is not None:
            if status == ApplicationStatus.PENDING:
                await self.allocator.reserve(request)
            else:
                self.registry.validate_window(slot, request.start_date, request.end_date)

        application = await self.app_repo.create(
            user_id=request.user_id,
            opportunity_id=request.opportunity_id,
            host_id=opportunity.host_id,
            time_slot_id=request.time_slot_id,
            status=status,
            start_date=request.start_date,
            end_date=request.end_date,
            duration_days=stay_length(request.start_date, request.end_date),
            message=request.message,
        )
        if slot is not None and status == ApplicationStatus.PENDING:
            await self.registry.increment_applied(slot.id)
        return application

    async def transition(
        self,
        *,
        application_id: int,
        actor_id: int,
        target: ApplicationStatus,
        version: int,
        reason: str | None = None,
    ) -> TransitionResult:
        application = await self.app_repo.get_for_update(application_id)
        if application is None:
            raise ApplicationNotFoundError("application not found")
        initiator = _initiator_for(application, actor_id)
        status_from = application.status

        # Idempotent: repeating the current status returns as-is
        if status_from == target:
            check_actor(status_from, target, initiator=initiator)
            return TransitionResult(application=application, status_from=status_from, initiator=initiator)
        if application.version != version:
            raise VersionConflictError("version mismatch")
        validate_transition(status_from, target, initiator=initiator)

        slot_id = application.time_slot_id
        now = utc_now_naive()
        if target == ApplicationStatus.PENDING and slot_id is not None:
            await self.registry.get_slot(application.opportunity_id, slot_id, for_update=True)
            await self.allocator.reserve(application)
            await self.registry.increment_applied(slot_id)
        elif target == ApplicationStatus.ACTIVE:
            application.confirmed_at = now
            if slot_id is not None:
                await self.registry.increment_confirmed(slot_id)
        elif target in RELEASING_STATUSES and status_from in RESERVED_STATUSES and slot_id is not None:
            await self._release(application, slot_id, was_confirmed=status_from == ApplicationStatus.ACTIVE)

        if target == ApplicationStatus.CANCELLED:
            application.cancelled_by = initiator
            application.cancellation_reason = reason
        elif reason is not None:
            application.status_note = reason

        application.status = target
        application.version += 1
        application.updated_at = now
        saved = await self.app_repo.save(application)
        return TransitionResult(application=saved, status_from=status_from, initiator=initiator)

    async def _release(self, application: Application, slot_id: int, *, was_confirmed: bool) -> None:
        if application.capacity_released_at is None:
            token = self.allocator.token_for(application)
            try:
                await self.allocator.release(token)
            except Exception as exc:
                # Transient storage failures abort the transition so the transaction is retried.
                if is_transient(exc):
                    raise
                # capacity_released_at stays NULL for this application.
                logger.exception(
                    "failed to release capacity for application=%s time_slot=%s",
                    application.id,
                    slot_id,
                )
            else:
                application.capacity_released_at = utc_now_naive()
        # confirmed_count <= applied_count holds after every statement.
        if was_confirmed:
            await self.registry.decrement_confirmed(slot_id)
        await self.registry.decrement_applied(slot_id)


def _initiator_for(application: Application, actor_id: int) -> ActorRole:
    if actor_id == application.host_id:
        return ActorRole.HOST
    if actor_id == application.user_id:
        return ActorRole.USER
    raise PermissionDeniedError("not a party to this application")


async def get_application(
    app_repo: ApplicationRepository,
    *,
    application_id: int,
    actor_id: int,
) -> Application | None:
    application = await app_repo.get(application_id)
    if application is None or actor_id not in (application.user_id, application.host_id):
        return None
    return application


async def list_user_applications(
    app_repo: ApplicationRepository,
    *,
    user_id: int,
    status: ApplicationStatus | None = None,
) -> list[Application]:
    return await app_repo.list_by_user(user_id, status)


async def list_host_applications(
    app_repo: ApplicationRepository,
    *,
    host_id: int,
    status: ApplicationStatus | None = None,
) -> list[Application]:
    return await app_repo.list_by_host(host_id, status)
