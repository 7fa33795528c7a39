from typing import Any

from fastapi import HTTPException, status

from ..domain import errors

_STATUS_BY_ERROR: dict[type[errors.BookingError], int] = {
    errors.SlotNotFoundError: status.HTTP_404_NOT_FOUND,
    errors.OpportunityNotFoundError: status.HTTP_404_NOT_FOUND,
    errors.ApplicationNotFoundError: status.HTTP_404_NOT_FOUND,
    errors.SlotClosedError: status.HTTP_409_CONFLICT,
    errors.SlotInUseError: status.HTTP_409_CONFLICT,
    errors.CapacityBelowBookedError: status.HTTP_409_CONFLICT,
    errors.CapacityRecordMissingError: status.HTTP_409_CONFLICT,
    errors.CapacityExceededError: status.HTTP_409_CONFLICT,
    errors.DuplicateApplicationError: status.HTTP_409_CONFLICT,
    errors.InvalidTransitionError: status.HTTP_409_CONFLICT,
    errors.VersionConflictError: status.HTTP_409_CONFLICT,
    errors.DateRangeOutOfBoundsError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    errors.MinimumStayViolationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    errors.InvalidTimeSlotError: status.HTTP_400_BAD_REQUEST,
    errors.PermissionDeniedError: status.HTTP_403_FORBIDDEN,
    errors.StorageUnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def to_http_exception(exc: errors.BookingError) -> HTTPException:
    detail: dict[str, Any] = {"code": exc.code, "message": exc.message}
    day = getattr(exc, "day", None)
    if day is not None:
        detail["date"] = day.isoformat()
    if isinstance(exc, errors.MinimumStayViolationError):
        detail["minimum_stay"] = exc.minimum_stay
        detail["requested_days"] = exc.requested_days
    status_code = _STATUS_BY_ERROR.get(type(exc), status.HTTP_400_BAD_REQUEST)
    headers = {"Retry-After": "1"} if isinstance(exc, errors.StorageUnavailableError) else None
    return HTTPException(status_code=status_code, detail=detail, headers=headers)


def conflict(message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail={"code": "conflict", "message": message})
